"""
Telemetry aggregation for flag evaluations and experiment metric events.

Both aggregators keep the data of the current time bucket in memory. The
first write that falls into a later bucket archives the old bucket and
starts a fresh one.
"""

import logging
import numbers
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from flagsense.buckets import (
    BucketArchive,
    EnvelopeIdentity,
    EnvelopeKind,
    UploadEnvelope,
    time_bucket,
)

logger = logging.getLogger("flagsense.telemetry")

Clock = Callable[[], float]


def now_ms() -> float:
    """Current wall-clock time in milliseconds."""
    return time.time() * 1000


@dataclass
class MetricRecord:
    """Running statistics of one (flag, event, variant) metric."""

    count: int
    total: float
    minimum: float
    maximum: float

    @classmethod
    def first(cls, value: float) -> "MetricRecord":
        return cls(count=1, total=value, minimum=value, maximum=value)

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.minimum = min(self.minimum, value)
        self.maximum = max(self.maximum, value)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "total": self.total,
            "minimum": self.minimum,
            "maximum": self.maximum,
        }


class BucketAggregator:
    """Shared bucket bookkeeping for the evaluation and metric aggregators."""

    kind: EnvelopeKind

    def __init__(
        self,
        archive: BucketArchive,
        identity: EnvelopeIdentity,
        interval_ms: int,
        clock: Clock = now_ms,
        enabled: bool = True,
    ):
        self.enabled = enabled
        self.suppressed_errors = 0
        self._archive = archive
        self._identity = identity
        self._interval_ms = interval_ms
        self._clock = clock
        self._bucket = time_bucket(clock(), interval_ms)
        self._data: Dict[str, Any] = {}

    @property
    def current_bucket(self) -> int:
        """Start of the bucket receiving writes."""
        return self._bucket

    def is_empty(self) -> bool:
        return not self._data

    def bucket_for_now(self) -> int:
        return time_bucket(self._clock(), self._interval_ms)

    def rollover(self, new_bucket_start: int) -> Optional[UploadEnvelope]:
        """
        Archive the live data and start a new bucket.

        Empty buckets are not archived. Data collected while capture is
        disabled is discarded.

        Args:
            new_bucket_start: Start of the bucket that becomes current

        Returns:
            The archived envelope, or None if nothing was archived
        """
        envelope = None
        if self._data and self.enabled:
            envelope = UploadEnvelope.snapshot(
                self.kind, self._bucket, self._identity, self._payload()
            )
            self._archive.store(envelope)
        self._data = {}
        self._bucket = new_bucket_start
        return envelope

    def rollover_if_due(self) -> Optional[UploadEnvelope]:
        """Roll over when the clock has moved into a later bucket."""
        bucket = self.bucket_for_now()
        if bucket == self._bucket:
            return None
        return self.rollover(bucket)

    def snapshot(self) -> Dict[str, Any]:
        """Copy of the live data in its upload shape."""
        return UploadEnvelope.snapshot(
            self.kind, self._bucket, self._identity, self._payload()
        ).data

    def _payload(self) -> Dict[str, Any]:
        return self._data

    def _suppress(self, action: str) -> bool:
        self.suppressed_errors += 1
        logger.debug(f"Ignored error while recording {action}", exc_info=True)
        return False


class EvaluationAggregator(BucketAggregator):
    """Counts evaluations per flag and variant."""

    kind = EnvelopeKind.EVALUATIONS

    def record(self, flag_id: str, variant_key: str) -> bool:
        """
        Count one evaluation of ``flag_id`` resolving to ``variant_key``.

        Never raises. Returns False when capture is disabled or the write
        failed.
        """
        if not self.enabled:
            return False
        try:
            self.rollover_if_due()
            counts = self._data.setdefault(flag_id, {})
            counts[variant_key] = counts.get(variant_key, 0) + 1
            return True
        except Exception:
            return self._suppress("evaluation")


class MetricAggregator(BucketAggregator):
    """Keeps count/total/minimum/maximum per flag, event and variant."""

    kind = EnvelopeKind.EVENTS

    def record(self, flag_id: str, event_name: str, variant_key: str, value: float) -> bool:
        """
        Merge one metric value into its running statistics.

        Never raises. Returns False when capture is disabled, the value is
        not a number or the write failed.
        """
        if not self.enabled:
            return False
        try:
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise TypeError(f"Metric value must be a number, got {value!r}")
            self.rollover_if_due()
            variants = self._data.setdefault(flag_id, {}).setdefault(event_name, {})
            record = variants.get(variant_key)
            if record is None:
                variants[variant_key] = MetricRecord.first(value)
            else:
                record.add(value)
            return True
        except Exception:
            return self._suppress("metric event")

    def _payload(self) -> Dict[str, Any]:
        return {
            flag_id: {
                event_name: {key: record.to_dict() for key, record in variants.items()}
                for event_name, variants in events.items()
            }
            for flag_id, events in self._data.items()
        }

"""
Time buckets, upload envelopes and the archive of closed buckets.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger("flagsense.events")


class EnvelopeKind(str, Enum):
    """Kinds of aggregated data, named after their upload endpoint."""

    EVALUATIONS = "variantsData"
    EVENTS = "experimentEvents"

    @property
    def payload_key(self) -> str:
        """Name of the body field carrying the aggregate data."""
        return "data" if self is EnvelopeKind.EVALUATIONS else "experimentEvents"


def time_bucket(timestamp_ms: float, interval_ms: int) -> int:
    """
    Map a timestamp to the start of its flush interval.

    Args:
        timestamp_ms: Milliseconds since epoch
        interval_ms: Bucket width in milliseconds

    Returns:
        Start of the containing bucket in milliseconds
    """
    return int(timestamp_ms // interval_ms) * interval_ms


def merge_evaluation_counts(target: Dict[str, Dict[str, int]], other: Dict[str, Dict[str, int]]) -> None:
    """Add the counts of ``other`` into ``target``."""
    for flag_id, variants in other.items():
        counts = target.setdefault(flag_id, {})
        for variant_key, count in variants.items():
            counts[variant_key] = counts.get(variant_key, 0) + count


def merge_metric_records(target: Dict[str, Any], other: Dict[str, Any]) -> None:
    """Combine the metric statistics of ``other`` into ``target``."""
    for flag_id, events in other.items():
        target_events = target.setdefault(flag_id, {})
        for event_name, variants in events.items():
            target_variants = target_events.setdefault(event_name, {})
            for variant_key, stats in variants.items():
                existing = target_variants.get(variant_key)
                if existing is None:
                    target_variants[variant_key] = dict(stats)
                    continue
                existing["count"] += stats["count"]
                existing["total"] += stats["total"]
                existing["minimum"] = min(existing["minimum"], stats["minimum"])
                existing["maximum"] = max(existing["maximum"], stats["maximum"])


_MERGERS = {
    EnvelopeKind.EVALUATIONS: merge_evaluation_counts,
    EnvelopeKind.EVENTS: merge_metric_records,
}


@dataclass(frozen=True)
class EnvelopeIdentity:
    """Identity stamped on every envelope of one SDK instance."""

    machine_id: str
    environment: str
    sdk_type: str = "python"


@dataclass(frozen=True)
class UploadEnvelope:
    """Immutable snapshot of one bucket's aggregate data."""

    kind: EnvelopeKind
    time: int
    identity: EnvelopeIdentity
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def snapshot(
        cls,
        kind: EnvelopeKind,
        time: int,
        identity: EnvelopeIdentity,
        data: Dict[str, Any],
    ) -> "UploadEnvelope":
        """Create an envelope from a deep copy of live aggregate data."""
        return cls(kind=kind, time=time, identity=identity, data=copy.deepcopy(data))

    def merged_with(self, other: "UploadEnvelope") -> "UploadEnvelope":
        """Return a new envelope holding the data of both envelopes."""
        data = copy.deepcopy(self.data)
        _MERGERS[self.kind](data, other.data)
        return UploadEnvelope(kind=self.kind, time=self.time, identity=self.identity, data=data)

    def to_payload(self) -> Dict[str, Any]:
        """Build the JSON request body."""
        return {
            "machineId": self.identity.machine_id,
            "sdkType": self.identity.sdk_type,
            "environment": self.identity.environment,
            "time": self.time,
            self.kind.payload_key: copy.deepcopy(self.data),
        }


class BucketArchive:
    """
    Closed buckets awaiting upload, keyed by bucket start.

    Envelopes stored for a bucket that is already archived are merged into
    the existing one. The archive keeps at most ``max_buckets`` envelopes and
    evicts the oldest bucket beyond that.
    """

    def __init__(self, kind: EnvelopeKind, max_buckets: int = 288):
        self.kind = kind
        self._max_buckets = max_buckets
        self._envelopes: Dict[int, UploadEnvelope] = {}

    def store(self, envelope: UploadEnvelope) -> None:
        """Add an envelope, merging with any envelope for the same bucket."""
        existing = self._envelopes.get(envelope.time)
        if existing is not None:
            envelope = existing.merged_with(envelope)
        self._envelopes[envelope.time] = envelope
        self._evict()

    def restore(self, envelope: UploadEnvelope) -> None:
        """Put back an envelope whose upload failed."""
        self.store(envelope)

    def drain(self) -> List[UploadEnvelope]:
        """Remove and return every archived envelope, oldest first."""
        envelopes = []
        for time in sorted(self._envelopes):
            envelope = self._envelopes.pop(time, None)
            if envelope is not None:
                envelopes.append(envelope)
        return envelopes

    def get(self, time: int) -> Optional[UploadEnvelope]:
        """Get the envelope archived for a bucket start."""
        return self._envelopes.get(time)

    def bucket_times(self) -> List[int]:
        """Bucket starts currently archived, oldest first."""
        return sorted(self._envelopes)

    def __len__(self) -> int:
        return len(self._envelopes)

    def _evict(self) -> None:
        while len(self._envelopes) > self._max_buckets:
            oldest = min(self._envelopes)
            del self._envelopes[oldest]
            logger.warning(f"Archive full, dropped {self.kind.value} bucket {oldest}")

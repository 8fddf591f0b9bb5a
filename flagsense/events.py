"""
Event pipeline: aggregation, archiving and periodic upload of telemetry.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from flagsense.buckets import BucketArchive, EnvelopeIdentity, EnvelopeKind
from flagsense.retry import RetryConfig, UPLOAD_RETRY_CONFIG
from flagsense.scheduler import PeriodicTask
from flagsense.shutdown import ShutdownFlusher
from flagsense.telemetry import Clock, EvaluationAggregator, MetricAggregator, now_ms
from flagsense.uploader import Uploader, UploadReport

logger = logging.getLogger("flagsense.events")

MACHINE_ID = str(uuid.uuid4())
"""Identifier of this process, stamped on every upload."""


@dataclass
class EventsConfig:
    """Configuration for the event pipeline."""

    flush_interval_ms: int = 5 * 60 * 1000
    """Bucket width and pause between upload cycles (default: 5 minutes)."""

    initial_delay_ms: int = 2 * 60 * 1000
    """Delay before the first upload cycle (default: 2 minutes)."""

    capture_events: bool = True
    """Aggregate and upload experiment metric events."""

    capture_flag_evaluations: bool = True
    """Aggregate and upload flag evaluation counts."""

    retry: RetryConfig = field(default_factory=lambda: UPLOAD_RETRY_CONFIG)
    """Retry configuration for uploads."""

    requeue_failed: bool = True
    """Put envelopes back in the archive when retryable uploads are exhausted."""

    max_archived_buckets: int = 288
    """Maximum buckets kept per data kind while uploads are failing."""

    register_shutdown_hook: bool = True
    """Flush pending telemetry when the process exits."""

    shutdown_timeout_ms: int = 10000
    """
    Upper bound for each shutdown step. ``close()`` waits this long for a running
    upload cycle, then as long again for the final flush.
    """

    timeout_ms: int = 10000
    """Request timeout for clients created by the pipeline."""


class Events:
    """
    Aggregates flag evaluations and metric events and uploads them in batches.

    Writes land in the current time bucket. Closed buckets are archived and
    posted by a periodic upload cycle; a final flush runs on ``close()`` or,
    failing that, when the process exits.
    """

    def __init__(
        self,
        base_url: str,
        headers: Dict[str, str],
        environment: str,
        config: Optional[EventsConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Clock = now_ms,
        machine_id: Optional[str] = None,
    ):
        self._config = config or EventsConfig()
        self.identity = EnvelopeIdentity(
            machine_id=machine_id or MACHINE_ID,
            environment=environment,
        )
        self.evaluation_archive = BucketArchive(
            EnvelopeKind.EVALUATIONS, self._config.max_archived_buckets
        )
        self.event_archive = BucketArchive(EnvelopeKind.EVENTS, self._config.max_archived_buckets)
        self.evaluations = EvaluationAggregator(
            self.evaluation_archive,
            self.identity,
            self._config.flush_interval_ms,
            clock,
            enabled=self._config.capture_flag_evaluations,
        )
        self.metrics = MetricAggregator(
            self.event_archive,
            self.identity,
            self._config.flush_interval_ms,
            clock,
            enabled=self._config.capture_events,
        )
        self._uploader = Uploader(
            base_url,
            headers,
            [self.evaluation_archive, self.event_archive],
            retry=self._config.retry,
            requeue_failed=self._config.requeue_failed,
        )
        self._http_client = http_client
        self._owns_http_client = False
        self._scheduler = PeriodicTask(
            self.flush,
            interval_ms=self._config.flush_interval_ms,
            initial_delay_ms=self._config.initial_delay_ms,
            name="flagsense-events-flush",
        )
        self._shutdown = ShutdownFlusher(self._flush_at_exit, self._config.shutdown_timeout_ms)
        self._started = False
        self._closing = False

    @property
    def capture_events(self) -> bool:
        return self.metrics.enabled

    @property
    def capture_flag_evaluations(self) -> bool:
        return self.evaluations.enabled

    @property
    def capturing(self) -> bool:
        return self.capture_events or self.capture_flag_evaluations

    @property
    def pending(self) -> int:
        """Number of archived envelopes waiting for upload."""
        return self._uploader.pending()

    @property
    def scheduler_running(self) -> bool:
        return self._scheduler.running

    @property
    def suppressed_errors(self) -> int:
        """Recording errors swallowed so far."""
        return self.evaluations.suppressed_errors + self.metrics.suppressed_errors

    def start(self) -> None:
        """Register the exit hook and start the upload cycle."""
        if self._closing or self._started:
            return
        self._started = True
        if self._config.register_shutdown_hook:
            self._shutdown.register()
        if self.capturing:
            self._scheduler.start()

    def record_evaluation(self, flag_id: str, variant_key: str) -> bool:
        """Count one evaluation. Never raises."""
        return self.evaluations.record(flag_id, variant_key)

    def record_metric(self, flag_id: str, event_name: str, variant_key: str, value: float) -> bool:
        """Merge one metric value. Never raises."""
        return self.metrics.record(flag_id, event_name, variant_key, value)

    def set_config(self, config: Optional[Dict[str, Any]]) -> None:
        """
        Apply capture toggles pushed by the server.

        Args:
            config: Server config; ``captureDeviceEvents`` and
                ``captureDeviceEvaluations`` are applied when they are booleans
        """
        if not config:
            return

        capture_events = config.get("captureDeviceEvents")
        if isinstance(capture_events, bool):
            self.metrics.enabled = capture_events

        capture_evaluations = config.get("captureDeviceEvaluations")
        if isinstance(capture_evaluations, bool):
            self.evaluations.enabled = capture_evaluations

        if self._started and not self._closing and self.capturing and not self._scheduler.running:
            logger.debug("Capture enabled by server config, starting upload cycle")
            self._scheduler.start()

    def rollover(self, force: bool = False) -> None:
        """
        Archive the live buckets.

        Args:
            force: Archive the current bucket even if the clock has not left it
        """
        bucket = self.evaluations.bucket_for_now()
        for aggregator in (self.evaluations, self.metrics):
            if force or aggregator.current_bucket != bucket:
                aggregator.rollover(bucket)

    async def flush(self, force: bool = False) -> UploadReport:
        """
        Run one upload cycle.

        Args:
            force: Archive the current bucket before uploading

        Returns:
            UploadReport for the cycle
        """
        if not self.capturing:
            return UploadReport()
        self.rollover(force)
        return await self._uploader.flush(self._get_http_client())

    async def close(self) -> None:
        """Stop the upload cycle and flush everything still in memory."""
        if self._closing:
            return
        self._closing = True
        self._shutdown.disarm()
        await self._scheduler.stop(timeout_ms=self._config.shutdown_timeout_ms)

        try:
            await asyncio.wait_for(
                self.flush(force=True),
                timeout=self._config.shutdown_timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning("Final event flush timed out")
        except Exception as e:
            logger.warning(f"Final event flush error: {e}")

        if self._owns_http_client and self._http_client:
            await self._http_client.aclose()

    async def _flush_at_exit(self) -> None:
        if not self.capturing:
            return
        self.rollover(force=True)
        async with httpx.AsyncClient(timeout=self._config.timeout_ms / 1000) as client:
            await self._uploader.flush(client)

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._config.timeout_ms / 1000)
            self._owns_http_client = True
        return self._http_client

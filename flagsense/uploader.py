"""
Delivery of archived telemetry buckets to the events service.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import httpx

from flagsense.buckets import BucketArchive, UploadEnvelope
from flagsense.errors import classify_error, is_retryable_status, status_error
from flagsense.retry import RetryConfig, RetryResult, UPLOAD_RETRY_CONFIG, fetch_with_retry

logger = logging.getLogger("flagsense.uploader")


@dataclass
class UploadReport:
    """Outcome of one upload cycle."""

    sent: List[UploadEnvelope] = field(default_factory=list)
    requeued: List[UploadEnvelope] = field(default_factory=list)
    dropped: List[UploadEnvelope] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.sent) + len(self.requeued) + len(self.dropped)


class Uploader:
    """
    Drains bucket archives and posts each envelope to its endpoint.

    Envelopes leave the archive before their request is issued, so buckets
    archived during an upload cycle wait for the next one. An envelope whose
    retries are exhausted on a retryable failure goes back to the archive
    when ``requeue_failed`` is set; any other failure drops it. A cancelled
    cycle returns the envelopes it was still delivering.
    """

    def __init__(
        self,
        base_url: str,
        headers: Dict[str, str],
        archives: Iterable[BucketArchive],
        retry: Optional[RetryConfig] = None,
        requeue_failed: bool = True,
    ):
        self._base_url = base_url.rstrip("/")
        self._headers = headers
        self._archives = list(archives)
        self._retry = retry or UPLOAD_RETRY_CONFIG
        self._requeue_failed = requeue_failed

    def endpoint(self, envelope: UploadEnvelope) -> str:
        return f"{self._base_url}/events-service/{envelope.kind.value}"

    def pending(self) -> int:
        """Number of envelopes waiting in the archives."""
        return sum(len(archive) for archive in self._archives)

    async def flush(self, http_client: httpx.AsyncClient) -> UploadReport:
        """
        Upload every archived envelope concurrently.

        Returns once every upload has succeeded or failed for good.

        Args:
            http_client: Client used for the requests

        Returns:
            UploadReport describing what happened to each envelope
        """
        batches = [(archive, archive.drain()) for archive in self._archives]
        report = UploadReport()
        tasks = []
        for archive, envelopes in batches:
            for envelope in envelopes:
                tasks.append(self._deliver(http_client, archive, envelope, report))

        if tasks:
            await asyncio.gather(*tasks)
        return report

    async def upload(self, http_client: httpx.AsyncClient, envelope: UploadEnvelope) -> RetryResult[int]:
        """Post one envelope with retry."""
        return await fetch_with_retry(
            lambda: self._post_once(http_client, envelope),
            self._retry,
        )

    async def _deliver(
        self,
        http_client: httpx.AsyncClient,
        archive: BucketArchive,
        envelope: UploadEnvelope,
        report: UploadReport,
    ) -> None:
        try:
            result = await self.upload(http_client, envelope)
        except asyncio.CancelledError:
            archive.restore(envelope)
            raise
        if result.success:
            report.sent.append(envelope)
            return

        error = classify_error(result.error) if result.error else None
        if self._requeue_failed and error is not None and error.retryable:
            archive.restore(envelope)
            report.requeued.append(envelope)
            logger.warning(
                f"Upload of {envelope.kind.value} bucket {envelope.time} failed after "
                f"{result.attempts} attempts, will retry next cycle: {error.message}"
            )
            return

        report.dropped.append(envelope)
        logger.error(
            f"Dropped {envelope.kind.value} bucket {envelope.time}: "
            f"{error.message if error else 'unknown error'}"
        )

    async def _post_once(self, http_client: httpx.AsyncClient, envelope: UploadEnvelope) -> int:
        response = await http_client.post(
            self.endpoint(envelope),
            json=envelope.to_payload(),
            headers=self._headers,
        )
        if is_retryable_status(response.status_code) or not response.is_success:
            raise status_error(
                response.status_code,
                f"Upload of {envelope.kind.value} failed: {response.status_code}",
            )
        return response.status_code

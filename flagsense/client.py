"""
Flagsense client: data refresh loop and flag evaluation.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, Optional, Set

import httpx

from flagsense.config import FlagsenseConfig
from flagsense.errors import (
    ConfigurationError,
    EvaluationError,
    FlagsenseError,
    NetworkError,
    classify_error,
    is_retryable_status,
    status_error,
)
from flagsense.events import Events
from flagsense.models import (
    EMPTY_VARIANT_KEY,
    Flag,
    RemoteDataset,
    User,
    Variation,
    VariantEvaluator,
)
from flagsense.retry import fetch_with_retry
from flagsense.scheduler import PeriodicTask
from flagsense.telemetry import Clock, now_ms

logger = logging.getLogger("flagsense")


class RefreshTrigger(str, Enum):
    """External events that should prompt a data refresh."""

    VISIBLE = "visible"
    ONLINE = "online"
    PAGE_SHOW = "pageshow"


class Flagsense:
    """
    Flagsense feature flag client.

    Example:
        ```python
        client = Flagsense(FlagsenseConfig(sdk_id="id", sdk_secret="secret"))
        await client.init()
        await client.wait_for_initialization_complete()

        variation = client.get_variation(Flag("checkout", "control", False), User("user-1"))

        await client.close()
        ```
    """

    def __init__(
        self,
        config: FlagsenseConfig,
        evaluator: Optional[VariantEvaluator] = None,
        clock: Clock = now_ms,
    ):
        """
        Initialize the Flagsense client.

        Args:
            config: Client configuration
            evaluator: Variant evaluator; built from config.evaluator_factory if omitted
            clock: Millisecond clock

        Raises:
            ConfigurationError: If the SDK id or secret is empty
        """
        if not config.sdk_id or not config.sdk_secret:
            raise ConfigurationError("Empty sdk params not allowed")

        self._config = config
        self._clock = clock
        self.environment = config.normalized_environment()
        self._headers = config.headers()
        self.data = RemoteDataset()
        self.last_successful_call_on: float = 0
        self.max_initialization_wait_ms = config.max_initialization_wait_ms

        if evaluator is None and config.evaluator_factory is not None:
            evaluator = config.evaluator_factory(self.data)
        self._evaluator = evaluator

        self._network_available = True
        self._http_client: Optional[httpx.AsyncClient] = None
        self._inflight: Optional[asyncio.Task] = None
        self._poll_task: Optional[PeriodicTask] = None
        self._trigger_tasks: Set[asyncio.Task] = set()
        self._closing = False

        self.events = Events(
            config.events_base_url,
            self._headers,
            self.environment,
            config.events,
            clock=clock,
        )

    @property
    def last_updated_on(self) -> int:
        return self.data.last_updated_on

    @property
    def url(self) -> str:
        return f"{self._config.base_url.rstrip('/')}/{self._config.sdk_id}/{self.environment}"

    async def init(self) -> None:
        """
        Start the client.

        The first fetch runs in the background; use
        wait_for_initialization_complete() to wait for it.
        """
        self._get_http_client()
        self.events.start()
        self._inflight = asyncio.ensure_future(self._fetch())

        if not self._config.interactive and self._config.refresh_interval_ms > 0:
            self._poll_task = PeriodicTask(
                lambda: self.fetch_latest(force=True),
                interval_ms=self._config.refresh_interval_ms,
                jitter_factor=self._config.refresh_jitter_factor,
                name="flagsense-refresh",
            )
            self._poll_task.start()

    def is_network_available(self) -> bool:
        if self._config.connectivity_check is not None:
            try:
                return bool(self._config.connectivity_check())
            except Exception as e:
                logger.warning(f"Connectivity check failed: {e}")
                return True
        return self._network_available

    def initialization_complete(self) -> bool:
        """True once data has loaded, or when the network is unavailable."""
        return self.data.last_updated_on > 0 or not self.is_network_available()

    async def wait_for_initialization_complete(self, timeout_ms: Optional[int] = None) -> bool:
        """
        Wait until initialization completes or the maximum wait elapses.

        Args:
            timeout_ms: Overrides max_initialization_wait_ms

        Returns:
            True if initialization completed in time
        """
        timeout_ms = self.max_initialization_wait_ms if timeout_ms is None else timeout_ms
        deadline = time.monotonic() + timeout_ms / 1000
        while not self.initialization_complete():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"Initialization not complete after {timeout_ms}ms, using defaults")
                return False
            await asyncio.sleep(min(0.05, remaining))
        return True

    def set_max_initialization_wait_time(self, time_in_millis: int) -> None:
        self.max_initialization_wait_ms = time_in_millis

    def get_variation(self, flag: Flag, user: Optional[User] = None) -> Variation:
        """
        Get the variation of a flag for a user.

        Always returns a value: the flag's default when data is not loaded
        or evaluation fails.

        Args:
            flag: Flag with its default variant
            user: User context

        Returns:
            The assigned Variation
        """
        user = user or User()
        variant = self.get_variant(
            flag.flag_id,
            user.user_id,
            user.attributes,
            {"key": flag.default_key, "value": flag.default_value},
        )
        return Variation(variant.get("key"), variant.get("value"))

    def get_variant(
        self,
        flag_id: str,
        user_id: Optional[str],
        attributes: Optional[Dict[str, Any]],
        default_variant: Dict[str, Any],
    ) -> Dict[str, Any]:
        try:
            variant = self._evaluate(flag_id, user_id, attributes)
            self.events.record_evaluation(flag_id, variant["key"])
            return variant
        except Exception as e:
            logger.debug(f"Returning default for {flag_id}: {e}")
            variant_key = (default_variant or {}).get("key") or EMPTY_VARIANT_KEY
            self.events.record_evaluation(flag_id, variant_key)
            return default_variant

    def get_variant_key(self, user: User, flag_id: str, default_variant_key: Optional[str] = None) -> str:
        try:
            return self._evaluate(flag_id, user.user_id, user.attributes)["key"]
        except Exception:
            return default_variant_key or EMPTY_VARIANT_KEY

    def record_event(
        self,
        flag: Flag,
        user: User,
        event_name: str,
        value: float = 1,
    ) -> bool:
        """
        Record a metric event for the experiment attached to a flag.

        Ignored before initialization and for events the experiment does
        not declare.

        Returns:
            True if the event was recorded
        """
        if not flag or not user or not event_name or self.data.last_updated_on == 0:
            return False

        experiment = self.data.experiment(flag.flag_id)
        if not experiment:
            return False
        event_names = experiment.get("eventNames")
        if not isinstance(event_names, (list, tuple)) or event_name not in event_names:
            return False

        variant_key = self.get_variant_key(user, flag.flag_id, flag.default_key)
        return self.events.record_metric(flag.flag_id, event_name, variant_key, value)

    def notify(self, trigger: RefreshTrigger) -> Optional[asyncio.Task]:
        """
        React to an external event (visibility regained, back online, page restored).

        Schedules an unforced fetch, which is skipped if the data is fresh.
        """
        if self._closing:
            return None
        logger.debug(f"Refresh triggered by {trigger.value}")
        task = asyncio.ensure_future(self.fetch_latest())
        self._trigger_tasks.add(task)
        task.add_done_callback(self._trigger_tasks.discard)
        return task

    async def refresh(self) -> bool:
        """Force refresh data."""
        return await self.fetch_latest(force=True)

    async def fetch_latest(self, force: bool = False) -> bool:
        """
        Fetch the latest dataset.

        Unforced calls are skipped once initialized if the last successful
        fetch is younger than the staleness interval. Concurrent calls share
        one request. Never raises.

        Args:
            force: Ignore the staleness interval

        Returns:
            True if a request succeeded
        """
        if self._closing:
            return False

        if not force and self._is_fresh():
            logger.debug("Data is fresh, skipping fetch")
            return False

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._fetch())
        return await asyncio.shield(self._inflight)

    def _is_fresh(self) -> bool:
        return (
            self.data.last_updated_on > 0
            and self._clock() - self.last_successful_call_on < self._config.staleness_interval_ms
        )

    async def _fetch(self) -> bool:
        result = await fetch_with_retry(self._single_fetch, self._config.fetch_retry)

        if not result.success:
            classified = classify_error(result.error or FlagsenseError("Fetch failed"))
            if isinstance(classified, NetworkError):
                self._network_available = False
            logger.warning(f"Error fetching data after {result.attempts} attempts: {classified.message}")
            return False

        self._network_available = True
        self.last_successful_call_on = self._clock()
        payload = result.data or {}
        if self.data.merge(payload):
            logger.debug(f"Data updated, lastUpdatedOn={self.data.last_updated_on}")
        self.events.set_config(payload.get("config"))
        return True

    async def _single_fetch(self) -> Dict[str, Any]:
        """Single fetch attempt."""
        try:
            response = await self._get_http_client().get(self.url, headers=self._headers)
        except httpx.TransportError as e:
            raise NetworkError(str(e) or e.__class__.__name__) from e

        # Any response proves the network is reachable
        self._network_available = True

        if is_retryable_status(response.status_code) or not response.is_success:
            raise status_error(response.status_code, f"Fetch failed: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise FlagsenseError(f"Invalid response body: {e}") from e
        if not isinstance(payload, dict):
            raise FlagsenseError("Invalid response body: expected an object")
        return payload

    def _evaluate(self, flag_id: str, user_id: Optional[str], attributes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if self.data.last_updated_on == 0:
            raise EvaluationError("Loading data")
        if self._evaluator is None:
            raise EvaluationError("No variant evaluator configured")
        variant = self._evaluator.evaluate(user_id, attributes or {}, flag_id)
        if not variant or "key" not in variant:
            raise EvaluationError(f"No variant for flag {flag_id}")
        return variant

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._config.timeout_ms / 1000)
        return self._http_client

    async def close(self) -> None:
        """Stop refreshing, flush pending events and release resources."""
        if self._closing:
            return
        self._closing = True

        # Cancel the shared request first so the poll loop is not left waiting on it
        if self._inflight and not self._inflight.done():
            self._inflight.cancel()
            try:
                await self._inflight
            except asyncio.CancelledError:
                pass

        if self._poll_task:
            await self._poll_task.stop()

        for task in list(self._trigger_tasks):
            task.cancel()

        await self.events.close()

        if self._http_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> "Flagsense":
        """Async context manager entry."""
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

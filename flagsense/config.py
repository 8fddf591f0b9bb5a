"""Configuration classes and service constants for Flagsense SDK."""

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from flagsense.events import EventsConfig
from flagsense.models import EvaluatorFactory
from flagsense.retry import FETCH_RETRY_CONFIG, RetryConfig

BASE_URL = "https://app-apis.flagsense.com/v1/sdk-service"
EVENTS_BASE_URL = "https://app-events.flagsense.com/v1"

ENVIRONMENTS = ("DEV", "STAGE", "PROD")
DEFAULT_ENVIRONMENT = "PROD"

AUTH_TYPE = "fsdk"
HEADER_AUTH_TYPE = "authType"
HEADER_SDK_ID = "sdkId"
HEADER_SDK_SECRET = "sdkSecret"


@dataclass
class FlagsenseConfig:
    """Configuration for a Flagsense client."""

    sdk_id: str
    """SDK id issued by the service."""

    sdk_secret: str
    """SDK secret issued by the service."""

    environment: str = DEFAULT_ENVIRONMENT
    """One of ENVIRONMENTS; anything else falls back to PROD."""

    base_url: str = BASE_URL
    """Base URL of the data service."""

    events_base_url: str = EVENTS_BASE_URL
    """Base URL of the events service."""

    timeout_ms: int = 10000
    """Request timeout in milliseconds."""

    refresh_interval_ms: int = 60000
    """Polling interval in milliseconds (default: 60s). Set to 0 to disable."""

    refresh_jitter_factor: float = 0.1
    """Jitter factor 0-1 applied to the polling interval."""

    staleness_interval_ms: int = 60000
    """Minimum time between unforced fetches once initialized."""

    interactive: bool = False
    """Rely on notify() triggers instead of periodic polling."""

    max_initialization_wait_ms: int = 10000
    """Upper bound for wait_for_initialization_complete()."""

    fetch_retry: RetryConfig = field(default_factory=lambda: FETCH_RETRY_CONFIG)
    """Retry configuration for data fetches."""

    events: EventsConfig = field(default_factory=EventsConfig)
    """Event pipeline configuration."""

    connectivity_check: Optional[Callable[[], bool]] = None
    """Returns False when the host knows it is offline."""

    evaluator_factory: Optional[EvaluatorFactory] = None
    """Builds the variant evaluator over the shared dataset."""

    def normalized_environment(self) -> str:
        if self.environment and self.environment in ENVIRONMENTS:
            return self.environment
        return DEFAULT_ENVIRONMENT

    def headers(self) -> Dict[str, str]:
        """Request headers carrying the SDK identity."""
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            HEADER_AUTH_TYPE: AUTH_TYPE,
            HEADER_SDK_ID: self.sdk_id,
            HEADER_SDK_SECRET: self.sdk_secret,
        }

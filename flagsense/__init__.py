"""
Flagsense Python SDK - feature flags and experiments.

Usage:
    from flagsense import Flagsense, FlagsenseConfig, flag, user

    client = Flagsense(FlagsenseConfig(sdk_id="your-sdk-id", sdk_secret="your-sdk-secret"))
    await client.init()
    await client.wait_for_initialization_complete()

    variation = client.get_variation(flag("checkout", "control", False), user("user-1"))
"""

from typing import Any, Dict, Optional

from flagsense.client import Flagsense, RefreshTrigger
from flagsense.config import FlagsenseConfig, ENVIRONMENTS
from flagsense.events import Events, EventsConfig
from flagsense.registry import FlagsenseRegistry
from flagsense.models import (
    Flag,
    User,
    Variation,
    RemoteDataset,
    VariantEvaluator,
    EvaluatorFactory,
)
from flagsense.retry import RetryConfig, calculate_delay, is_retryable_error
from flagsense.buckets import BucketArchive, EnvelopeKind, UploadEnvelope, time_bucket
from flagsense.telemetry import EvaluationAggregator, MetricAggregator, MetricRecord
from flagsense.uploader import Uploader, UploadReport
from flagsense.scheduler import PeriodicTask
from flagsense.shutdown import ShutdownFlusher
from flagsense.errors import (
    FlagsenseError,
    ConfigurationError,
    NetworkError,
    RateLimitError,
    ServerError,
    RequestError,
    EvaluationError,
    ErrorCategory,
)


def flag(flag_id: str, default_key: Optional[str] = None, default_value: Any = None) -> Flag:
    """Create a flag reference with its default variant."""
    return Flag(flag_id, default_key, default_value)


def user(user_id: Optional[str] = None, attributes: Optional[Dict[str, Any]] = None) -> User:
    """Create a user context."""
    return User(user_id, attributes or {})


__version__ = "1.0.0"
__all__ = [
    # Client
    "Flagsense",
    "FlagsenseConfig",
    "FlagsenseRegistry",
    "RefreshTrigger",
    "ENVIRONMENTS",
    "flag",
    "user",
    # Models
    "Flag",
    "User",
    "Variation",
    "RemoteDataset",
    "VariantEvaluator",
    "EvaluatorFactory",
    # Events
    "Events",
    "EventsConfig",
    "BucketArchive",
    "EnvelopeKind",
    "UploadEnvelope",
    "time_bucket",
    "EvaluationAggregator",
    "MetricAggregator",
    "MetricRecord",
    "Uploader",
    "UploadReport",
    "PeriodicTask",
    "ShutdownFlusher",
    # Retry
    "RetryConfig",
    "calculate_delay",
    "is_retryable_error",
    # Errors
    "FlagsenseError",
    "ConfigurationError",
    "NetworkError",
    "RateLimitError",
    "ServerError",
    "RequestError",
    "EvaluationError",
    "ErrorCategory",
]

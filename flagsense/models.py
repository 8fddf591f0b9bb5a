"""
Public data types: flags, users, variations and the remote dataset.
"""

import numbers
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol


EMPTY_VARIANT_KEY = "FS_Empty"
"""Variant key counted when a flag without a default key falls back."""

DATASET_FIELDS = ("segments", "flags", "experiments")


@dataclass
class Flag:
    """A flag reference with the variant to fall back to."""

    flag_id: str
    default_key: Optional[str] = None
    default_value: Any = None


@dataclass
class User:
    """User context for targeting."""

    user_id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Variation:
    """The variant a user is assigned to."""

    key: Optional[str]
    value: Any


@dataclass
class RemoteDataset:
    """
    Flag, segment and experiment definitions fetched from the service.

    ``last_updated_on`` is 0 until the first usable response arrives and is
    the readiness signal for evaluation.
    """

    segments: Optional[Dict[str, Any]] = None
    flags: Optional[Dict[str, Any]] = None
    experiments: Optional[Dict[str, Any]] = None
    last_updated_on: int = 0
    config: Optional[Dict[str, Any]] = None

    def merge(self, payload: Dict[str, Any]) -> bool:
        """
        Apply a fetch response field by field.

        Fields missing or empty in ``payload`` keep their current value.
        Responses without a positive ``lastUpdatedOn``, or older than the
        data already held, are ignored.

        Args:
            payload: Decoded response body

        Returns:
            True if the dataset was updated
        """
        config = payload.get("config")
        if isinstance(config, dict) and config:
            self.config = config

        last_updated_on = payload.get("lastUpdatedOn")
        if isinstance(last_updated_on, bool) or not isinstance(last_updated_on, numbers.Real):
            return False
        last_updated_on = int(last_updated_on)
        if last_updated_on <= 0 or last_updated_on < self.last_updated_on:
            return False

        for name in DATASET_FIELDS:
            value = payload.get(name)
            if value:
                setattr(self, name, value)
        self.last_updated_on = last_updated_on
        return True

    def experiment(self, flag_id: str) -> Optional[Dict[str, Any]]:
        """Experiment definition attached to a flag, if any."""
        if not isinstance(self.experiments, dict):
            return None
        experiment = self.experiments.get(flag_id)
        return experiment if isinstance(experiment, dict) else None


class VariantEvaluator(Protocol):
    """Assigns users to variants using the shared dataset."""

    def evaluate(self, user_id: Optional[str], attributes: Dict[str, Any], flag_id: str) -> Dict[str, Any]:
        """
        Return the variant as ``{"key": ..., "value": ...}``.

        Raises when the data is missing or the flag cannot be resolved.
        """
        ...


EvaluatorFactory = Callable[[RemoteDataset], VariantEvaluator]

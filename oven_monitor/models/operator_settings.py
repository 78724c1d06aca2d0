"""Operator settings: operation labels and logging policy per oven."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .oven import OvenId


DEFAULT_OPERATIONS: List[str] = [
    "Colle Blanche",
    "Colle Noir",
    "1er Peinture",
    "Déshydratation",
    "2éme Peinture",
    "Vernis Dolphon",
]


class AggregationMode(str, Enum):
    """How a logging window is reduced to one persisted value."""

    AVERAGE = "average"
    LAST = "last"


class LoggingSpec(BaseModel):
    """Logging cadence and aggregation policy for one oven."""

    model_config = {
        "validate_assignment": True,
        "extra": "forbid"
    }

    interval_seconds: int = Field(
        default=60,
        ge=1,
        le=86400,
        description="Seconds between persisted records"
    )
    aggregation: AggregationMode = Field(
        default=AggregationMode.AVERAGE,
        description="Window aggregation policy"
    )
    align_to_minute: bool = Field(
        default=False,
        description="Phase-lock flushes to wall-clock multiples of the period"
    )

    @field_validator('aggregation', mode='before')
    @classmethod
    def accept_legacy_aggregation(cls, v: Any) -> Any:
        """Stored settings may still use the short 'avg' spelling."""
        if isinstance(v, str) and v.lower() == "avg":
            return AggregationMode.AVERAGE
        return v

    @property
    def interval_ms(self) -> int:
        """Requested period in milliseconds, before the scheduler floor."""
        return self.interval_seconds * 1000


def _default_operations() -> Dict[OvenId, List[str]]:
    return {oven_id: list(DEFAULT_OPERATIONS) for oven_id in OvenId}


def _default_logging() -> Dict[OvenId, LoggingSpec]:
    return {oven_id: LoggingSpec() for oven_id in OvenId}


class OperatorSettings(BaseModel):
    """Complete operator settings for both ovens."""

    model_config = {
        "validate_assignment": True,
        "extra": "forbid",
        "json_schema_extra": {
            "example": {
                "operations": {"oven1": ["Colle Blanche"], "oven2": ["Vernis Dolphon"]},
                "logging": {
                    "oven1": {"interval_seconds": 60, "aggregation": "average", "align_to_minute": True},
                    "oven2": {"interval_seconds": 30, "aggregation": "last", "align_to_minute": False}
                }
            }
        }
    }

    operations: Dict[OvenId, List[str]] = Field(default_factory=_default_operations)
    logging: Dict[OvenId, LoggingSpec] = Field(default_factory=_default_logging)

    def model_post_init(self, __context: Any) -> None:
        """Every oven always has an entry."""
        for oven_id in OvenId:
            self.operations.setdefault(oven_id, list(DEFAULT_OPERATIONS))
            self.logging.setdefault(oven_id, LoggingSpec())

    def logging_for(self, oven_id: OvenId) -> LoggingSpec:
        return self.logging[oven_id]

    def operations_for(self, oven_id: OvenId) -> List[str]:
        return self.operations[oven_id]

    def export_dict(self) -> Dict[str, Any]:
        """Export as plain JSON-compatible data."""
        return self.model_dump(mode='json')


class SettingsPatch(BaseModel):
    """Partial settings payload; every field is optional."""

    model_config = {
        "extra": "forbid"
    }

    operations: Optional[Dict[OvenId, Optional[List[str]]]] = None
    logging: Optional[Dict[OvenId, Optional[Dict[str, Any]]]] = None


def merge_settings(base: OperatorSettings, patch: Optional[Dict[str, Any]]) -> OperatorSettings:
    """Merge a partial settings payload over ``base``.

    Operation lists are replaced per oven when present. Logging specs are
    merged field by field per oven, so ``{"logging": {"oven1": {"aggregation": "last"}}}``
    keeps oven1's interval and alignment. Unknown keys, unknown ovens and
    invalid values raise ``pydantic.ValidationError``.
    """
    update = SettingsPatch.model_validate(patch or {})
    merged = base.export_dict()

    for oven_id, labels in (update.operations or {}).items():
        if labels is not None:
            merged["operations"][oven_id.value] = labels

    for oven_id, spec in (update.logging or {}).items():
        if spec is not None:
            merged["logging"][oven_id.value] = {**merged["logging"][oven_id.value], **spec}

    return OperatorSettings.model_validate(merged)

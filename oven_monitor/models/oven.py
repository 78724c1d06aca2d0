"""Oven identifiers, readings, sessions and persisted temperature records."""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class OvenId(str, Enum):
    """The two monitored oven channels."""

    OVEN1 = "oven1"
    OVEN2 = "oven2"

    @property
    def frame_field(self) -> str:
        """Name of this oven's field in a transport frame."""
        return FRAME_FIELDS[self]

    @property
    def session_key(self) -> str:
        """Key of this oven's active session in the key-value store."""
        return f"activeSession-{self.value}"

    @property
    def sessions_collection(self) -> str:
        """Document collection holding this oven's session records."""
        return f"sessions_{self.value}"


FRAME_FIELDS: Dict[OvenId, str] = {
    OvenId.OVEN1: "temp1",
    OvenId.OVEN2: "temp2",
}


class OvenStatus(str, Enum):
    """Session state of an oven."""

    IDLE = "idle"
    RUNNING = "running"


class Reading(BaseModel):
    """A single decoded temperature sample."""

    model_config = {
        "extra": "forbid",
        "frozen": True
    }

    oven_id: OvenId
    value: float = Field(description="Temperature in degrees Celsius")
    received_at: datetime = Field(default_factory=utc_now)

    @field_validator('value')
    @classmethod
    def validate_finite(cls, v: float) -> float:
        """Reject NaN and infinities."""
        if not math.isfinite(v):
            raise ValueError("value must be a finite number")
        return v

    def __str__(self) -> str:
        return f"{self.oven_id.value}: {self.value:.2f}"


class ActiveSession(BaseModel):
    """Operator-declared tracking interval currently running on an oven."""

    model_config = {
        "validate_assignment": True,
        "extra": "forbid"
    }

    session_id: str = Field(min_length=1)
    product_id: str = Field(min_length=1, description="Production order number")
    operation: str = Field(description="Operation label")
    quantity: int = Field(ge=0)
    start_time: datetime

    def to_storage(self) -> Dict[str, Any]:
        """Serialize for the key-value store."""
        return self.model_dump(mode='json')


class TemperatureRecord(BaseModel):
    """Aggregated temperature persisted once per flush."""

    model_config = {
        "extra": "forbid"
    }

    oven_id: OvenId
    temperature: float
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator('temperature')
    @classmethod
    def round_temperature(cls, v: float) -> float:
        """Temperatures are stored with two decimals."""
        return round(v, 2)

    def to_document(self) -> Dict[str, Any]:
        return {
            "ovenId": self.oven_id.value,
            "temperature": self.temperature,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'TemperatureRecord':
        return cls(
            oven_id=document["ovenId"],
            temperature=document["temperature"],
            timestamp=document["timestamp"],
        )


class SessionRecord(BaseModel):
    """Durable session metadata, independent of the raw samples."""

    id: str
    oven_id: OvenId
    product_id: str = ""
    operation: str = ""
    quantity: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'SessionRecord':
        """Build from a stored document, tolerating missing or loosely typed fields."""
        quantity = document.get("quantity")
        try:
            quantity = int(float(quantity)) if quantity is not None else 0
        except (TypeError, ValueError):
            quantity = 0

        return cls(
            id=str(document["_id"]),
            oven_id=document["ovenId"],
            product_id=str(document.get("productId") or ""),
            operation=str(document.get("operation") or ""),
            quantity=quantity,
            start_time=document.get("startTime"),
            end_time=document.get("endTime"),
        )

    @property
    def is_open(self) -> bool:
        return self.end_time is None

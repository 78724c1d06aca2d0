"""Result values returned across the command boundary."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .oven import OvenStatus


class ErrorCode(str, Enum):
    """Reasons a session command was rejected."""

    ALREADY_RUNNING = "already_running"
    NOT_RUNNING = "not_running"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"


class CommandResult(BaseModel):
    """Outcome of a start/stop command."""

    ok: bool
    error: Optional[ErrorCode] = None

    @classmethod
    def success(cls) -> 'CommandResult':
        return cls(ok=True)

    @classmethod
    def failure(cls, error: ErrorCode) -> 'CommandResult':
        return cls(ok=False, error=error)


class OvenState(BaseModel):
    """Status summary for one oven."""

    status: OvenStatus
    temperature: Optional[float] = None


class ActiveSessionView(BaseModel):
    """What an operator screen needs to restore its state."""

    is_running: bool
    temperature: Optional[float] = None
    product_id: Optional[str] = None
    operation: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    start_time: Optional[datetime] = None

"""Decoding of newline-delimited transport frames into per-oven readings."""

import json
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from ..errors import MalformedFrameError
from ..models import OvenId, Reading, utc_now


logger = structlog.get_logger(__name__)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite constant {name}")


def decode_frame(line: str) -> Dict[str, Any]:
    """Decode one line as a JSON object.

    Raises MalformedFrameError when the line is not a JSON object.
    """
    text = line.strip()
    if not text:
        raise MalformedFrameError("empty line", line)

    try:
        data = json.loads(text, parse_constant=_reject_constant)
    except ValueError as e:
        raise MalformedFrameError(str(e), line) from e

    if not isinstance(data, dict):
        raise MalformedFrameError(f"expected object, got {type(data).__name__}", line)

    return data


def _numeric(value: Any) -> Optional[float]:
    # bool is an int subclass but never a temperature
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    return value if math.isfinite(value) else None


def parse_frame(line: str, received_at: Optional[datetime] = None) -> List[Reading]:
    """Turn a transport line into zero, one or two readings.

    Never raises: undecodable lines and non-numeric fields are dropped.
    """
    try:
        data = decode_frame(line)
    except MalformedFrameError as e:
        logger.debug("Dropping malformed frame", error=e.message)
        return []

    received_at = received_at or utc_now()
    readings = []

    for oven_id in OvenId:
        value = _numeric(data.get(oven_id.frame_field))
        if value is None:
            continue
        readings.append(Reading(oven_id=oven_id, value=value, received_at=received_at))

    return readings


__all__ = ["decode_frame", "parse_frame"]

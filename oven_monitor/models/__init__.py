"""Data models for the oven monitoring system."""

from .oven import (
    OvenId,
    OvenStatus,
    Reading,
    ActiveSession,
    TemperatureRecord,
    SessionRecord,
    utc_now,
)
from .operator_settings import (
    AggregationMode,
    LoggingSpec,
    OperatorSettings,
    SettingsPatch,
    merge_settings,
    DEFAULT_OPERATIONS,
)
from .command_result import CommandResult, ErrorCode, OvenState, ActiveSessionView
from .monitor_configuration import (
    MonitorConfiguration,
    SerialSettings,
    StorageSettings,
    SchedulerSettings,
)

__all__ = [
    "OvenId",
    "OvenStatus",
    "Reading",
    "ActiveSession",
    "TemperatureRecord",
    "SessionRecord",
    "utc_now",
    "AggregationMode",
    "LoggingSpec",
    "OperatorSettings",
    "SettingsPatch",
    "merge_settings",
    "DEFAULT_OPERATIONS",
    "CommandResult",
    "ErrorCode",
    "OvenState",
    "ActiveSessionView",
    "MonitorConfiguration",
    "SerialSettings",
    "StorageSettings",
    "SchedulerSettings",
]

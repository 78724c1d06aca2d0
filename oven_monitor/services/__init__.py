"""Core services for the oven monitoring system."""

from .frame_parser import parse_frame, decode_frame
from .live_state import LiveStateCache
from .accumulator import WindowAccumulator, WindowTotals
from .document_store import DocumentStore, SQLiteDocumentStore
from .state_store import KeyValueStore
from .logging_scheduler import (
    LoggingScheduler,
    SchedulerState,
    TimerBackend,
    TimerHandle,
    AsyncioTimerBackend
)
from .session_registry import SessionRegistry
from .flush_engine import FlushEngine, aggregate_window
from .settings_service import SettingsService
from .oven_controller import OvenController

__all__ = [
    "parse_frame",
    "decode_frame",
    "LiveStateCache",
    "WindowAccumulator",
    "WindowTotals",
    "DocumentStore",
    "SQLiteDocumentStore",
    "KeyValueStore",
    "LoggingScheduler",
    "SchedulerState",
    "TimerBackend",
    "TimerHandle",
    "AsyncioTimerBackend",
    "SessionRegistry",
    "FlushEngine",
    "aggregate_window",
    "SettingsService",
    "OvenController"
]

"""OvenController: the command boundary of the oven monitor.

Wires the parser, live cache, accumulator, session registry, scheduler and
flush engine together. Session commands return CommandResult values; the
domain exceptions behind them never escape this class.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..errors import (
    AlreadyRunningError,
    NotRunningError,
    PersistenceError,
    SessionNotFoundError,
    StorageUnavailableError
)
from ..models import (
    ActiveSessionView,
    CommandResult,
    ErrorCode,
    LoggingSpec,
    OperatorSettings,
    OvenId,
    OvenState,
    Reading,
    SessionRecord,
    TemperatureRecord,
    utc_now
)
from .accumulator import WindowAccumulator
from .document_store import DocumentStore
from .flush_engine import FlushEngine
from .frame_parser import parse_frame
from .live_state import LiveStateCache
from .logging_scheduler import LoggingScheduler
from .session_registry import SessionRegistry
from .settings_service import SettingsService
from .state_store import KeyValueStore


logger = structlog.get_logger(__name__)

DEFAULT_SESSION_LIMIT = 500
DEFAULT_TEMPERATURE_LIMIT = 20000

_EPOCH = datetime.fromtimestamp(0, timezone.utc)


class OvenController:
    """Single entry point for ingestion, session commands and settings."""

    def __init__(self,
                 store: DocumentStore,
                 state_store: KeyValueStore,
                 settings: Optional[SettingsService] = None,
                 scheduler: Optional[LoggingScheduler] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.state_store = state_store
        self.settings = settings or SettingsService(state_store)
        self.scheduler = scheduler or LoggingScheduler()

        self.live_state = LiveStateCache()
        self.accumulator = WindowAccumulator()
        self.registry = SessionRegistry(
            store,
            state_store,
            self.accumulator,
            program=self._program_oven,
            cancel=self.scheduler.cancel_all,
            final_flush=self._final_flush,
            clock=clock
        )
        self.flush_engine = FlushEngine(
            self.registry,
            self.accumulator,
            self.live_state,
            store,
            self.settings.logging_for,
            clock=clock
        )

        self._programmed: Dict[OvenId, LoggingSpec] = {}
        self.settings.add_listener(self._on_settings_changed)

        # Performance tracking
        self.line_count = 0
        self.reading_count = 0

    # Ingestion

    def handle_line(self, line: str) -> List[Reading]:
        """Feed one transport line into the live cache and the running windows."""
        self.line_count += 1
        readings = parse_frame(line)

        for reading in readings:
            self.live_state.update(reading.oven_id, reading.value, reading.received_at)
            # Idle windows stay empty, so a new session starts from a clean window
            if self.registry.is_running(reading.oven_id):
                self.accumulator.add(reading.oven_id, reading.value)

        self.reading_count += len(readings)
        return readings

    # Session commands

    async def start_logging(self,
                            oven_id: OvenId,
                            product_id: str,
                            operation: str,
                            quantity: int) -> CommandResult:
        try:
            await self.registry.start(oven_id, product_id, operation, quantity)
        except AlreadyRunningError:
            logger.warning("Start rejected, session already running", oven_id=oven_id.value)
            return CommandResult.failure(ErrorCode.ALREADY_RUNNING)
        except ValueError as e:
            logger.warning("Start rejected, invalid request", oven_id=oven_id.value, error=str(e))
            return CommandResult.failure(ErrorCode.INVALID_REQUEST)
        except (StorageUnavailableError, PersistenceError) as e:
            logger.error("Start rejected, storage unavailable", oven_id=oven_id.value, error=str(e))
            return CommandResult.failure(ErrorCode.STORAGE_UNAVAILABLE)

        return CommandResult.success()

    async def stop_logging(self, oven_id: OvenId) -> CommandResult:
        try:
            await self.registry.stop(oven_id)
        except NotRunningError:
            logger.warning("Stop rejected, no session running", oven_id=oven_id.value)
            return CommandResult.failure(ErrorCode.NOT_RUNNING)
        except (StorageUnavailableError, PersistenceError) as e:
            logger.error("Stop rejected, storage unavailable", oven_id=oven_id.value, error=str(e))
            return CommandResult.failure(ErrorCode.STORAGE_UNAVAILABLE)

        return CommandResult.success()

    # Queries

    def get_oven_state(self, oven_id: OvenId) -> OvenState:
        return OvenState(
            status=self.registry.status(oven_id),
            temperature=self.live_state.get(oven_id)
        )

    def get_active_session(self, oven_id: OvenId) -> ActiveSessionView:
        temperature = self.live_state.get(oven_id)
        session = self.registry.get_active(oven_id)
        if session is None:
            return ActiveSessionView(is_running=False, temperature=temperature)

        return ActiveSessionView(
            is_running=True,
            temperature=temperature,
            product_id=session.product_id,
            operation=session.operation,
            quantity=session.quantity,
            start_time=session.start_time
        )

    def get_latest_temperature(self, oven_id: OvenId) -> Optional[float]:
        return self.live_state.get(oven_id)

    # Settings

    def get_settings(self) -> OperatorSettings:
        return self.settings.get()

    def save_settings(self, patch: Optional[Dict[str, Any]]) -> OperatorSettings:
        """Merge and persist a settings patch.

        Running ovens whose logging spec changed are reprogrammed; the others
        keep their pending window and timer.
        """
        return self.settings.save(patch)

    def _on_settings_changed(self, settings: OperatorSettings) -> None:
        for oven_id in OvenId:
            if self.registry.is_running(oven_id) and self._programmed.get(oven_id) == settings.logging_for(oven_id):
                continue
            self._program_oven(oven_id)

    # History

    async def list_sessions(self, limit: int = DEFAULT_SESSION_LIMIT) -> List[SessionRecord]:
        """Session records of both ovens, newest first."""
        records = []
        for oven_id in OvenId:
            documents = await self.store.find(
                oven_id.sessions_collection,
                sort_field="startTime",
                descending=True,
                limit=limit
            )
            records.extend(SessionRecord.from_document(document) for document in documents)

        records.sort(key=lambda record: record.start_time or _EPOCH,
                     reverse=True)
        return records[:limit]

    async def get_session(self, oven_id: OvenId, session_id: str) -> SessionRecord:
        document = await self.store.find_one(oven_id.sessions_collection, session_id)
        if document is None:
            raise SessionNotFoundError(oven_id.value, session_id)
        return SessionRecord.from_document(document)

    async def get_session_temperatures(self,
                                       product_id: str,
                                       start: Optional[datetime] = None,
                                       end: Optional[datetime] = None,
                                       limit: int = DEFAULT_TEMPERATURE_LIMIT) -> List[TemperatureRecord]:
        """Temperature records of one product, oldest first, optionally bounded in time."""
        documents = await self.store.find(
            product_id.strip(),
            range_field="timestamp",
            gte=start,
            lte=end,
            sort_field="timestamp",
            limit=limit
        )
        return [TemperatureRecord.from_document(document) for document in documents]

    # Lifecycle

    async def restore(self) -> List[OvenId]:
        """Resume logging for every oven left running by a previous process."""
        restored = await self.registry.restore()
        if restored:
            logger.info("Resumed logging", ovens=[oven_id.value for oven_id in restored])
        return restored

    async def shutdown(self) -> None:
        """Cancel every timer and wait for flushes already in flight."""
        self.scheduler.cancel_everything()
        await self.scheduler.wait_idle()
        logger.info("Oven controller stopped")

    def _program_oven(self, oven_id: OvenId) -> None:
        if self.registry.get_active(oven_id) is None:
            self._programmed.pop(oven_id, None)
            self.scheduler.cancel_all(oven_id)
            return

        spec = self.settings.logging_for(oven_id)
        self.scheduler.program(oven_id, spec, self.flush_engine.flush)
        self._programmed[oven_id] = spec

    async def _final_flush(self, oven_id: OvenId) -> None:
        await self.scheduler.flush_now(oven_id, self.flush_engine.flush)

    def get_stats(self) -> Dict[str, Any]:
        """Get controller statistics for observability."""
        return {
            "line_count": self.line_count,
            "reading_count": self.reading_count,
            "ovens": {
                oven_id.value: {
                    "status": self.registry.status(oven_id).value,
                    "temperature": self.live_state.get(oven_id),
                    "window_samples": self.accumulator.peek(oven_id)[1],
                }
                for oven_id in OvenId
            },
            "flush": {
                "flush_count": self.flush_engine.flush_count,
                "records_written": self.flush_engine.records_written,
                "failure_count": self.flush_engine.failure_count,
            },
            "scheduler": self.scheduler.get_stats(),
        }


__all__ = ["OvenController", "DEFAULT_SESSION_LIMIT", "DEFAULT_TEMPERATURE_LIMIT"]

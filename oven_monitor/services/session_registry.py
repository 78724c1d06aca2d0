"""SessionRegistry: at most one active session per oven, durable across restarts."""

from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Set

import structlog
from pydantic import ValidationError

from ..errors import (
    AlreadyRunningError,
    NotRunningError,
    OvenMonitorError,
    PersistenceError,
    StorageUnavailableError
)
from ..models import ActiveSession, OvenId, OvenStatus, utc_now
from .accumulator import WindowAccumulator
from .document_store import DocumentStore
from .state_store import KeyValueStore


logger = structlog.get_logger(__name__)

OvenHook = Callable[[OvenId], None]
AsyncOvenHook = Callable[[OvenId], Awaitable[None]]


def _noop(oven_id: OvenId) -> None:
    return None


async def _async_noop(oven_id: OvenId) -> None:
    return None


class SessionRegistry:
    """Idle/Running state machine per oven.

    The registry owns session identity and durability. Timer programming and
    the final flush are reached through hooks wired by the controller:

        program(oven_id)       re-arm (or disarm) the oven's logging timers
        cancel(oven_id)        cancel the oven's logging timers
        final_flush(oven_id)   flush the current window, awaited during stop
    """

    def __init__(self,
                 store: DocumentStore,
                 state_store: KeyValueStore,
                 accumulator: WindowAccumulator,
                 program: OvenHook = _noop,
                 cancel: OvenHook = _noop,
                 final_flush: AsyncOvenHook = _async_noop,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.state_store = state_store
        self.accumulator = accumulator
        self.program = program
        self.cancel = cancel
        self.final_flush = final_flush
        self.clock = clock

        self._active: Dict[OvenId, ActiveSession] = {}
        # Ovens with a start or stop awaiting persistence
        self._transitioning: Set[OvenId] = set()

    def get_active(self, oven_id: OvenId) -> Optional[ActiveSession]:
        return self._active.get(oven_id)

    def status(self, oven_id: OvenId) -> OvenStatus:
        return OvenStatus.RUNNING if oven_id in self._active else OvenStatus.IDLE

    def is_running(self, oven_id: OvenId) -> bool:
        return oven_id in self._active

    async def start(self,
                    oven_id: OvenId,
                    product_id: str,
                    operation: str,
                    quantity: int) -> ActiveSession:
        """Open a session on an idle oven.

        Raises AlreadyRunningError, StorageUnavailableError, PersistenceError,
        or ValueError for a blank product id or a negative quantity.
        """
        if oven_id in self._active or oven_id in self._transitioning:
            raise AlreadyRunningError(oven_id.value)
        if not self.store.is_ready:
            raise StorageUnavailableError(oven_id=oven_id.value)

        product_id = product_id.strip()
        if not product_id:
            raise ValueError("product_id must not be empty")
        if quantity < 0:
            raise ValueError("quantity must not be negative")

        start_time = self.clock()

        self._transitioning.add(oven_id)
        try:
            session_id = await self.store.insert_one(oven_id.sessions_collection, {
                "productId": product_id,
                "ovenId": oven_id.value,
                "operation": operation,
                "quantity": quantity,
                "startTime": start_time,
                "endTime": None,
            })

            session = ActiveSession(
                session_id=session_id,
                product_id=product_id,
                operation=operation,
                quantity=quantity,
                start_time=start_time
            )

            try:
                self.state_store.set(oven_id.session_key, session.to_storage())
            except PersistenceError:
                await self._close_orphan(oven_id, session_id)
                raise

            # No suspension from here on: readings before this point never
            # reach the new session's first window
            self._active[oven_id] = session
            self.accumulator.reset(oven_id)
            self.program(oven_id)
        finally:
            self._transitioning.discard(oven_id)

        logger.info("Session started",
                    oven_id=oven_id.value,
                    session_id=session.session_id,
                    product_id=session.product_id,
                    operation=session.operation,
                    quantity=session.quantity)
        return session

    async def stop(self, oven_id: OvenId) -> ActiveSession:
        """Close the running session after one final flush.

        Raises NotRunningError, StorageUnavailableError or PersistenceError.
        """
        session = self._active.get(oven_id)
        if session is None or oven_id in self._transitioning:
            raise NotRunningError(oven_id.value)
        if not self.store.is_ready:
            raise StorageUnavailableError(oven_id=oven_id.value)

        self._transitioning.add(oven_id)
        try:
            self.cancel(oven_id)
            await self.final_flush(oven_id)

            end_time = self.clock()
            try:
                found = await self.store.update_one(
                    oven_id.sessions_collection,
                    session.session_id,
                    {"endTime": end_time}
                )
            except OvenMonitorError as e:
                logger.error("Failed to record session end, session kept running",
                             oven_id=oven_id.value,
                             session_id=session.session_id,
                             error=str(e))
                self.program(oven_id)
                raise

            if not found:
                logger.warning("Session record missing while stopping",
                               oven_id=oven_id.value, session_id=session.session_id)

            try:
                self.state_store.delete(oven_id.session_key)
            except PersistenceError as e:
                # restore() discards keys whose record is already closed
                logger.error("Failed to clear active session key",
                             oven_id=oven_id.value, error=str(e))

            del self._active[oven_id]
            self.accumulator.reset(oven_id)
        finally:
            self._transitioning.discard(oven_id)

        logger.info("Session stopped",
                    oven_id=oven_id.value,
                    session_id=session.session_id,
                    product_id=session.product_id)
        return session

    async def restore(self) -> List[OvenId]:
        """Reload durable active sessions and re-arm their timers."""
        restored = []

        for oven_id in OvenId:
            if oven_id in self._active:
                continue

            data = self.state_store.get(oven_id.session_key)
            if data is None:
                continue

            try:
                session = ActiveSession.model_validate(data)
            except ValidationError as e:
                logger.warning("Discarding unreadable active session",
                               oven_id=oven_id.value, error=str(e))
                self._forget(oven_id)
                continue

            if await self._record_closed(oven_id, session.session_id):
                logger.warning("Discarding active session whose record is closed",
                               oven_id=oven_id.value, session_id=session.session_id)
                self._forget(oven_id)
                continue

            self._active[oven_id] = session
            self.accumulator.reset(oven_id)
            self.program(oven_id)
            restored.append(oven_id)

            logger.info("Session restored",
                        oven_id=oven_id.value,
                        session_id=session.session_id,
                        product_id=session.product_id,
                        start_time=session.start_time.isoformat())

        return restored

    async def _record_closed(self, oven_id: OvenId, session_id: str) -> bool:
        if not self.store.is_ready:
            return False
        try:
            document = await self.store.find_one(oven_id.sessions_collection, session_id)
        except OvenMonitorError as e:
            logger.warning("Could not verify session record", oven_id=oven_id.value, error=str(e))
            return False
        return document is not None and document.get("endTime") is not None

    async def _close_orphan(self, oven_id: OvenId, session_id: str) -> None:
        try:
            await self.store.update_one(oven_id.sessions_collection, session_id, {"endTime": self.clock()})
        except OvenMonitorError as e:
            logger.error("Failed to close orphan session record",
                         oven_id=oven_id.value, session_id=session_id, error=str(e))

    def _forget(self, oven_id: OvenId) -> None:
        try:
            self.state_store.delete(oven_id.session_key)
        except PersistenceError as e:
            logger.error("Failed to clear active session key", oven_id=oven_id.value, error=str(e))


__all__ = ["SessionRegistry"]

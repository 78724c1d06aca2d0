"""
Serial Line Transport for the Oven Sensor Board.

Reads newline-delimited UTF-8 frames from the sensor board's serial port and
hands each non-empty line to a callback on the event loop.

Classes:
    SerialLineReader: pyserial reader with reconnect and exponential backoff
    DemoLineSource: synthetic frame generator for running without hardware
    LinkState: connection state of a line source

Features:
    - Blocking reads run in the default executor
    - Undecodable bytes are replaced, never raised
    - Port loss recovery (0.5 s doubling up to 30 s by default)
"""

import asyncio
import logging
import random
from enum import Enum
from typing import Any, Callable, Dict, Optional

import serial

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], Any]


class LinkState(Enum):
    """Connection state enumeration."""
    STOPPED = "stopped"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class SerialLineReader:
    """
    Line reader for the sensor board serial port.

    Opens the port, reads one line at a time in an executor thread and
    calls ``on_line`` with the decoded, stripped text. Any serial or OS error
    closes the port and schedules a reopen with exponential backoff.
    """

    def __init__(
        self,
        port: str,
        baudrate: int,
        on_line: LineCallback,
        read_timeout: float = 1.0,
        initial_retry_delay: float = 0.5,
        max_retry_delay: float = 30.0,
        backoff_multiplier: float = 2.0,
        serial_factory: Optional[Callable[..., Any]] = None
    ):
        """
        Initialize the reader.

        Args:
            port: Serial device path
            baudrate: Line speed
            on_line: Called with every non-empty decoded line
            read_timeout: Blocking read timeout in seconds
            initial_retry_delay: First reconnect delay in seconds
            max_retry_delay: Upper bound for the reconnect delay
            backoff_multiplier: Delay multiplier after each failed attempt
            serial_factory: Replacement for ``serial.Serial`` (tests)
        """
        self.port = port
        self.baudrate = baudrate
        self.on_line = on_line
        self.read_timeout = read_timeout
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self.backoff_multiplier = backoff_multiplier
        self.serial_factory = serial_factory or serial.Serial

        self._serial = None
        self._partial = bytearray()
        self._task: Optional[asyncio.Task] = None
        self._state = LinkState.STOPPED
        self._current_retry_delay = initial_retry_delay

        # Statistics
        self.lines_read = 0
        self.connect_count = 0
        self.error_count = 0

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the read loop as a task on the running loop."""
        if self.is_running:
            logger.warning("Serial reader already running")
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the read loop and close the port."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self._close()
        self._state = LinkState.STOPPED
        logger.info(f"Serial reader stopped ({self.port})")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()

        while True:
            try:
                if self._serial is None:
                    self._state = LinkState.CONNECTING
                    await loop.run_in_executor(None, self._open)
                    self._state = LinkState.CONNECTED
                    self._current_retry_delay = self.initial_retry_delay

                raw = await loop.run_in_executor(None, self._serial.readline)
                if raw:
                    self._handle_raw(raw)

            except asyncio.CancelledError:
                raise
            except (serial.SerialException, OSError) as e:
                self.error_count += 1
                self._close()
                self._state = LinkState.RECONNECTING
                logger.warning(f"Serial port {self.port} error: {e}; "
                               f"retrying in {self._current_retry_delay:.1f}s")
                await asyncio.sleep(self._current_retry_delay)

                # Exponential backoff
                self._current_retry_delay = min(
                    self._current_retry_delay * self.backoff_multiplier,
                    self.max_retry_delay
                )

    def _open(self) -> None:
        self._serial = self.serial_factory(self.port, self.baudrate, timeout=self.read_timeout)
        self.connect_count += 1
        logger.info(f"Serial port opened: {self.port} @ {self.baudrate}")

    def _close(self) -> None:
        self._partial.clear()
        if self._serial is not None:
            try:
                self._serial.close()
            except (serial.SerialException, OSError) as e:
                logger.debug(f"Error closing serial port: {e}")
            finally:
                self._serial = None

    def _handle_raw(self, raw: bytes) -> None:
        # readline() returns a partial line when the read timeout expires
        self._partial.extend(raw)
        if not self._partial.endswith(b"\n"):
            return

        line = bytes(self._partial).decode('utf-8', errors='replace').strip()
        self._partial.clear()
        if not line:
            return

        self.lines_read += 1
        try:
            self.on_line(line)
        except Exception as e:
            logger.error(f"Line handler failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get reader statistics."""
        return {
            "port": self.port,
            "baudrate": self.baudrate,
            "state": self._state.value,
            "lines_read": self.lines_read,
            "connect_count": self.connect_count,
            "error_count": self.error_count
        }


class DemoLineSource:
    """
    Synthetic frame source.

    Emits ``{"temp1": .., "temp2": ..}`` lines drifting around a setpoint,
    with an occasional noise line to exercise the frame parser.
    """

    def __init__(
        self,
        on_line: LineCallback,
        interval: float = 1.0,
        setpoints: Optional[Dict[str, float]] = None,
        noise_probability: float = 0.02,
        rng: Optional[random.Random] = None
    ):
        self.on_line = on_line
        self.interval = interval
        self.setpoints = setpoints or {"temp1": 180.0, "temp2": 120.0}
        self.noise_probability = noise_probability
        self.rng = rng or random.Random()

        self._values = dict(self.setpoints)
        self._task: Optional[asyncio.Task] = None
        self.lines_read = 0

    @property
    def state(self) -> LinkState:
        if self._task is not None and not self._task.done():
            return LinkState.CONNECTED
        return LinkState.STOPPED

    def next_line(self) -> str:
        """Produce the next synthetic line."""
        if self.rng.random() < self.noise_probability:
            return "#BOOT sensor board"

        parts = []
        for field, setpoint in self.setpoints.items():
            current = self._values[field]
            # Random walk pulled back toward the setpoint
            current += (setpoint - current) * 0.1 + self.rng.uniform(-0.8, 0.8)
            self._values[field] = current
            parts.append(f'"{field}": {current:.2f}')
        return "{" + ", ".join(parts) + "}"

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Demo line source stopped")

    async def _run(self) -> None:
        logger.info("Demo line source started")
        while True:
            line = self.next_line()
            self.lines_read += 1
            try:
                self.on_line(line)
            except Exception as e:
                logger.error(f"Line handler failed: {e}")
            await asyncio.sleep(self.interval)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "port": "demo",
            "state": self.state.value,
            "lines_read": self.lines_read
        }


# Public API exports
__all__ = [
    'SerialLineReader',
    'DemoLineSource',
    'LinkState',
    'LineCallback'
]

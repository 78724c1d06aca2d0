"""Process entry point: wires storage, the controller, the line source and the API."""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional, Dict, Any, Union

import structlog

from ..models import MonitorConfiguration
from ..services import (
    KeyValueStore,
    LoggingScheduler,
    OvenController,
    SettingsService,
    SQLiteDocumentStore
)
from ..lib.api_server import create_app, create_server
from ..lib.config import ConfigManager, ConfigurationError, save_config_to_file
from ..lib.serial_link import DemoLineSource, SerialLineReader


logger = structlog.get_logger(__name__)


def configure_logging(debug: bool = False) -> None:
    """Configure structlog for the services and stdlib logging for the transport."""
    log_level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class OvenMonitorApplication:
    """Owns the long-running components of one monitor process."""

    def __init__(self, configuration: Optional[MonitorConfiguration] = None):
        self.configuration = configuration or MonitorConfiguration()

        # Core components
        self.document_store: Optional[SQLiteDocumentStore] = None
        self.state_store: Optional[KeyValueStore] = None
        self.controller: Optional[OvenController] = None
        self.line_source: Optional[Union[SerialLineReader, DemoLineSource]] = None

        # Runtime state
        self.is_running = False
        self.api_server_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    async def initialize(self, in_memory_storage: bool = False) -> None:
        """Open storage and build the controller."""
        logger.info("Initializing oven monitor application")
        config = self.configuration

        self.document_store = SQLiteDocumentStore(
            database_path=config.storage.database_path,
            in_memory=in_memory_storage
        )
        await self.document_store.initialize()

        self.state_store = KeyValueStore(None if in_memory_storage else config.storage.state_path)

        self.controller = OvenController(
            self.document_store,
            self.state_store,
            settings=SettingsService(self.state_store, config.defaults),
            scheduler=LoggingScheduler(minimum_period_ms=config.scheduler.minimum_period_ms)
        )

        logger.info("Application initialization completed")

    async def start(self,
                    enable_api: bool = True,
                    demo_mode: bool = False,
                    debug: bool = False) -> None:
        """Restore sessions, then start reading lines and serving the API."""
        logger.info("Starting oven monitor application",
                    enable_api=enable_api,
                    demo_mode=demo_mode,
                    serial_port=None if demo_mode else self.configuration.serial.port)

        self.is_running = True
        self._stop_event = asyncio.Event()

        # Resume sessions left running before accepting new readings
        await self.controller.restore()

        if demo_mode:
            self.line_source = DemoLineSource(self.controller.handle_line)
        else:
            serial_settings = self.configuration.serial
            self.line_source = SerialLineReader(
                serial_settings.port,
                serial_settings.baudrate,
                self.controller.handle_line,
                read_timeout=serial_settings.read_timeout_s,
                initial_retry_delay=serial_settings.reconnect_initial_delay_s,
                max_retry_delay=serial_settings.reconnect_max_delay_s
            )
        self.line_source.start()

        if enable_api:
            self.api_server_task = asyncio.create_task(self._run_api_server(debug))

        self._setup_signal_handlers()
        logger.info("All components started successfully")

    async def wait_until_stopped(self) -> None:
        """Block until a shutdown signal arrives or the API server exits."""
        waiters = [asyncio.create_task(self._stop_event.wait())]
        if self.api_server_task:
            waiters.append(self.api_server_task)

        done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            if task is not self.api_server_task:
                task.cancel()

    def request_stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def stop(self) -> None:
        """Stop reading, cancel timers and close storage."""
        if not self.is_running:
            return

        logger.info("Stopping oven monitor application")
        self.is_running = False

        if self.line_source:
            await self.line_source.stop()

        # Running sessions stay open and resume on the next start
        if self.controller:
            await self.controller.shutdown()

        if self.api_server_task and not self.api_server_task.done():
            self.api_server_task.cancel()
            try:
                await self.api_server_task
            except asyncio.CancelledError:
                pass

        if self.document_store:
            await self.document_store.close()

        logger.info("Application stopped successfully")

    def get_status(self) -> Dict[str, Any]:
        """Component readiness plus per-component statistics."""
        status = {
            "application": {
                "is_running": self.is_running,
                "components": {
                    "document_store": self.document_store is not None and self.document_store.is_ready,
                    "line_source": self.line_source is not None,
                    "api_server": self.api_server_task is not None and not self.api_server_task.done()
                }
            },
            "performance": {}
        }

        if self.controller:
            status["performance"]["controller"] = self.controller.get_stats()

        if self.line_source:
            status["performance"]["line_source"] = self.line_source.get_stats()

        if self.document_store:
            status["performance"]["document_store"] = self.document_store.get_storage_stats()

        return status

    def _setup_signal_handlers(self) -> None:
        """SIGINT and SIGTERM request a graceful stop."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread
                logger.debug("Signal handler not installed", signal=sig.name)

    async def _run_api_server(self, debug: bool) -> None:
        """Serve the API in this loop until cancelled."""
        app = create_app(self.controller)
        server = create_server(
            app,
            host=self.configuration.api_host,
            port=self.configuration.api_port,
            debug=debug
        )
        try:
            await server.serve()
        except asyncio.CancelledError:
            server.should_exit = True
            raise
        except (OSError, SystemExit) as e:
            logger.error("API server error", error=str(e))


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oven-monitor",
        description="Two-oven temperature logging over a serial link",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  oven-monitor --config /etc/oven_monitor.yaml
  oven-monitor --demo --in-memory          # synthetic frames, nothing persisted
  oven-monitor --export-config out.yaml    # write the effective configuration and exit
        """
    )
    parser.add_argument("--config", default="oven_monitor.yaml",
                        help="Configuration file (default: %(default)s)")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level")
    parser.add_argument("--demo", action="store_true",
                        help="Read synthetic frames instead of the serial port")
    parser.add_argument("--in-memory", action="store_true",
                        help="Keep documents and session state in memory only")
    parser.add_argument("--no-api", action="store_true", help="Do not start the HTTP API")
    parser.add_argument("--api-port", type=int, help="Override the configured API port")
    parser.add_argument("--export-config", metavar="PATH",
                        help="Write the effective configuration to PATH and exit")
    return parser


async def main_async(argv=None) -> int:
    """Load configuration, then run until stopped. Returns the exit code."""
    args = create_parser().parse_args(argv)

    try:
        configuration = ConfigManager(args.config).load_config()
    except ConfigurationError as e:
        configure_logging(args.debug)
        logger.error("Failed to load configuration", config_path=args.config, error=str(e))
        return 1

    if args.api_port is not None:
        configuration.api_port = args.api_port

    debug = args.debug or configuration.enable_debug_logging
    configure_logging(debug)

    if args.export_config:
        try:
            save_config_to_file(configuration, args.export_config)
        except ConfigurationError as e:
            logger.error("Failed to export configuration", error=str(e))
            return 1
        logger.info("Configuration exported successfully", path=args.export_config)
        return 0

    app = OvenMonitorApplication(configuration)

    try:
        await app.initialize(in_memory_storage=args.in_memory)
        await app.start(enable_api=not args.no_api, demo_mode=args.demo, debug=debug)
        await app.wait_until_stopped()
        return 0

    except Exception as e:
        logger.error("Application error", error=str(e))
        return 1
    finally:
        await app.stop()


def main():
    """Main entry point."""
    try:
        return asyncio.run(main_async())
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())

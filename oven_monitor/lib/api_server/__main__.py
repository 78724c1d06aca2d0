"""CLI interface for the API server."""

import argparse
import asyncio
import json
import sys

import httpx
import structlog
import websockets

from . import create_app, create_server
from ..serial_link import DemoLineSource
from ...services import KeyValueStore, OvenController, SQLiteDocumentStore


logger = structlog.get_logger(__name__)

PROBE_ENDPOINTS = [
    "/health",
    "/stats",
    "/settings",
    "/sessions",
    "/ovens/oven1/state",
    "/ovens/oven2/state",
]


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Oven Monitor API Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m oven_monitor.lib.api_server                  # In-memory server with demo frames on port 5002
  python -m oven_monitor.lib.api_server --port 8080      # Start server on port 8080
  python -m oven_monitor.lib.api_server --debug          # Start server with debug logging
  python -m oven_monitor.lib.api_server --probe          # Check a running server's endpoints and exit
        """
    )

    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind the server to (default: 127.0.0.1)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=5002,
        help="Port to run the server on (default: 5002)"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    parser.add_argument(
        "--probe",
        action="store_true",
        help="Query the endpoints of a running server and exit"
    )

    args = parser.parse_args()

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer(colors=True)
        ],
        wrapper_class=structlog.make_filtering_bound_logger(10 if args.debug else 20),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if args.probe:
        ok = asyncio.run(probe_endpoints(args.host, args.port))
        sys.exit(0 if ok else 1)

    try:
        asyncio.run(serve_demo(args.host, args.port, args.debug))
    except KeyboardInterrupt:
        logger.info("Server stopped by user")


async def serve_demo(host: str, port: int, debug: bool) -> None:
    """Serve the API over in-memory stores fed by synthetic frames."""
    store = SQLiteDocumentStore(in_memory=True)
    await store.initialize()
    controller = OvenController(store, KeyValueStore())
    source = DemoLineSource(controller.handle_line)

    logger.info("Starting API server in demo mode", host=host, port=port)
    source.start()
    try:
        await create_server(create_app(controller), host=host, port=port, debug=debug).serve()
    finally:
        await source.stop()
        await controller.shutdown()
        await store.close()


async def probe_endpoints(host: str, port: int) -> bool:
    """Query every read endpoint and the WebSocket of a running server."""
    base_url = f"http://{host}:{port}"
    ok = True

    logger.info("Probing API endpoints", base_url=base_url)

    async with httpx.AsyncClient(base_url=base_url, timeout=5.0) as client:
        for endpoint in PROBE_ENDPOINTS:
            try:
                response = await client.get(endpoint)
            except httpx.HTTPError as e:
                logger.error("Endpoint unreachable", endpoint=endpoint, error=str(e))
                ok = False
                continue

            if response.status_code == 200:
                logger.info("Endpoint OK", endpoint=endpoint)
            else:
                logger.warning("Endpoint error", endpoint=endpoint, status=response.status_code)
                ok = False

    uri = f"ws://{host}:{port}/ws"
    try:
        async with websockets.connect(uri) as websocket:
            greeting = json.loads(await websocket.recv())
            await websocket.send(json.dumps({"type": "ping"}))
            reply = json.loads(await websocket.recv())
            logger.info("WebSocket OK", greeting=greeting["type"], reply=reply["type"])
    except (OSError, websockets.WebSocketException, ValueError, KeyError) as e:
        logger.error("WebSocket error", uri=uri, error=str(e))
        ok = False

    logger.info("Endpoint probing completed", ok=ok)
    return ok


if __name__ == "__main__":
    main()

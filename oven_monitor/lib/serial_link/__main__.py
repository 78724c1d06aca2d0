"""
CLI Interface for the Serial Line Transport.

Lists serial ports and tails decoded frames from a port (or the demo
source) to check wiring and baud rate before running the monitor.
"""

import argparse
import asyncio
import logging
import sys

from serial.tools import list_ports

from . import SerialLineReader, DemoLineSource
from ...services.frame_parser import parse_frame

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def list_serial_ports() -> bool:
    """
    Print the serial ports visible to pyserial.

    Returns:
        bool: True if at least one port was found
    """
    ports = list(list_ports.comports())
    if not ports:
        print("No serial ports found")
        return False

    for port in ports:
        print(f"{port.device:<20} {port.description}")
    return True


def print_line(line: str) -> None:
    readings = parse_frame(line)
    if not readings:
        print(f"  (dropped) {line}")
        return
    print("  " + "  ".join(str(reading) for reading in readings))


async def tail(port: str, baudrate: int, duration: float, demo: bool) -> None:
    """Print decoded readings for ``duration`` seconds."""
    if demo:
        source = DemoLineSource(print_line, interval=0.5)
    else:
        source = SerialLineReader(port, baudrate, print_line)

    print(f"=== Tailing {'demo source' if demo else port} for {duration:.0f}s ===")
    source.start()
    try:
        await asyncio.sleep(duration)
    finally:
        await source.stop()

    print(f"Lines read: {source.lines_read}")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Oven sensor serial link CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('ports', help='List serial ports')

    tail_parser = subparsers.add_parser('tail', help='Print decoded frames')
    tail_parser.add_argument('--port', default='/dev/ttyS2', help='Serial device (default: /dev/ttyS2)')
    tail_parser.add_argument('--baud', type=int, default=115200, help='Baud rate (default: 115200)')
    tail_parser.add_argument('--duration', '-d', type=float, default=10,
                             help='Duration in seconds (default: 10)')
    tail_parser.add_argument('--demo', action='store_true', help='Use the synthetic frame source')

    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command == 'tail':
        asyncio.run(tail(args.port, args.baud, args.duration, args.demo))

    else:
        success = list_serial_ports()
        sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()

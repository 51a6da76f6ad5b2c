"""
ArduCor Light Controller - Main entry point
"""

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Dict, List

from arducor.config import ConfigError, build_controller, load_config
from arducor.devices.multiplexer import DeviceConfigurationError
from arducor.protocol.codec import FRAME_DELIMITER
from arducor.routines.engine import Routine
from arducor.routines.palettes import Color, palette_names
from arducor.transport import LoopbackTransport, StreamTransport

logger = logging.getLogger(__name__)


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description="ArduCor Light Controller")
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to the configuration file (defaults to a single 64 LED device)'
    )
    parser.add_argument('--log-level', default='INFO', help='Logging level (default: INFO)')
    parser.add_argument(
        '--send',
        action='append',
        default=[],
        metavar='FRAME',
        help='Frame to process, e.g. "1,0,0,0;" (repeatable)'
    )
    parser.add_argument('--input', type=str, default=None,
                        help='Read inbound bytes from a file, "-" for stdin')
    parser.add_argument('--ticks', type=int, default=None,
                        help='Stop after this many ticks (default: run until interrupted)')
    parser.add_argument('--show-buffers', action='store_true',
                        help='Print the last frame of every device on exit')
    parser.add_argument('--show-state', action='store_true',
                        help='Print the state of every device as JSON on exit')
    parser.add_argument('--list', action='store_true',
                        help='List routine and color group identifiers and exit')
    return parser.parse_args(argv)


def print_identifiers() -> None:
    print("Routines:")
    for routine in Routine:
        print(f"  {int(routine):2d}  {routine.name.lower()}")
    print("Color groups:")
    for group_id, name in enumerate(palette_names()):
        print(f"  {group_id:2d}  {name}")


def main(argv=None) -> int:
    args = parse_arguments(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if args.list:
        print_identifiers()
        return 0

    buffers: Dict[int, List[Color]] = {}

    def record_buffer(index: int, colors: List[Color]) -> None:
        buffers[index] = colors

    try:
        config = load_config(args.config)
        controller = build_controller(config, driver=record_buffer)
    except (ConfigError, DeviceConfigurationError) as e:
        logger.error(f"Cannot start controller: {e}")
        return 1

    if args.input:
        stream = sys.stdin.buffer if args.input == '-' else open(args.input, 'rb')
        transport = StreamTransport(stream, sys.stdout.buffer)
    else:
        transport = LoopbackTransport()
        for frame in args.send:
            if not frame.endswith(FRAME_DELIMITER):
                frame += FRAME_DELIMITER
            transport.inject(frame)

    max_ticks = args.ticks
    if max_ticks is None and args.send and not args.input:
        max_ticks = 1

    stop_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}. Stopping...")
        stop_event.set()

    previous_handlers = {sig: signal.signal(sig, signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)}

    logger.info(f"Starting ArduCor controller with {len(config.devices)} device(s)")
    try:
        controller.run(transport, stop_event=stop_event, max_ticks=max_ticks)
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)
        if args.input and args.input != '-':
            transport.input_stream.close()

    if isinstance(transport, LoopbackTransport):
        for frame in transport.frames():
            print(frame)

    if args.show_buffers:
        for index in sorted(buffers):
            pixels = ' '.join(f"{r},{g},{b}" for r, g, b in buffers[index])
            print(f"device {index}: {pixels}")

    if args.show_state:
        now_ms = controller.clock()
        for device in controller.multiplexer.devices.values():
            print(json.dumps(device.to_dict(now_ms)))

    logger.info("Controller shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())

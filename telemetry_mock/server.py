"""
Mock CanSat Telemetry WebSocket Server
Streams simulated flight telemetry to ground station clients.
Connect at: ws://<host>:8080/ws
"""

import argparse
import asyncio
import logging
import signal
import sys
from http import HTTPStatus
from typing import Optional
from urllib.parse import urlsplit

import websockets

from .session import SEND_TIMEOUT, UPDATE_INTERVAL, StreamingSession
from .simulator import FlightSimulator, LaunchPhase

logger = logging.getLogger(__name__)

# Configuration
WS_HOST = "0.0.0.0"
WS_PORT = 8080
WS_PATH = "/ws"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def make_handler(simulator: FlightSimulator, interval: float = UPDATE_INTERVAL,
                 send_timeout: Optional[float] = SEND_TIMEOUT):
    """WebSocket handler factory - every connection streams from the same simulator"""

    async def telemetry_handler(websocket):
        session = StreamingSession(websocket, simulator, interval=interval,
                                   send_timeout=send_timeout)
        await session.run()

    return telemetry_handler


def make_path_check(path: str):
    """Reject upgrade requests for anything but the telemetry path with a 404"""

    def process_request(connection, request):
        requested = urlsplit(request.path).path
        if requested != path:
            logger.warning("[!] Rejected upgrade for %s from %s", requested, connection.remote_address)
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    return process_request


def create_server(simulator: FlightSimulator, host: str = WS_HOST, port: int = WS_PORT,
                  path: str = WS_PATH, interval: float = UPDATE_INTERVAL,
                  send_timeout: Optional[float] = SEND_TIMEOUT):
    """
    Build the WebSocket server; use it as an async context manager.

    Origin checks are off, any origin may connect.
    """
    return websockets.serve(
        make_handler(simulator, interval=interval, send_timeout=send_timeout),
        host,
        port,
        process_request=make_path_check(path),
    )


async def serve_forever(args, simulator: FlightSimulator) -> None:
    loop = asyncio.get_running_loop()
    stop = loop.create_future()

    def request_stop():
        if not stop.done():
            stop.set_result(None)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt
            pass

    async with create_server(simulator, args.host, args.port, args.path,
                             interval=args.interval, send_timeout=args.send_timeout):
        logger.info("[WS] WebSocket server listening on ws://%s:%d%s", args.host, args.port, args.path)
        logger.info("[WS] Waiting for ground station connection...")
        await stop

    logger.info("[WS] Server stopped")


def positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value!r}")
    return number


def get_args(argv=None):
    p = argparse.ArgumentParser(description="Mock CanSat Telemetry WebSocket Server")
    p.add_argument("--host", default=WS_HOST, help="Bind address")
    p.add_argument("--port", type=int, default=WS_PORT, help="Bind port")
    p.add_argument("--path", default=WS_PATH, help="WebSocket endpoint path")
    p.add_argument("--interval", type=positive_float, default=UPDATE_INTERVAL,
                   help="Seconds between telemetry samples")
    p.add_argument("--send-timeout", type=positive_float, default=SEND_TIMEOUT,
                   help="Seconds a send may block before the client is dropped")
    p.add_argument("--seed", type=int, default=None, help="Random seed for a reproducible stream")
    p.add_argument("--start-phase", type=int, default=int(LaunchPhase.PRE_LAUNCH),
                   choices=[int(phase) for phase in LaunchPhase],
                   help="Launch phase the simulated flight starts in")
    p.add_argument("--log-level", default="INFO", type=str.upper,
                   choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                   help="Console log level")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = get_args(argv)
    logging.basicConfig(level=args.log_level, format=LOG_FORMAT)

    logger.info("=" * 60)
    logger.info("Mock CanSat Telemetry Server")
    logger.info("=" * 60)
    logger.info("WebSocket URL: ws://localhost:%d%s", args.port, args.path)
    logger.info("Update interval: %.3fs, send timeout: %.1fs", args.interval, args.send_timeout)
    if args.seed is not None:
        logger.info("Random seed: %d", args.seed)
    logger.info("=" * 60)

    simulator = FlightSimulator(seed=args.seed)
    simulator.force_phase(args.start_phase)

    try:
        asyncio.run(serve_forever(args, simulator))
    except OSError as e:
        logger.critical("[!] Could not start server on %s:%d: %s", args.host, args.port, e)
        return 1
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())

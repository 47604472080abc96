"""
Per-connection streaming loop: one sample every interval until the send fails.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from websockets.exceptions import ConnectionClosed

from .simulator import ErrorCode, FlightSimulator, LaunchPhase, TelemetrySample

logger = logging.getLogger(__name__)

# Configuration
UPDATE_INTERVAL = 0.5  # seconds between samples
SEND_TIMEOUT = 2.0     # seconds a single send may block before the client is dropped


class SessionState(Enum):
    CONNECTED = "connected"
    STREAMING = "streaming"
    CLOSED = "closed"


def encode_sample(sample: TelemetrySample) -> str:
    return json.dumps(sample.to_message())


class StreamingSession:
    """
    Streams telemetry to one WebSocket client.

    The first sample goes out one full interval after run() starts. Ticks
    follow a fixed grid; if a slow send overruns a tick, that tick is
    skipped instead of sent late. Nothing the client sends is read.

    A closed connection, a send timeout or an OSError ends the session
    quietly; any other error from send() ends it the same way and is raised.
    """
    def __init__(self, websocket, simulator: FlightSimulator,
                 interval: float = UPDATE_INTERVAL,
                 send_timeout: Optional[float] = SEND_TIMEOUT,
                 clock: Optional[Callable[[], float]] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.websocket = websocket
        self.simulator = simulator
        self.interval = interval
        self.send_timeout = send_timeout
        self.state = SessionState.CONNECTED
        self.samples_sent = 0
        self._clock = clock
        self._sleep = sleep

    @property
    def peer(self):
        return getattr(self.websocket, "remote_address", None)

    async def run(self) -> None:
        clock = self._clock or asyncio.get_running_loop().time
        logger.info("[+] Client connected: %s", self.peer)
        self.state = SessionState.STREAMING

        try:
            deadline = clock()
            while True:
                deadline += self.interval
                now = clock()
                while deadline < now:
                    deadline += self.interval
                await self._sleep(deadline - now)

                sample = self.simulator.advance()
                if not await self._deliver(sample):
                    break
        finally:
            self.state = SessionState.CLOSED
            await self.websocket.close()
            logger.info("[-] Session closed: %s (%d samples sent)", self.peer, self.samples_sent)

    async def _deliver(self, sample: TelemetrySample) -> bool:
        message = encode_sample(sample)
        try:
            await asyncio.wait_for(self.websocket.send(message), timeout=self.send_timeout)
        except ConnectionClosed:
            logger.info("[-] Client disconnected: %s", self.peer)
            return False
        except asyncio.TimeoutError:
            logger.warning("[!] Send to %s timed out after %.1fs, dropping client",
                           self.peer, self.send_timeout)
            return False
        except OSError as e:
            logger.warning("[!] Send to %s failed: %s", self.peer, e)
            return False

        self.samples_sent += 1
        logger.info(
            "Sent: Alt=%.2f Status=%d (%s) Error=%d (%s)",
            sample.altitude,
            sample.launch_phase,
            LaunchPhase(sample.launch_phase).label,
            sample.error_code,
            ErrorCode(sample.error_code).description,
        )
        return True

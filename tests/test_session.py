import asyncio
import json

import numpy as np
import pytest
from websockets.exceptions import ConnectionClosed

from telemetry_mock.session import SessionState, StreamingSession, encode_sample
from telemetry_mock.simulator import FlightSimulator, LaunchPhase


class ManualClock:
    """Time only moves when the session sleeps (or a fake send says it took a while)."""
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


class FakeWebSocket:
    remote_address = ("127.0.0.1", 50000)

    def __init__(self, fail_after=None, clock=None, send_duration=0.0, error=None):
        self.fail_after = fail_after
        self.clock = clock
        self.send_duration = send_duration
        self.error = error
        self.sent = []
        self.attempts = []
        self.closed = False

    async def send(self, message):
        if self.clock is not None:
            self.attempts.append(self.clock.now)
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise self.error or ConnectionClosed(None, None)
        if self.clock is not None:
            self.clock.now += self.send_duration
        self.sent.append(message)

    async def close(self):
        self.closed = True


class HangingWebSocket(FakeWebSocket):
    async def send(self, message):
        await asyncio.sleep(10)


class MaxDraws:
    def random(self):
        return 0.99

    def uniform(self, low, high):
        return high

    def integers(self, low, high):
        return high - 1


def make_simulator(seed=3):
    return FlightSimulator(rng=np.random.default_rng(seed))


def test_first_sample_waits_one_interval_then_one_per_interval():
    clock = ManualClock()
    ws = FakeWebSocket(fail_after=4, clock=clock)
    simulator = make_simulator()
    session = StreamingSession(ws, simulator, interval=0.5, clock=clock, sleep=clock.sleep)

    asyncio.run(session.run())

    assert clock.sleeps == [0.5, 0.5, 0.5, 0.5, 0.5]
    assert ws.attempts == [0.5, 1.0, 1.5, 2.0, 2.5]
    assert len(ws.sent) == 4
    assert session.samples_sent == 4
    assert simulator.ticks == 5


def test_slow_send_skips_missed_ticks():
    clock = ManualClock()
    ws = FakeWebSocket(fail_after=2, clock=clock, send_duration=1.25)
    session = StreamingSession(ws, make_simulator(), interval=0.5, clock=clock, sleep=clock.sleep)

    asyncio.run(session.run())

    assert ws.attempts == [0.5, 2.0, 3.5]
    assert clock.sleeps == [0.5, 0.25, 0.25]


def test_delivery_failure_closes_session():
    clock = ManualClock()
    ws = FakeWebSocket(fail_after=0, clock=clock)
    session = StreamingSession(ws, make_simulator(), clock=clock, sleep=clock.sleep)
    assert session.state is SessionState.CONNECTED

    asyncio.run(session.run())

    assert session.state is SessionState.CLOSED
    assert ws.closed
    assert ws.sent == []


def test_transport_error_closes_session():
    clock = ManualClock()
    ws = FakeWebSocket(fail_after=1, clock=clock, error=ConnectionResetError("peer reset"))
    session = StreamingSession(ws, make_simulator(), clock=clock, sleep=clock.sleep)

    asyncio.run(session.run())

    assert session.state is SessionState.CLOSED
    assert ws.closed
    assert len(ws.sent) == 1


def test_hung_send_is_dropped_after_timeout():
    clock = ManualClock()
    ws = HangingWebSocket()
    session = StreamingSession(ws, make_simulator(), send_timeout=0.05, clock=clock, sleep=clock.sleep)

    asyncio.run(asyncio.wait_for(session.run(), timeout=5))

    assert session.state is SessionState.CLOSED
    assert ws.closed
    assert session.samples_sent == 0


def test_cancelled_session_releases_connection():
    ws = FakeWebSocket()
    session = StreamingSession(ws, make_simulator(), interval=10.0)

    async def scenario():
        task = asyncio.ensure_future(session.run())
        await asyncio.sleep(0.01)
        assert session.state is SessionState.STREAMING
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert session.state is SessionState.CLOSED
    assert ws.closed
    assert ws.sent == []


def test_sent_messages_are_json_records():
    clock = ManualClock()
    ws = FakeWebSocket(fail_after=3, clock=clock)
    session = StreamingSession(ws, make_simulator(), clock=clock, sleep=clock.sleep)

    asyncio.run(session.run())

    for raw in ws.sent:
        msg = json.loads(raw)
        assert set(msg) == {
            "timestamp", "temperature", "voltage", "gyroX", "gyroY", "gyroZ",
            "altitude", "altitudeDiff", "latitude", "longitude",
            "launchStatus", "errorCode", "rawData",
        }
        assert msg["rawData"].startswith("RAW|")


def test_encode_sample_round_trips_altitude():
    sample = FlightSimulator(rng=MaxDraws()).advance()
    assert json.loads(encode_sample(sample))["altitudeDiff"] == sample.altitude_delta


def test_failed_session_does_not_stop_the_other():
    simulator = FlightSimulator(rng=MaxDraws())
    simulator.force_phase(LaunchPhase.CRUISING)
    doomed = FakeWebSocket(fail_after=1)
    survivor = FakeWebSocket(fail_after=6)

    async def scenario():
        await asyncio.gather(
            StreamingSession(doomed, simulator, interval=0.01).run(),
            StreamingSession(survivor, simulator, interval=0.01).run(),
        )

    asyncio.run(asyncio.wait_for(scenario(), timeout=5))

    assert len(doomed.sent) == 1
    assert len(survivor.sent) == 6
    assert doomed.closed and survivor.closed
    assert simulator.ticks == 2 + 7

    altitudes = [json.loads(raw)["altitude"] for raw in survivor.sent]
    assert all(a < b for a, b in zip(altitudes, altitudes[1:]))
    assert simulator.snapshot().altitude == 50.0 * 9


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        StreamingSession(FakeWebSocket(), make_simulator(), interval=0)


def test_unexpected_send_error_still_closes_session():
    clock = ManualClock()
    ws = FakeWebSocket(fail_after=1, clock=clock, error=RuntimeError("encoder blew up"))
    session = StreamingSession(ws, make_simulator(), clock=clock, sleep=clock.sleep)

    with pytest.raises(RuntimeError):
        asyncio.run(session.run())

    assert session.state is SessionState.CLOSED
    assert ws.closed
    assert len(ws.sent) == 1

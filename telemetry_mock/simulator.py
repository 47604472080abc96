"""
Simulated flight state for the mock CanSat telemetry server.

One FlightState lives for the whole process and every connected client
advances it. Each tick produces a TelemetrySample in the JSON shape the
ground station expects.
"""

import threading
import time
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, Callable, Dict, Optional

import numpy as np

# Configuration
ORIGIN_LATITUDE = -7.7714
ORIGIN_LONGITUDE = 110.3775

PHASE_ADVANCE_PROBABILITY = 0.05
ERROR_PROBABILITY = 0.10

MAX_CLIMB_STEP = 50.0   # meters per tick
MAX_DESCENT_STEP = 30.0
GPS_DRIFT = 0.0005      # degrees per tick, either direction

TEMPERATURE_RANGE = (20.0, 35.0)
VOLTAGE_RANGE = (11.1, 12.6)
GYRO_RANGE = (-180.0, 180.0)


class LaunchPhase(IntEnum):
    PRE_LAUNCH = 0
    READY_TO_LAUNCH = 1
    ASCENDING = 2
    CRUISING = 3
    APOGEE = 4
    DESCENDING = 5
    LANDED = 6

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


class ErrorCode(IntEnum):
    NONE = 0
    CONTAINER_DESCENT_RATE = 1
    PAYLOAD_DESCENT_RATE = 2
    CONTAINER_POSITION = 3
    PAYLOAD_POSITION = 4
    RELEASE_FAILURE = 5

    @property
    def description(self) -> str:
        return _ERROR_DESCRIPTIONS[self]


_ERROR_DESCRIPTIONS = {
    ErrorCode.NONE: "No error",
    ErrorCode.CONTAINER_DESCENT_RATE: "Container descent rate failure",
    ErrorCode.PAYLOAD_DESCENT_RATE: "Science payload descent rate failure",
    ErrorCode.CONTAINER_POSITION: "Container position failure",
    ErrorCode.PAYLOAD_POSITION: "Science payload position failure",
    ErrorCode.RELEASE_FAILURE: "Release failure",
}


@dataclass
class FlightState:
    altitude: float = 0.0
    previous_altitude: float = 0.0
    latitude: float = ORIGIN_LATITUDE
    longitude: float = ORIGIN_LONGITUDE
    launch_phase: int = int(LaunchPhase.PRE_LAUNCH)


@dataclass(frozen=True)
class TelemetrySample:
    timestamp: int
    temperature: float
    voltage: float
    gyro_x: float
    gyro_y: float
    gyro_z: float
    altitude: float
    altitude_delta: float
    latitude: float
    longitude: float
    launch_phase: int
    error_code: int
    diagnostic_text: str

    def to_message(self) -> Dict[str, Any]:
        """Wire record sent to the ground station, one per WebSocket message."""
        return {
            "timestamp": self.timestamp,
            "temperature": self.temperature,
            "voltage": self.voltage,
            "gyroX": self.gyro_x,
            "gyroY": self.gyro_y,
            "gyroZ": self.gyro_z,
            "altitude": self.altitude,
            "altitudeDiff": self.altitude_delta,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "launchStatus": self.launch_phase,
            "errorCode": self.error_code,
            "rawData": self.diagnostic_text,
        }


def advance_state(state: FlightState, rng, now: float) -> TelemetrySample:
    """
    Advance the flight state by one tick and describe the result.

    Parameters:
    -----------
    state: FlightState, mutated in place
    rng: anything with numpy Generator's random(), uniform() and integers()
    now: wall clock time in seconds since the epoch

    Returns:
    --------
    TelemetrySample for this tick
    """
    timestamp = int(now)

    if state.launch_phase < LaunchPhase.LANDED and rng.random() < PHASE_ADVANCE_PROBABILITY:
        state.launch_phase += 1

    if LaunchPhase.ASCENDING <= state.launch_phase < LaunchPhase.DESCENDING:
        state.altitude += float(rng.uniform(0.0, MAX_CLIMB_STEP))
    elif state.launch_phase >= LaunchPhase.DESCENDING:
        state.altitude -= float(rng.uniform(0.0, MAX_DESCENT_STEP))
        state.altitude = max(state.altitude, 0.0)

    altitude_delta = state.altitude - state.previous_altitude
    state.previous_altitude = state.altitude

    state.latitude += float(rng.uniform(-GPS_DRIFT, GPS_DRIFT))
    state.longitude += float(rng.uniform(-GPS_DRIFT, GPS_DRIFT))

    error_code = ErrorCode.NONE
    if rng.random() < ERROR_PROBABILITY:
        error_code = int(rng.integers(1, len(ErrorCode)))

    temperature = float(rng.uniform(*TEMPERATURE_RANGE))
    voltage = float(rng.uniform(*VOLTAGE_RANGE))
    gyro_x = float(rng.uniform(*GYRO_RANGE))
    gyro_y = float(rng.uniform(*GYRO_RANGE))
    gyro_z = float(rng.uniform(*GYRO_RANGE))

    extra = float(rng.uniform(0.0, 100.0))
    diagnostic_text = (
        f"RAW|{timestamp}|{state.altitude:.2f}|{state.latitude:.2f}"
        f"|{state.longitude:.2f}|{extra:.2f}"
    )

    return TelemetrySample(
        timestamp=timestamp,
        temperature=temperature,
        voltage=voltage,
        gyro_x=gyro_x,
        gyro_y=gyro_y,
        gyro_z=gyro_z,
        altitude=state.altitude,
        altitude_delta=altitude_delta,
        latitude=state.latitude,
        longitude=state.longitude,
        launch_phase=int(state.launch_phase),
        error_code=int(error_code),
        diagnostic_text=diagnostic_text,
    )


class FlightSimulator:
    """
    Thread-safe owner of the shared flight state:
    - every session calls advance() on the same instance
    - each tick's read-modify-write runs under one lock
    - ordering between sessions is still whatever the scheduler picks
    """
    def __init__(self, state: Optional[FlightState] = None, rng=None,
                 clock: Callable[[], float] = time.time, seed: Optional[int] = None):
        self._lock = threading.Lock()
        self._state = state if state is not None else FlightState()
        self._rng = rng if rng is not None else np.random.default_rng(seed)
        self._clock = clock
        self._ticks = 0

    @property
    def ticks(self) -> int:
        with self._lock:
            return self._ticks

    def advance(self) -> TelemetrySample:
        with self._lock:
            sample = advance_state(self._state, self._rng, self._clock())
            self._ticks += 1
            return sample

    def snapshot(self) -> FlightState:
        with self._lock:
            return replace(self._state)

    def force_phase(self, phase: int) -> None:
        """Jump the launch phase forward; requests to move backwards are ignored."""
        phase = int(LaunchPhase(phase))
        with self._lock:
            self._state.launch_phase = int(max(self._state.launch_phase, phase))

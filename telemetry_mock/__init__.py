"""Mock CanSat telemetry source for ground station development."""

from .session import SessionState, StreamingSession
from .simulator import ErrorCode, FlightSimulator, FlightState, LaunchPhase, TelemetrySample, advance_state

__version__ = "0.1.0"

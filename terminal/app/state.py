"""Shared scan session state definitions for the check-in terminal."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from .payload import ParsedPayload


class SessionState(str, enum.Enum):
    """
    Scan session states in chronological order:

    1. IDLE         - Camera released, waiting for start / "scan next"
    2. SCANNING     - Detection engine consuming frames (only state holding the camera)
    3. DECODED      - Text received, engine being torn down, parsing
    4. CHECKING_IN  - Waiting on the check-in service
    5. SUCCEEDED    - Attendee checked in (stays until reset)
    6. FAILED       - Parse, network or service failure (stays until reset)
    """
    IDLE = "idle"
    SCANNING = "scanning"
    DECODED = "decoded"
    CHECKING_IN = "checking_in"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SessionState.SUCCEEDED, SessionState.FAILED})
PROCESSING_STATES = frozenset({SessionState.DECODED, SessionState.CHECKING_IN})


class FailureKind(str, enum.Enum):
    PARSE = "parse"
    TRANSPORT = "transport"
    REJECTED = "rejected"
    CAMERA = "camera"
    INTERNAL = "internal"


@dataclass(frozen=True)
class CheckInSuccess:
    attendee_id: str
    event_id: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "success",
            "attendee_id": self.attendee_id,
            "event_id": self.event_id,
            "message": self.message,
        }


@dataclass(frozen=True)
class CheckInFailure:
    reason: str
    kind: FailureKind = FailureKind.REJECTED

    def to_dict(self) -> Dict[str, Any]:
        return {"status": "failure", "reason": self.reason, "kind": self.kind.value}


CheckInOutcome = Union[CheckInSuccess, CheckInFailure]


@dataclass
class ScanSession:
    """The single live scan session owned by the controller."""

    state: SessionState = SessionState.IDLE
    last_raw_payload: Optional[str] = None
    parsed: Optional[ParsedPayload] = None
    last_outcome: Optional[CheckInOutcome] = None
    cycle: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "cycle": self.cycle,
            "last_raw_payload": self.last_raw_payload,
            "parsed": self.parsed.to_dict() if self.parsed else None,
            "last_outcome": self.last_outcome.to_dict() if self.last_outcome else None,
        }


@dataclass
class ControllerEvent:
    """Event payload distributed to observers and UI clients."""

    type: str
    state: SessionState
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.type,
            "state": self.state.value,
            "data": self.data,
        }
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = [
    "SessionState",
    "TERMINAL_STATES",
    "PROCESSING_STATES",
    "FailureKind",
    "CheckInSuccess",
    "CheckInFailure",
    "CheckInOutcome",
    "ScanSession",
    "ControllerEvent",
]

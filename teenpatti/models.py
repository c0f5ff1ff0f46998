from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class Phase(str, Enum):
    SETUP = "SETUP"
    ACTIVE = "ACTIVE"
    SHOWDOWN = "SHOWDOWN"


class PlayerStatus(str, Enum):
    BLIND = "BLIND"
    SEEN = "SEEN"


class ActionType(str, Enum):
    START_GAME = "START_GAME"
    SEEN = "SEEN"
    FOLD = "FOLD"
    BET = "BET"
    SIDE_SHOW_REQUEST = "SIDE_SHOW_REQUEST"
    SIDE_SHOW_RESOLVE = "SIDE_SHOW_RESOLVE"
    SHOW = "SHOW"
    SHOW_RESOLVE = "SHOW_RESOLVE"
    CANCEL_SIDE_SHOW = "CANCEL_SIDE_SHOW"
    CANCEL_SHOW = "CANCEL_SHOW"


class EndReason(str, Enum):
    MAX_ROUNDS_REACHED = "MAX_ROUNDS_REACHED"
    OPERATOR_ENDED = "OPERATOR_ENDED"
    ADMIN_ENDED = "ADMIN_ENDED"


class ErrorCode(str, Enum):
    GAME_NOT_ACTIVE = "GAME_NOT_ACTIVE"
    INVALID_TURN = "INVALID_TURN"
    INVALID_TARGET = "INVALID_TARGET"
    INSUFFICIENT_PLAYERS = "INSUFFICIENT_PLAYERS"
    SESSION_COMPLETE = "SESSION_COMPLETE"
    NO_PENDING_REQUEST = "NO_PENDING_REQUEST"
    REQUEST_PENDING = "REQUEST_PENDING"
    HAND_IN_PROGRESS = "HAND_IN_PROGRESS"
    PHASE_LOCKED = "PHASE_LOCKED"
    INVALID_ACTION = "INVALID_ACTION"


class ActionRejected(Exception):
    def __init__(self, code: ErrorCode, msg: str) -> None:
        super().__init__(msg)
        self.code = code
        self.msg = msg


@dataclass
class SessionConfig:
    boot: int = 5
    opening_stake: int = 20
    request_timeout_s: float = 60.0

    def __post_init__(self) -> None:
        if self.boot < 0:
            raise ValueError("boot cannot be negative")
        if self.opening_stake <= 0 or self.opening_stake % 2:
            raise ValueError("opening_stake must be a positive even number")
        if self.request_timeout_s <= 0:
            raise ValueError("request_timeout_s must be positive")


@dataclass
class Player:
    id: int
    name: str
    seat: int
    session_balance: int = 0

    def to_payload(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "seat": self.seat,
            "session_balance": self.session_balance,
        }


@dataclass
class HandParticipant:
    # Per-hand state. Only ``hand`` is private; it never leaves the engine.
    player_id: int
    name: str
    seat: int
    status: PlayerStatus = PlayerStatus.BLIND
    folded: bool = False
    invested: int = 0
    hand: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, object]:
        return {
            "id": self.player_id,
            "name": self.name,
            "seat": self.seat,
            "status": self.status.value,
            "folded": self.folded,
            "invested": self.invested,
        }


@dataclass
class Action:
    type: ActionType
    player_id: Optional[int] = None
    amount: Optional[int] = None
    is_double: bool = False
    target_id: Optional[int] = None
    winner_id: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, object]) -> "Action":
        try:
            action_type = ActionType(payload.get("type"))
        except ValueError as exc:
            raise ActionRejected(ErrorCode.INVALID_ACTION, "Invalid action") from exc
        return cls(
            type=action_type,
            player_id=_optional_int(payload.get("player_id")),
            amount=_optional_int(payload.get("amount")),
            is_double=bool(payload.get("is_double")),
            target_id=_optional_int(payload.get("target_id")),
            winner_id=_optional_int(payload.get("winner_id")),
        )


def _optional_int(value: object) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ActionRejected(ErrorCode.INVALID_ACTION, "Expected an integer")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ActionRejected(ErrorCode.INVALID_ACTION, "Expected an integer") from exc


@dataclass
class ActionResult:
    success: bool
    error: Optional[str] = None
    code: Optional[ErrorCode] = None

    @classmethod
    def ok(cls) -> "ActionResult":
        return cls(success=True)

    @classmethod
    def fail(cls, code: ErrorCode, error: str) -> "ActionResult":
        return cls(success=False, error=error, code=code)

    def to_payload(self) -> Dict[str, object]:
        if self.success:
            return {"success": True}
        return {"success": False, "error": self.error, "code": self.code.value if self.code else None}


@dataclass
class SideShowRequest:
    requester_id: int
    target_id: int
    created_at: float

    def to_payload(self) -> Dict[str, object]:
        return {
            "requester_id": self.requester_id,
            "target_id": self.target_id,
            "created_at": self.created_at,
        }


@dataclass
class ShowRequest:
    requester_id: int
    target_id: int
    is_force_show: bool
    created_at: float

    def to_payload(self) -> Dict[str, object]:
        return {
            "requester_id": self.requester_id,
            "target_id": self.target_id,
            "is_force_show": self.is_force_show,
            "created_at": self.created_at,
        }


@dataclass
class HandSummary:
    winner_id: int
    winner_name: str
    pot: int
    net_changes: Dict[int, int]
    current_round: int
    is_session_over: bool
    logs: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, object]:
        return {
            "winner": {"id": self.winner_id, "name": self.winner_name},
            "pot": self.pot,
            "net_changes": {str(pid): change for pid, change in self.net_changes.items()},
            "current_round": self.current_round,
            "is_session_over": self.is_session_over,
        }


@dataclass
class SessionEnded:
    reason: EndReason
    final_round: int
    total_rounds: int

    def to_payload(self) -> Dict[str, object]:
        return {
            "reason": self.reason.value,
            "final_round": self.final_round,
            "total_rounds": self.total_rounds,
        }

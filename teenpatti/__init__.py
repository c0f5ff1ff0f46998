"""Teen Patti rules engine shared by the live host and the tests."""

from .cards import Card, RANKS, SUITS, build_deck, deal, parse_cards
from .clock import AsyncioScheduler, ManualScheduler, Scheduler
from .evaluator import HandCategory, HandRank, compare, describe_rank, evaluate
from .game import TurnEngine
from .models import (
    Action,
    ActionResult,
    ActionType,
    EndReason,
    ErrorCode,
    HandParticipant,
    HandSummary,
    Phase,
    Player,
    PlayerStatus,
    SessionConfig,
    SessionEnded,
)

__all__ = [
    "Card",
    "RANKS",
    "SUITS",
    "build_deck",
    "deal",
    "parse_cards",
    "AsyncioScheduler",
    "ManualScheduler",
    "Scheduler",
    "HandCategory",
    "HandRank",
    "compare",
    "describe_rank",
    "evaluate",
    "TurnEngine",
    "Action",
    "ActionResult",
    "ActionType",
    "EndReason",
    "ErrorCode",
    "HandParticipant",
    "HandSummary",
    "Phase",
    "Player",
    "PlayerStatus",
    "SessionConfig",
    "SessionEnded",
]

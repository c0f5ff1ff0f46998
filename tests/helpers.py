from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from teenpatti.clock import ManualScheduler
from teenpatti.game import TurnEngine
from teenpatti.models import (
    Action,
    ActionResult,
    ActionType,
    HandSummary,
    Player,
    SessionConfig,
    SessionEnded,
)


def make_roster(names: Sequence[str] = ("Asha", "Bilal", "Chen")) -> List[Player]:
    return [Player(id=idx + 1, name=name, seat=idx + 1) for idx, name in enumerate(names)]


def create_engine(
    names: Sequence[str] = ("Asha", "Bilal", "Chen"),
    *,
    total_rounds: int = 5,
    config: Optional[SessionConfig] = None,
) -> Tuple[TurnEngine, ManualScheduler]:
    """Instantiate an engine with a seated roster and a virtual clock."""
    scheduler = ManualScheduler()
    engine = TurnEngine(1, "table-1", total_rounds, config=config, scheduler=scheduler)
    engine.set_players(make_roster(names))
    return engine, scheduler


class Recorder:
    """Collects everything an engine publishes."""

    def __init__(self, engine: TurnEngine) -> None:
        self.states: List[Dict[str, object]] = []
        self.summaries: List[HandSummary] = []
        self.ended: List[SessionEnded] = []
        engine.on_state_change(self.states.append)
        engine.on_hand_complete(self.summaries.append)
        engine.on_session_ended(self.ended.append)


def act(engine: TurnEngine, action_type: ActionType, player_id: Optional[int] = None, **kwargs) -> ActionResult:
    return engine.handle_action(Action(type=action_type, player_id=player_id, **kwargs))


def active_id(engine: TurnEngine) -> int:
    player = engine.active_player()
    assert player is not None
    return player.player_id


def participant(engine: TurnEngine, player_id: int):
    return next(p for p in engine.participants if p.player_id == player_id)


def see_and_bet(engine: TurnEngine) -> None:
    """Active player looks at their cards and plays a chaal."""
    pid = active_id(engine)
    assert act(engine, ActionType.SEEN, pid).success
    assert act(engine, ActionType.BET, pid).success


def invested_total(engine: TurnEngine) -> int:
    return sum(p.invested for p in engine.participants)

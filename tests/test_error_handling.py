import pytest

from teenpatti.models import Action, ActionRejected, ActionType, ErrorCode, Phase

from .helpers import Recorder, act, active_id, create_engine, participant


def test_actions_rejected_before_the_hand_starts():
    engine, _ = create_engine()
    recorder = Recorder(engine)

    result = act(engine, ActionType.BET, 1)

    assert not result.success
    assert result.code == ErrorCode.GAME_NOT_ACTIVE
    assert result.error == "Game not active"
    assert recorder.states == []


def test_out_of_turn_action_changes_nothing():
    engine, _ = create_engine()
    engine.start_round(seed=3)
    recorder = Recorder(engine)
    before = engine.public_state()

    result = act(engine, ActionType.BET, 2)

    assert result.code == ErrorCode.INVALID_TURN
    assert result.error == "Not your turn"
    assert engine.public_state() == before
    assert recorder.states == []


def test_missing_player_id_is_not_your_turn():
    engine, _ = create_engine()
    engine.start_round(seed=3)

    assert act(engine, ActionType.FOLD).code == ErrorCode.INVALID_TURN


def test_start_round_with_too_few_players():
    engine, _ = create_engine(names=("Asha",))
    recorder = Recorder(engine)

    result = engine.start_round()

    assert result.code == ErrorCode.INSUFFICIENT_PLAYERS
    assert result.error == "Not enough players"
    assert engine.phase == Phase.SETUP
    assert engine.current_round == 1
    assert recorder.states == []


def test_start_round_while_hand_in_progress():
    engine, _ = create_engine()
    engine.start_round(seed=5)
    act(engine, ActionType.BET, active_id(engine))
    pot = engine.pot

    result = engine.start_round(seed=6)

    assert result.code == ErrorCode.HAND_IN_PROGRESS
    assert engine.pot == pot


def test_rejected_actions_never_advance_the_round():
    engine, _ = create_engine(total_rounds=2)
    engine.start_round(seed=7)
    for action_type in (ActionType.SIDE_SHOW_RESOLVE, ActionType.SHOW_RESOLVE):
        act(engine, action_type, active_id(engine), winner_id=2)
    act(engine, ActionType.FOLD, 3)

    assert engine.current_round == 1
    assert not any(p.folded for p in engine.participants)


def test_unknown_action_payload():
    with pytest.raises(ActionRejected) as excinfo:
        Action.from_payload({"type": "DANCE", "player_id": 1})
    assert excinfo.value.code == ErrorCode.INVALID_ACTION

    with pytest.raises(ActionRejected):
        Action.from_payload({"player_id": 1})


@pytest.mark.parametrize("field", ["player_id", "amount", "target_id", "winner_id"])
def test_non_integer_fields_are_rejected(field):
    with pytest.raises(ActionRejected) as excinfo:
        Action.from_payload({"type": "BET", field: "lots"})
    assert excinfo.value.msg == "Expected an integer"

    with pytest.raises(ActionRejected):
        Action.from_payload({"type": "BET", field: True})


def test_action_payload_coerces_numeric_strings():
    action = Action.from_payload({"type": "BET", "player_id": "3", "amount": "40", "is_double": 1, "target_id": ""})

    assert action.type == ActionType.BET
    assert action.player_id == 3
    assert action.amount == 40
    assert action.is_double is True
    assert action.target_id is None


def test_rejection_payload_carries_code():
    engine, _ = create_engine()
    result = act(engine, ActionType.SEEN, 1)

    assert result.to_payload() == {"success": False, "error": "Game not active", "code": "GAME_NOT_ACTIVE"}
    assert act(engine, ActionType.CANCEL_SHOW).to_payload()["code"] == "NO_PENDING_REQUEST"


def test_folded_player_cannot_be_targeted_and_stays_folded():
    engine, _ = create_engine(names=("Asha", "Bilal", "Chen", "Devi"))
    engine.start_round(seed=9)
    a, b, c, d = (p.player_id for p in engine.participants)
    act(engine, ActionType.SEEN, a)
    act(engine, ActionType.BET, a)
    act(engine, ActionType.SEEN, b)
    act(engine, ActionType.FOLD, b)
    act(engine, ActionType.BET, c)
    act(engine, ActionType.BET, d)

    assert act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b).code == ErrorCode.INVALID_TARGET
    assert participant(engine, b).folded
    assert engine.side_show_request is None

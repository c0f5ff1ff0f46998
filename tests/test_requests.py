"""Side show and show negotiation, including the request timeout."""

from teenpatti.models import ActionType, ErrorCode, Phase, PlayerStatus

from .helpers import Recorder, act, active_id, create_engine, invested_total, participant


def seat_side_show(names=("Asha", "Bilal", "Chen")):
    """A and B look and chaal, C plays blind; back to A with two SEEN players."""
    engine, scheduler = create_engine(names=names)
    engine.start_round(seed=21)
    ids = [p.player_id for p in engine.participants]
    for pid in ids[:2]:
        act(engine, ActionType.SEEN, pid)
        act(engine, ActionType.BET, pid)
    for pid in ids[2:]:
        act(engine, ActionType.BET, pid)
    assert active_id(engine) == ids[0]
    return engine, scheduler, ids


def test_side_show_request_charges_stake_immediately():
    engine, scheduler, (a, b, c) = seat_side_show()
    pot_before = engine.pot

    result = act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b)

    assert result.success
    assert engine.pot == pot_before + 20
    assert participant(engine, a).invested == 5 + 20 + 20
    assert engine.pot == invested_total(engine)
    assert engine.side_show_request is not None
    assert engine.side_show_request.requester_id == a
    assert engine.side_show_request.target_id == b
    assert scheduler.pending() == 1
    assert engine.logs[-1] == "Asha bets 20 and requested Side Show with Bilal"


def test_side_show_won_by_target_folds_requester_and_keeps_stake():
    engine, scheduler, (a, b, c) = seat_side_show()
    act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b)
    stake_before = engine.current_stake
    pot_before = engine.pot

    result = act(engine, ActionType.SIDE_SHOW_RESOLVE, a, winner_id=b)

    assert result.success
    assert participant(engine, a).folded
    assert not participant(engine, b).folded
    assert engine.current_stake == stake_before
    assert engine.pot == pot_before
    assert engine.side_show_request is None
    assert scheduler.pending() == 0
    # Turn resumes after the requester's seat.
    assert active_id(engine) == b


def test_side_show_won_by_requester_skips_folded_target():
    engine, _, (a, b, c) = seat_side_show()
    act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b)
    stake_before = engine.current_stake

    act(engine, ActionType.SIDE_SHOW_RESOLVE, a, winner_id=a)

    assert participant(engine, b).folded
    assert engine.current_stake == stake_before
    assert active_id(engine) == c
    assert engine.logs[-2:] == ["Side Show: Asha wins against Bilal", "Bilal packed."]


def test_side_show_with_two_players_ends_hand():
    engine, _, (a, b) = seat_side_show(names=("Asha", "Bilal"))
    recorder = Recorder(engine)
    act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b)

    act(engine, ActionType.SIDE_SHOW_RESOLVE, a, winner_id=b)

    assert engine.phase == Phase.SHOWDOWN
    assert recorder.summaries[-1].winner_id == b
    assert engine.side_show_request is None


def test_side_show_request_validation():
    engine, _, (a, b, c, d) = seat_side_show(names=("Asha", "Bilal", "Chen", "Devi"))
    recorder = Recorder(engine)
    pot = engine.pot

    blind_target = act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=c)
    assert blind_target.error == "Cannot Side Show with Blind player"
    assert blind_target.code == ErrorCode.INVALID_TARGET

    assert act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=a).error == "Cannot request Side Show with yourself"
    assert act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=99).error == "Target player not found"

    participant(engine, b).folded = True
    assert act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b).error == "Cannot Side Show with folded player"
    participant(engine, b).folded = False

    participant(engine, a).status = PlayerStatus.BLIND
    assert act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b).error == "Must be SEEN for Side Show"

    assert engine.pot == pot
    assert engine.side_show_request is None
    assert recorder.states == []


def test_side_show_resolve_requires_pending_request_and_valid_winner():
    engine, _, (a, b, c) = seat_side_show()

    missing = act(engine, ActionType.SIDE_SHOW_RESOLVE, a, winner_id=b)
    assert missing.code == ErrorCode.NO_PENDING_REQUEST

    act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b)
    outsider = act(engine, ActionType.SIDE_SHOW_RESOLVE, a, winner_id=c)
    assert outsider.code == ErrorCode.INVALID_TARGET
    assert engine.side_show_request is not None
    assert not any(p.folded for p in engine.participants)


def test_turn_actions_blocked_while_side_show_pending():
    engine, _, (a, b, c) = seat_side_show()
    act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b)

    for action_type in (ActionType.BET, ActionType.FOLD, ActionType.SEEN, ActionType.SHOW):
        result = act(engine, action_type, a)
        assert result.code == ErrorCode.REQUEST_PENDING
        assert result.error == "Awaiting side show resolution"


def test_side_show_times_out_without_refund():
    engine, scheduler, (a, b, c) = seat_side_show()
    recorder = Recorder(engine)
    act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b)
    pot_after_charge = engine.pot
    states_before = len(recorder.states)

    scheduler.advance(59.9)
    assert engine.side_show_request is not None

    scheduler.advance(0.2)
    assert engine.side_show_request is None
    assert engine.pot == pot_after_charge
    assert engine.logs[-2:] == [
        "Side Show request timed out after 60s",
        "Asha's Side Show request was cancelled",
    ]
    assert len(recorder.states) == states_before + 1
    assert scheduler.pending() == 0

    # Normal turn handling is back for the requester.
    assert active_id(engine) == a
    assert act(engine, ActionType.BET, a).success
    assert active_id(engine) == b


def test_cancel_side_show_is_allowed_out_of_turn():
    engine, scheduler, (a, b, c) = seat_side_show()
    act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b)

    result = act(engine, ActionType.CANCEL_SIDE_SHOW)

    assert result.success
    assert engine.side_show_request is None
    assert scheduler.pending() == 0
    assert engine.logs[-1] == "Asha's Side Show request was cancelled"
    assert act(engine, ActionType.CANCEL_SIDE_SHOW).code == ErrorCode.NO_PENDING_REQUEST


def test_new_request_replaces_previous_timer():
    engine, scheduler, (a, b, c) = seat_side_show()
    act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b)
    scheduler.advance(30)
    act(engine, ActionType.CANCEL_SIDE_SHOW)
    act(engine, ActionType.SIDE_SHOW_REQUEST, a, target_id=b)
    assert scheduler.pending() == 1

    scheduler.advance(45)
    assert engine.side_show_request is not None
    scheduler.advance(15)
    assert engine.side_show_request is None
    assert sum(1 for line in engine.logs if "timed out" in line) == 1


def seat_force_show():
    """A looks; B folds; C stays blind; D looks. Back to A with one blind player."""
    engine, scheduler = create_engine(names=("Asha", "Bilal", "Chen", "Devi"))
    engine.start_round(seed=31)
    a, b, c, d = (p.player_id for p in engine.participants)
    act(engine, ActionType.SEEN, a)
    act(engine, ActionType.BET, a)
    act(engine, ActionType.FOLD, b)
    act(engine, ActionType.BET, c)
    act(engine, ActionType.SEEN, d)
    act(engine, ActionType.BET, d)
    assert active_id(engine) == a
    return engine, scheduler, (a, b, c, d)


def test_force_show_won_by_seen_requester_folds_blind_target():
    engine, scheduler, (a, b, c, d) = seat_force_show()
    pot_before = engine.pot

    assert act(engine, ActionType.SHOW, a, target_id=c).success
    assert engine.show_request.is_force_show
    assert engine.logs[-1] == "Asha requested Force Show against Chen (BLIND)"
    assert engine.pot == pot_before

    assert act(engine, ActionType.SHOW_RESOLVE, a, winner_id=a).success
    assert participant(engine, c).folded
    assert engine.pot == pot_before
    assert engine.show_request is None
    assert scheduler.pending() == 0
    assert active_id(engine) == d


def test_force_show_won_by_blind_target_charges_double_stake():
    engine, _, (a, b, c, d) = seat_force_show()
    act(engine, ActionType.SHOW, a, target_id=c)
    invested_before = participant(engine, a).invested
    pot_before = engine.pot
    penalty = 2 * engine.current_stake

    act(engine, ActionType.SHOW_RESOLVE, a, winner_id=c)

    requester = participant(engine, a)
    assert requester.folded
    assert requester.invested == invested_before + penalty
    assert engine.pot == pot_before + penalty
    assert engine.pot == invested_total(engine)
    assert engine.logs[-1] == f"Asha pays penalty of {penalty} and packs."
    assert active_id(engine) == c


def test_force_show_penalty_can_end_the_hand():
    engine, _ = create_engine(names=("Asha", "Bilal"))
    recorder = Recorder(engine)
    engine.start_round(seed=41)
    a, b = (p.player_id for p in engine.participants)
    act(engine, ActionType.SEEN, a)
    act(engine, ActionType.BET, a)
    act(engine, ActionType.BET, b)

    act(engine, ActionType.SHOW, a)
    assert engine.show_request.is_force_show
    act(engine, ActionType.SHOW_RESOLVE, a, winner_id=b)

    summary = recorder.summaries[-1]
    assert summary.winner_id == b
    # A: boot 5 + chaal 20 + penalty 40; B: boot 5 + blind chaal 10.
    assert summary.pot == 80
    assert summary.net_changes == {a: -65, b: 65}


def test_force_show_limited_to_two_blind_players():
    engine, _ = create_engine(names=("Asha", "Bilal", "Chen", "Devi"))
    engine.start_round(seed=51)
    a, b, c, d = (p.player_id for p in engine.participants)
    act(engine, ActionType.SEEN, a)
    act(engine, ActionType.BET, a)
    for pid in (b, c, d):
        act(engine, ActionType.BET, pid)

    result = act(engine, ActionType.SHOW, a, target_id=b)
    assert not result.success
    assert result.error == "Force Show only allowed when 1 or 2 blind players remain"
    assert engine.show_request is None

    act(engine, ActionType.BET, a)
    act(engine, ActionType.BET, b)
    act(engine, ActionType.BET, c)
    act(engine, ActionType.FOLD, d)
    assert act(engine, ActionType.SHOW, a, target_id=b).success
    assert engine.show_request.is_force_show


def test_regular_show_needs_two_players():
    engine, _ = create_engine()
    engine.start_round(seed=61)
    a, b, c = (p.player_id for p in engine.participants)

    result = act(engine, ActionType.SHOW, a)
    assert result.error == "Can only Show when 2 players remain"
    assert result.code == ErrorCode.INVALID_ACTION


def test_regular_show_resolve_ends_hand_with_declared_winner():
    engine, scheduler = create_engine()
    recorder = Recorder(engine)
    engine.start_round(seed=71)
    a, b, c = (p.player_id for p in engine.participants)
    act(engine, ActionType.BET, a)
    act(engine, ActionType.BET, b)
    act(engine, ActionType.FOLD, c)

    assert act(engine, ActionType.SHOW, a).success
    request = engine.show_request
    assert request.target_id == b
    assert not request.is_force_show
    assert engine.logs[-1] == "Asha requested Show against Bilal"

    act(engine, ActionType.SHOW_RESOLVE, a, winner_id=b)

    assert engine.phase == Phase.SHOWDOWN
    assert scheduler.pending() == 0
    assert not participant(engine, a).folded
    assert recorder.summaries[-1].winner_id == b
    assert "Asha showed cards against Bilal" in engine.logs


def test_show_rejects_self_and_folded_targets():
    engine, _, (a, b, c, d) = seat_force_show()
    assert act(engine, ActionType.SHOW, a, target_id=a).error == "Cannot Show against yourself"
    assert act(engine, ActionType.SHOW, a, target_id=b).error == "Target player not found"


def test_show_timeout_and_cancel():
    engine, scheduler, (a, b, c, d) = seat_force_show()
    act(engine, ActionType.SHOW, a, target_id=c)
    scheduler.advance(60)
    assert engine.show_request is None
    assert engine.logs[-2:] == [
        "Show request timed out after 60s",
        "Asha's Force Show request was cancelled",
    ]

    act(engine, ActionType.SHOW, a, target_id=c)
    assert act(engine, ActionType.CANCEL_SHOW, b).success
    assert engine.show_request is None
    assert scheduler.pending() == 0
    assert act(engine, ActionType.CANCEL_SHOW).code == ErrorCode.NO_PENDING_REQUEST


def test_show_resolve_without_request():
    engine, _, (a, b, c, d) = seat_force_show()
    result = act(engine, ActionType.SHOW_RESOLVE, a, winner_id=c)
    assert result.code == ErrorCode.NO_PENDING_REQUEST
    assert result.error == "No show request"

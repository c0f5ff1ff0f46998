from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

from .cards import build_deck, cards_to_labels, deal
from .clock import AsyncioScheduler, Scheduler, TimerHandle
from .evaluator import compare, evaluate_labels
from .models import (
    Action,
    ActionRejected,
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
    ShowRequest,
    SideShowRequest,
)

# TurnEngine keeps one session's state in memory. No networking lives here,
# only Teen Patti rules, chip accounting and turn order. A crash mid-hand
# loses that hand; balances are only durable once the host persists them.

StateListener = Callable[[Dict[str, object]], None]
HandListener = Callable[[HandSummary], None]
EndListener = Callable[[SessionEnded], None]

SIDE_SHOW = "side_show"
SHOW = "show"

# Actions that spend the turn; blocked while a side show or show is pending.
TURN_ACTIONS = {
    ActionType.SEEN,
    ActionType.FOLD,
    ActionType.BET,
    ActionType.SIDE_SHOW_REQUEST,
    ActionType.SHOW,
}


class TurnEngine:
    """Teen Patti betting state machine for a single live session."""

    def __init__(
        self,
        session_id: int,
        session_name: str,
        total_rounds: int,
        *,
        config: Optional[SessionConfig] = None,
        scheduler: Optional[Scheduler] = None,
        current_round: int = 1,
    ) -> None:
        self.session_id = session_id
        self.session_name = session_name
        self.total_rounds = total_rounds
        self.config = config or SessionConfig()
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        self.current_round = current_round
        self.is_active = current_round <= total_rounds
        self.phase = Phase.SETUP

        self.players: List[Player] = []
        self.participants: List[HandParticipant] = []
        self.pot = 0
        self.current_stake = self.config.opening_stake
        self.active_player_index = 0
        self.logs: List[str] = []
        self.side_show_request: Optional[SideShowRequest] = None
        self.show_request: Optional[ShowRequest] = None

        self._timers: Dict[str, TimerHandle] = {}
        self._state_listeners: List[StateListener] = []
        self._hand_listeners: List[HandListener] = []
        self._end_listeners: List[EndListener] = []

    # Observers -------------------------------------------------------

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        return self._subscribe(self._state_listeners, listener)

    def on_hand_complete(self, listener: HandListener) -> Callable[[], None]:
        return self._subscribe(self._hand_listeners, listener)

    def on_session_ended(self, listener: EndListener) -> Callable[[], None]:
        return self._subscribe(self._end_listeners, listener)

    @staticmethod
    def _subscribe(listeners: List, listener: Callable) -> Callable[[], None]:
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _notify_state(self) -> None:
        state = self.public_state()
        for listener in list(self._state_listeners):
            listener(state)

    # Roster ----------------------------------------------------------

    def set_players(self, roster: Iterable[Player]) -> None:
        # Phase is left alone: a reconnecting operator re-sends the roster
        # and must not clobber a hand in progress.
        self.players = list(roster)
        self._notify_state()

    def add_player(self, player: Player) -> ActionResult:
        if not self.is_active:
            return ActionResult.fail(ErrorCode.SESSION_COMPLETE, "Session complete")
        if self.phase != Phase.SETUP:
            return ActionResult.fail(ErrorCode.PHASE_LOCKED, "Players can only change during setup")
        if any(existing.id == player.id for existing in self.players):
            return ActionResult.fail(ErrorCode.INVALID_ACTION, "Player already seated")
        if any(existing.seat == player.seat for existing in self.players):
            return ActionResult.fail(ErrorCode.INVALID_ACTION, "Seat already taken")
        self.players.append(player)
        self._notify_state()
        return ActionResult.ok()

    def remove_player(self, player_id: int) -> ActionResult:
        if not self.is_active:
            return ActionResult.fail(ErrorCode.SESSION_COMPLETE, "Session complete")
        if self.phase != Phase.SETUP:
            return ActionResult.fail(ErrorCode.PHASE_LOCKED, "Players can only change during setup")
        self.players = [player for player in self.players if player.id != player_id]
        self._notify_state()
        return ActionResult.ok()

    # Hand lifecycle --------------------------------------------------

    def start_round(self, seed: Optional[int] = None) -> ActionResult:
        try:
            self._start_round(seed)
        except ActionRejected as exc:
            return ActionResult.fail(exc.code, exc.msg)
        self._notify_state()
        return ActionResult.ok()

    def _start_round(self, seed: Optional[int]) -> None:
        if not self.is_active or self.current_round > self.total_rounds:
            raise ActionRejected(ErrorCode.SESSION_COMPLETE, "Session complete")
        if self.phase == Phase.ACTIVE:
            raise ActionRejected(ErrorCode.HAND_IN_PROGRESS, "Hand in progress")

        eligible = [player for player in self.players if player.name and player.name.strip()]
        if len(eligible) < 2:
            raise ActionRejected(ErrorCode.INSUFFICIENT_PLAYERS, "Not enough players")
        eligible.sort(key=lambda player: player.seat)

        boot = self.config.boot
        self.participants = [
            HandParticipant(player_id=player.id, name=player.name, seat=player.seat, invested=boot)
            for player in eligible
        ]
        deck = build_deck(seed)
        for _ in range(3):
            for participant in self.participants:
                participant.hand.extend(cards_to_labels(deal(deck, 1)))

        self._clear_requests()
        self.pot = boot * len(self.participants)
        self.current_stake = self.config.opening_stake
        self.active_player_index = 0
        self.logs = [f"Round {self.current_round} started. Boot collected."]
        self.phase = Phase.ACTIVE

    def end_session(self, reason: EndReason) -> bool:
        """Operator/admin termination. Returns False when already ended."""
        if not self.is_active:
            return False
        self._clear_requests()
        self.is_active = False
        final_round = self.current_round if self.phase == Phase.ACTIVE else self.current_round - 1
        self.logs.append(f"Session ended ({reason.value}).")
        ended = SessionEnded(reason=reason, final_round=final_round, total_rounds=self.total_rounds)
        for listener in list(self._end_listeners):
            listener(ended)
        return True

    def cancel_timers(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    # Action handling -------------------------------------------------

    def handle_action(self, action: Action) -> ActionResult:
        if action.type == ActionType.START_GAME:
            return self.start_round()
        round_before = self.current_round
        try:
            self._dispatch(action)
        except ActionRejected as exc:
            return ActionResult.fail(exc.code, exc.msg)
        # A finished hand has already published its own state sequence.
        if self.current_round == round_before:
            self._notify_state()
        return ActionResult.ok()

    def _dispatch(self, action: Action) -> None:
        # Cancels come from the operator's side and ignore whose turn it is.
        if action.type == ActionType.CANCEL_SIDE_SHOW:
            self._cancel_side_show()
            return
        if action.type == ActionType.CANCEL_SHOW:
            self._cancel_show()
            return

        # An ended session may still sit in ACTIVE; it takes no further moves.
        if not self.is_active or self.phase != Phase.ACTIVE:
            raise ActionRejected(ErrorCode.GAME_NOT_ACTIVE, "Game not active")
        player = self._active_participant()
        if player is None or player.player_id != action.player_id:
            raise ActionRejected(ErrorCode.INVALID_TURN, "Not your turn")

        if action.type in TURN_ACTIONS:
            if self.side_show_request is not None:
                raise ActionRejected(ErrorCode.REQUEST_PENDING, "Awaiting side show resolution")
            if self.show_request is not None:
                raise ActionRejected(ErrorCode.REQUEST_PENDING, "Awaiting show resolution")

        if action.type == ActionType.SEEN:
            self._act_seen(player)
        elif action.type == ActionType.FOLD:
            self._act_fold(player)
        elif action.type == ActionType.BET:
            self._act_bet(player, action.amount, action.is_double)
        elif action.type == ActionType.SIDE_SHOW_REQUEST:
            self._act_side_show_request(player, action.target_id)
        elif action.type == ActionType.SIDE_SHOW_RESOLVE:
            self._resolve_side_show(action.winner_id)
        elif action.type == ActionType.SHOW:
            self._act_show(player, action.target_id)
        elif action.type == ActionType.SHOW_RESOLVE:
            self._resolve_show(action.winner_id)
        else:
            raise ActionRejected(ErrorCode.INVALID_ACTION, "Invalid action")

    def _act_seen(self, player: HandParticipant) -> None:
        player.status = PlayerStatus.SEEN
        self.logs.append(f"{player.name} saw their cards.")

    def _act_fold(self, player: HandParticipant) -> None:
        player.folded = True
        self.logs.append(f"{player.name} packed.")
        self._rotate_turn()

    def _act_bet(self, player: HandParticipant, amount: Optional[int], is_double: bool) -> None:
        new_stake = self.current_stake
        # A raise below the current stake is ignored rather than rejected.
        if amount is not None and amount > self.current_stake:
            # Stakes stay even so a blind half-chaal is a whole number of chips.
            if amount % 2:
                raise ActionRejected(ErrorCode.INVALID_ACTION, "Raise must be an even number of chips")
            new_stake = amount
        if is_double:
            new_stake = self.current_stake * 2

        cost = new_stake // 2 if player.status == PlayerStatus.BLIND else new_stake
        self._charge(player, cost)
        self.current_stake = new_stake
        self.logs.append(f"{player.name} bets {cost} (Chaal: {new_stake})")
        self._rotate_turn()

    def _act_side_show_request(self, player: HandParticipant, target_id: Optional[int]) -> None:
        if player.status != PlayerStatus.SEEN:
            raise ActionRejected(ErrorCode.INVALID_TARGET, "Must be SEEN for Side Show")
        target = self._participant(target_id)
        if target is None:
            raise ActionRejected(ErrorCode.INVALID_TARGET, "Target player not found")
        if target.player_id == player.player_id:
            raise ActionRejected(ErrorCode.INVALID_TARGET, "Cannot request Side Show with yourself")
        if target.folded:
            raise ActionRejected(ErrorCode.INVALID_TARGET, "Cannot Side Show with folded player")
        if target.status == PlayerStatus.BLIND:
            raise ActionRejected(ErrorCode.INVALID_TARGET, "Cannot Side Show with Blind player")

        # The requester pays a normal chaal before the cards are compared.
        cost = self.current_stake
        self._charge(player, cost)
        self.logs.append(f"{player.name} bets {cost} and requested Side Show with {target.name}")
        self.side_show_request = SideShowRequest(
            requester_id=player.player_id,
            target_id=target.player_id,
            created_at=self.scheduler.now(),
        )
        self._set_request_timer(SIDE_SHOW, self._side_show_timed_out)

    def _resolve_side_show(self, winner_id: Optional[int]) -> None:
        request = self.side_show_request
        if request is None:
            raise ActionRejected(ErrorCode.NO_PENDING_REQUEST, "No side show request")
        if winner_id not in (request.requester_id, request.target_id):
            raise ActionRejected(ErrorCode.INVALID_TARGET, "Winner must be part of the side show")

        requester = self._require_participant(request.requester_id)
        target = self._require_participant(request.target_id)
        winner, loser = (requester, target) if winner_id == requester.player_id else (target, requester)
        self._clear_timer(SIDE_SHOW)
        self.side_show_request = None

        # A side show never moves current_stake.
        self.logs.append(f"Side Show: {winner.name} wins against {loser.name}")
        loser.folded = True
        self.logs.append(f"{loser.name} packed.")
        self._continue_after(requester)

    def _act_show(self, player: HandParticipant, target_id: Optional[int]) -> None:
        remaining = self._remaining()
        if target_id is not None:
            target = next((p for p in remaining if p.player_id == target_id), None)
        else:
            target = next((p for p in remaining if p.player_id != player.player_id), None)
        if target is None:
            raise ActionRejected(ErrorCode.INVALID_TARGET, "Target player not found")
        if target.player_id == player.player_id:
            raise ActionRejected(ErrorCode.INVALID_TARGET, "Cannot Show against yourself")

        is_force_show = player.status == PlayerStatus.SEEN and target.status == PlayerStatus.BLIND
        blind_count = sum(1 for p in remaining if p.status == PlayerStatus.BLIND)
        if is_force_show and blind_count > 2:
            raise ActionRejected(
                ErrorCode.INVALID_TARGET,
                "Force Show only allowed when 1 or 2 blind players remain",
            )
        if not is_force_show and len(remaining) != 2:
            raise ActionRejected(ErrorCode.INVALID_ACTION, "Can only Show when 2 players remain")

        self.show_request = ShowRequest(
            requester_id=player.player_id,
            target_id=target.player_id,
            is_force_show=is_force_show,
            created_at=self.scheduler.now(),
        )
        if is_force_show:
            self.logs.append(f"{player.name} requested Force Show against {target.name} (BLIND)")
        else:
            self.logs.append(f"{player.name} requested Show against {target.name}")
        self._set_request_timer(SHOW, self._show_timed_out)

    def _resolve_show(self, winner_id: Optional[int]) -> None:
        request = self.show_request
        if request is None:
            raise ActionRejected(ErrorCode.NO_PENDING_REQUEST, "No show request")
        if winner_id not in (request.requester_id, request.target_id):
            raise ActionRejected(ErrorCode.INVALID_TARGET, "Winner must be part of the show")

        requester = self._require_participant(request.requester_id)
        target = self._require_participant(request.target_id)
        self._clear_timer(SHOW)
        self.show_request = None

        if not request.is_force_show:
            # Only two players were left, so the show settles the hand.
            winner = requester if winner_id == requester.player_id else target
            self.logs.append(f"{requester.name} showed cards against {target.name}")
            self._end_hand(winner)
            return

        if winner_id == requester.player_id:
            self.logs.append(f"{requester.name} (SEEN) wins Force Show against {target.name} (BLIND)")
            target.folded = True
            self.logs.append(f"{target.name} packed.")
        else:
            penalty = self.current_stake * 2
            self._charge(requester, penalty)
            requester.folded = True
            self.logs.append(f"{target.name} (BLIND) wins Force Show against {requester.name} (SEEN)")
            self.logs.append(f"{requester.name} pays penalty of {penalty} and packs.")
        self._continue_after(requester)

    # Side show / show requests ---------------------------------------

    def _cancel_side_show(self) -> None:
        request = self.side_show_request
        if request is None:
            raise ActionRejected(ErrorCode.NO_PENDING_REQUEST, "No side show request to cancel")
        self._clear_timer(SIDE_SHOW)
        self.side_show_request = None
        requester = self._participant(request.requester_id)
        name = requester.name if requester else str(request.requester_id)
        self.logs.append(f"{name}'s Side Show request was cancelled")

    def _cancel_show(self) -> None:
        request = self.show_request
        if request is None:
            raise ActionRejected(ErrorCode.NO_PENDING_REQUEST, "No show request to cancel")
        self._clear_timer(SHOW)
        self.show_request = None
        requester = self._participant(request.requester_id)
        name = requester.name if requester else str(request.requester_id)
        kind = "Force Show" if request.is_force_show else "Show"
        self.logs.append(f"{name}'s {kind} request was cancelled")

    def _side_show_timed_out(self) -> None:
        self._timers.pop(SIDE_SHOW, None)
        if self.side_show_request is None:
            return
        self.logs.append(f"Side Show request timed out after {self.config.request_timeout_s:g}s")
        self._cancel_side_show()
        self._notify_state()

    def _show_timed_out(self) -> None:
        self._timers.pop(SHOW, None)
        if self.show_request is None:
            return
        self.logs.append(f"Show request timed out after {self.config.request_timeout_s:g}s")
        self._cancel_show()
        self._notify_state()

    def _set_request_timer(self, kind: str, callback: Callable[[], None]) -> None:
        self._clear_timer(kind)
        self._timers[kind] = self.scheduler.call_later(self.config.request_timeout_s, callback)

    def _clear_timer(self, kind: str) -> None:
        handle = self._timers.pop(kind, None)
        if handle is not None:
            handle.cancel()

    def _clear_requests(self) -> None:
        self.cancel_timers()
        self.side_show_request = None
        self.show_request = None

    # Turn order ------------------------------------------------------

    def _rotate_turn(self) -> None:
        remaining = self._remaining()
        if len(remaining) == 1:
            self._end_hand(remaining[0])
            return
        self.active_player_index = self.next_active_index(self.active_player_index)

    def _continue_after(self, requester: HandParticipant) -> None:
        # Turn order resumes from the requester's seat, not the loser's.
        remaining = self._remaining()
        if len(remaining) == 1:
            self._end_hand(remaining[0])
            return
        self.active_player_index = self.next_active_index(self.participants.index(requester))

    def next_active_index(self, current: int) -> int:
        return self._walk(current, 1)

    def previous_active_index(self, current: int) -> int:
        return self._walk(current, -1)

    def _walk(self, current: int, step: int) -> int:
        remaining = self._remaining()
        if not remaining:
            return current
        if len(remaining) == 1:
            return self.participants.index(remaining[0])

        count = len(self.participants)
        idx = (current + step) % count
        attempts = 0
        while self.participants[idx].folded and attempts < count:
            idx = (idx + step) % count
            attempts += 1
        return idx

    # Settlement ------------------------------------------------------

    def _end_hand(self, winner: HandParticipant) -> None:
        self._clear_requests()
        self.phase = Phase.SHOWDOWN
        self.logs.append(f"Hand over. Winner: {winner.name}")

        invested = {p.player_id: p.invested for p in self.participants}
        net_changes: Dict[int, int] = {}
        for player in self.players:
            if player.id not in invested:
                net_changes[player.id] = 0
                continue
            if player.id == winner.player_id:
                change = self.pot - invested[player.id]
            else:
                change = -invested[player.id]
            net_changes[player.id] = change
            player.session_balance += change

        self.current_round += 1
        is_session_over = self.current_round > self.total_rounds
        if is_session_over:
            self.is_active = False

        self._notify_state()

        summary = HandSummary(
            winner_id=winner.player_id,
            winner_name=winner.name,
            pot=self.pot,
            net_changes=net_changes,
            current_round=self.current_round,
            is_session_over=is_session_over,
            logs=list(self.logs),
        )
        for listener in list(self._hand_listeners):
            listener(summary)

        if is_session_over:
            ended = SessionEnded(
                reason=EndReason.MAX_ROUNDS_REACHED,
                final_round=self.current_round - 1,
                total_rounds=self.total_rounds,
            )
            for listener in list(self._end_listeners):
                listener(ended)

    # Helpers ---------------------------------------------------------

    def _charge(self, player: HandParticipant, amount: int) -> None:
        player.invested += amount
        self.pot += amount

    def _remaining(self) -> List[HandParticipant]:
        return [p for p in self.participants if not p.folded]

    def _active_participant(self) -> Optional[HandParticipant]:
        if 0 <= self.active_player_index < len(self.participants):
            return self.participants[self.active_player_index]
        return None

    def _participant(self, player_id: Optional[int]) -> Optional[HandParticipant]:
        if player_id is None:
            return None
        return next((p for p in self.participants if p.player_id == player_id), None)

    def _require_participant(self, player_id: int) -> HandParticipant:
        participant = self._participant(player_id)
        if participant is None:
            raise ActionRejected(ErrorCode.INVALID_TARGET, "Target player not found")
        return participant

    def active_player(self) -> Optional[HandParticipant]:
        if self.phase != Phase.ACTIVE:
            return None
        return self._active_participant()

    def hand_of(self, player_id: int) -> List[str]:
        participant = self._participant(player_id)
        if participant is None:
            raise KeyError(player_id)
        return list(participant.hand)

    def suggest_winner(self, first_id: int, second_id: int) -> Optional[int]:
        """Advisory only: which of two dealt players holds the better hand."""
        result = compare(evaluate_labels(self.hand_of(first_id)), evaluate_labels(self.hand_of(second_id)))
        if result > 0:
            return first_id
        if result < 0:
            return second_id
        return None

    # Public snapshot -------------------------------------------------

    def public_state(self) -> Dict[str, object]:
        return {
            "session_id": self.session_id,
            "session_name": self.session_name,
            "players": [player.to_payload() for player in self.players],
            "game_players": [participant.to_payload() for participant in self.participants],
            "pot": self.pot,
            "current_stake": self.current_stake,
            "active_player_index": self.active_player_index,
            "current_logs": list(self.logs),
            "phase": self.phase.value,
            "side_show_request": self.side_show_request.to_payload() if self.side_show_request else None,
            "show_request": self.show_request.to_payload() if self.show_request else None,
            "current_round": self.current_round,
            "total_rounds": self.total_rounds,
            "is_active": self.is_active,
        }

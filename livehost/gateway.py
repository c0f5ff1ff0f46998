"""Durable records consumed by the host at session-create and hand-complete.

Only an in-memory implementation ships here; a relational backend would
implement the same coroutine methods.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from teenpatti.models import HandSummary, Player


class SessionFinishedError(Exception):
    def __init__(self, name: str) -> None:
        super().__init__(f"Session name {name!r} already used and finished")
        self.name = name


@dataclass
class PlayerRecord:
    id: int
    name: str
    seat: int
    session_balance: int = 0

    def to_player(self) -> Player:
        return Player(id=self.id, name=self.name, seat=self.seat, session_balance=self.session_balance)


@dataclass
class HandRecord:
    id: int
    session_id: int
    winner: str
    pot_size: int
    logs: List[str]
    created_at: float


@dataclass
class SessionRecord:
    id: int
    name: str
    total_rounds: int
    current_round: int = 1
    is_active: bool = True
    players: List[PlayerRecord] = field(default_factory=list)
    hands: List[HandRecord] = field(default_factory=list)

    def roster(self) -> List[Player]:
        return [player.to_player() for player in self.players]


class PersistenceGateway(Protocol):
    async def open_session(
        self, name: str, total_rounds: int, players: Sequence[Mapping[str, object]]
    ) -> SessionRecord:
        ...

    async def load_session(self, name: str) -> Optional[SessionRecord]:
        ...

    async def add_player(self, session_name: str, name: str, seat: int) -> PlayerRecord:
        ...

    async def remove_player(self, session_name: str, player_id: int) -> None:
        ...

    async def record_hand(self, session_name: str, summary: HandSummary) -> HandRecord:
        ...

    async def close_session(self, name: str) -> bool:
        ...


class InMemoryGateway:
    def __init__(self) -> None:
        self.sessions: Dict[str, SessionRecord] = {}
        self._session_ids = itertools.count(1)
        self._player_ids = itertools.count(1)
        self._hand_ids = itertools.count(1)

    async def open_session(
        self, name: str, total_rounds: int, players: Sequence[Mapping[str, object]]
    ) -> SessionRecord:
        existing = self.sessions.get(name)
        if existing is not None:
            if not existing.is_active:
                raise SessionFinishedError(name)
            # Rejoining a live session keeps its stored roster.
            return existing

        record = SessionRecord(id=next(self._session_ids), name=name, total_rounds=total_rounds)
        for idx, entry in enumerate(players):
            seat_raw = entry.get("seat", idx + 1)
            record.players.append(
                PlayerRecord(
                    id=next(self._player_ids),
                    name=str(entry.get("name") or "").strip(),
                    seat=int(seat_raw) if seat_raw is not None else idx + 1,  # type: ignore[arg-type]
                )
            )
        self.sessions[name] = record
        return record

    async def load_session(self, name: str) -> Optional[SessionRecord]:
        return self.sessions.get(name)

    async def add_player(self, session_name: str, name: str, seat: int) -> PlayerRecord:
        record = self._require(session_name)
        player = PlayerRecord(id=next(self._player_ids), name=name, seat=seat)
        record.players.append(player)
        return player

    async def remove_player(self, session_name: str, player_id: int) -> None:
        record = self._require(session_name)
        record.players = [player for player in record.players if player.id != player_id]

    async def record_hand(self, session_name: str, summary: HandSummary) -> HandRecord:
        record = self._require(session_name)
        hand = HandRecord(
            id=next(self._hand_ids),
            session_id=record.id,
            winner=summary.winner_name,
            pot_size=summary.pot,
            logs=list(summary.logs),
            created_at=time.time(),
        )
        record.hands.append(hand)

        by_id = {player.id: player for player in record.players}
        for player_id, change in summary.net_changes.items():
            player = by_id.get(player_id)
            if player is None:
                player = PlayerRecord(id=player_id, name=f"Player {player_id}", seat=0)
                record.players.append(player)
                by_id[player_id] = player
            player.session_balance += change

        record.current_round = summary.current_round
        if summary.is_session_over:
            record.is_active = False
        return hand

    async def close_session(self, name: str) -> bool:
        record = self.sessions.get(name)
        if record is None:
            return False
        record.is_active = False
        return True

    def _require(self, name: str) -> SessionRecord:
        record = self.sessions.get(name)
        if record is None:
            raise KeyError(name)
        return record

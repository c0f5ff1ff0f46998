from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from teenpatti.clock import AsyncioScheduler, Scheduler
from teenpatti.game import TurnEngine
from teenpatti.models import Player, SessionConfig

# SessionRegistry is built once by the composition root and handed to the
# host. It maps a session name to its engine plus who may watch it.


@dataclass
class SessionEntry:
    name: str
    engine: TurnEngine
    operators: Set[str] = field(default_factory=set)
    pending_viewers: Dict[str, str] = field(default_factory=dict)
    viewers: Set[str] = field(default_factory=set)

    def room(self) -> Set[str]:
        return self.operators | self.viewers

    def add_pending(self, conn_id: str, name: str) -> None:
        self.pending_viewers[conn_id] = name

    def resolve_pending(self, conn_id: str, approved: bool) -> Optional[str]:
        name = self.pending_viewers.pop(conn_id, None)
        if name is not None and approved:
            self.viewers.add(conn_id)
        return name

    def drop_connection(self, conn_id: str) -> bool:
        """Forget a connection. True when it had a pending access request."""
        was_pending = self.pending_viewers.pop(conn_id, None) is not None
        self.viewers.discard(conn_id)
        self.operators.discard(conn_id)
        return was_pending

    def pending_payload(self) -> List[Dict[str, str]]:
        return [{"viewer_id": conn_id, "name": name} for conn_id, name in self.pending_viewers.items()]


class SessionRegistry:
    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        scheduler_factory: Callable[[], Scheduler] = AsyncioScheduler,
    ) -> None:
        self.config = config or SessionConfig()
        self.scheduler_factory = scheduler_factory
        self._entries: Dict[str, SessionEntry] = {}

    def create(
        self,
        session_id: int,
        name: str,
        total_rounds: int,
        roster: Iterable[Player],
        current_round: int = 1,
    ) -> Tuple[SessionEntry, bool]:
        existing = self._entries.get(name)
        if existing is not None:
            return existing, False

        engine = TurnEngine(
            session_id,
            name,
            total_rounds,
            config=self.config,
            scheduler=self.scheduler_factory(),
            current_round=current_round,
        )
        engine.set_players(roster)
        entry = SessionEntry(name=name, engine=engine)
        self._entries[name] = entry
        return entry, True

    def get(self, name: str) -> Optional[SessionEntry]:
        return self._entries.get(name)

    def names(self) -> List[str]:
        return sorted(self._entries)

    def active_summaries(self) -> List[Dict[str, object]]:
        return [
            {
                "session": name,
                "current_round": entry.engine.current_round,
                "total_rounds": entry.engine.total_rounds,
                "phase": entry.engine.phase.value,
                "players": len(entry.engine.players),
                "viewers": len(entry.viewers),
            }
            for name, entry in sorted(self._entries.items())
            if entry.engine.is_active
        ]

    def remove(self, name: str) -> Optional[SessionEntry]:
        entry = self._entries.pop(name, None)
        if entry is not None:
            entry.engine.cancel_timers()
        return entry

    def entries_for(self, conn_id: str) -> List[SessionEntry]:
        return [
            entry
            for entry in self._entries.values()
            if conn_id in entry.operators or conn_id in entry.viewers or conn_id in entry.pending_viewers
        ]

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

import websockets
from websockets.asyncio.server import ServerConnection, serve

from teenpatti.models import (
    Action,
    ActionRejected,
    ActionResult,
    EndReason,
    ErrorCode,
    HandSummary,
    Phase,
    SessionConfig,
    SessionEnded,
)

from .gateway import InMemoryGateway, PersistenceGateway, SessionFinishedError
from .registry import SessionEntry, SessionRegistry

LOGGER = logging.getLogger("patti_host")

# HostServer glues TurnEngine instances to websocket clients (operators and
# viewers). Every network concern lives here; the engine stays pure.

OPERATOR_ROLES = ("operator", "admin")
ROLES = OPERATOR_ROLES + ("viewer",)


@dataclass
class HostConfig:
    host: str = "0.0.0.0"
    port: int = 8765
    operator_token: Optional[str] = None
    session: SessionConfig = field(default_factory=SessionConfig)


@dataclass
class ClientSession:
    conn_id: str
    role: str
    websocket: ServerConnection

    @property
    def is_operator(self) -> bool:
        return self.role in OPERATOR_ROLES


class HostServer:
    def __init__(
        self,
        config: HostConfig,
        registry: Optional[SessionRegistry] = None,
        gateway: Optional[PersistenceGateway] = None,
    ) -> None:
        self.config = config
        self.registry = registry or SessionRegistry(config.session)
        self.gateway: PersistenceGateway = gateway or InMemoryGateway()
        self.clients: Dict[str, ClientSession] = {}
        self.lock = asyncio.Lock()
        self._send_lock = asyncio.Lock()
        self._outbox: List[Tuple[List[str], str]] = []
        self._background: Set[asyncio.Task] = set()

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        host = host or self.config.host
        port = port or self.config.port
        async with serve(self._handle_connection, host, port):
            LOGGER.info("Teen Patti host listening on %s:%s", host, port)
            await asyncio.Future()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        # First message must be "hello" so we know the caller's role.
        hello = await self._read_message(websocket)
        if hello is None or hello.get("type") != "hello":
            await self._send_error(websocket, code="BAD_HELLO", msg="Expected hello")
            await websocket.close()
            return

        role_raw = hello.get("role") or "viewer"
        role = role_raw.strip().casefold() if isinstance(role_raw, str) else "viewer"
        if role not in ROLES:
            await self._send_error(websocket, code="BAD_SCHEMA", msg="Unknown role")
            await websocket.close()
            return
        if role in OPERATOR_ROLES and not self._authorized(hello.get("token")):
            LOGGER.warning("Rejected %s hello with bad token", role)
            await self._send_error(websocket, code="UNAUTHORIZED", msg="Operator token required")
            await websocket.close(code=4401, reason="Unauthorized")
            return

        client = self.register_client(websocket, role)
        LOGGER.info("Client %s connected (role=%s)", client.conn_id, role)
        await self._send_json(websocket, "welcome", {"conn_id": client.conn_id, "role": role})

        try:
            async for raw in websocket:
                message = self._decode(raw)
                await self._handle_message(client, message)
        except websockets.ConnectionClosed:
            pass
        finally:
            await self._handle_disconnect(client)
        LOGGER.info("Client %s disconnected", client.conn_id)

    def register_client(self, websocket: ServerConnection, role: str) -> ClientSession:
        client = ClientSession(conn_id=uuid.uuid4().hex[:12], role=role, websocket=websocket)
        self.clients[client.conn_id] = client
        return client

    def _authorized(self, token: object) -> bool:
        if not self.config.operator_token:
            return True
        return isinstance(token, str) and token == self.config.operator_token

    async def _handle_message(self, client: ClientSession, message: Dict[str, Any]) -> None:
        handlers: Dict[str, Callable[[ClientSession, Dict[str, Any]], Awaitable[None]]] = {
            "create_session": self._handle_create_session,
            "join_session": self._handle_join_session,
            "game_action": self._handle_game_action,
            "add_player": self._handle_add_player,
            "remove_player": self._handle_remove_player,
            "resolve_access": self._handle_resolve_access,
            "end_session": self._handle_end_session,
        }
        msg_type = message.get("type")
        if msg_type == "list_sessions":
            await self._send_json(client.websocket, "sessions", {"sessions": self.registry.active_summaries()})
            return
        if msg_type == "request_access":
            await self._handle_request_access(client, message)
            return
        handler = handlers.get(msg_type) if isinstance(msg_type, str) else None
        if handler is None:
            await self._send_error(client.websocket, code="UNKNOWN_TYPE", msg="Unsupported message type")
            return
        if not client.is_operator:
            LOGGER.warning("Viewer %s sent operator command %s", client.conn_id, msg_type)
            await self._send_error(client.websocket, code="UNAUTHORIZED", msg="Viewers are read-only")
            return
        await handler(client, message)

    # Session lifecycle -----------------------------------------------

    async def _handle_create_session(self, client: ClientSession, message: Dict[str, Any]) -> None:
        name = self._session_name(message)
        total_rounds = message.get("total_rounds")
        players = message.get("players") or []
        if name is None or not isinstance(total_rounds, int) or total_rounds < 1 or not isinstance(players, list):
            await self._send_error(client.websocket, code="BAD_SCHEMA", msg="session, total_rounds and players required")
            return

        try:
            record = await self.gateway.open_session(name, total_rounds, [p for p in players if isinstance(p, dict)])
        except SessionFinishedError as exc:
            await self._send_error(client.websocket, code="SESSION_FINISHED", msg=str(exc))
            return

        async with self.lock:
            entry, created = self.registry.create(
                record.id, name, record.total_rounds, record.roster(), record.current_round
            )
            if created:
                self._attach(entry)
                LOGGER.info("Session %s initialized with %s players", name, len(record.players))
            entry.operators.add(client.conn_id)
            state = entry.engine.public_state()
            pending = entry.pending_payload()
        await self._send_json(client.websocket, "game_update", state)
        await self._send_json(client.websocket, "pending_viewers", {"session": name, "pending": pending})

    async def _handle_join_session(self, client: ClientSession, message: Dict[str, Any]) -> None:
        name = self._session_name(message)
        if name is None:
            await self._send_error(client.websocket, code="BAD_SCHEMA", msg="session required")
            return

        if self.registry.get(name) is None:
            # Not in memory (host restarted): restore roster and round from storage.
            record = await self.gateway.load_session(name)
            if record is None or not record.is_active:
                await self._send_error(client.websocket, code="SESSION_NOT_FOUND", msg="Session not found")
                return
            async with self.lock:
                entry, created = self.registry.create(
                    record.id, name, record.total_rounds, record.roster(), record.current_round
                )
                if created:
                    self._attach(entry)
                    LOGGER.info("Restored session %s from storage", name)

        async with self.lock:
            entry = self.registry.get(name)
            if entry is None:
                state = None
            else:
                entry.operators.add(client.conn_id)
                state = entry.engine.public_state()
                pending = entry.pending_payload()
        if state is None:
            await self._send_error(client.websocket, code="SESSION_NOT_FOUND", msg="Session not found")
            return
        await self._send_json(client.websocket, "game_update", state)
        await self._send_json(client.websocket, "pending_viewers", {"session": name, "pending": pending})

    async def _handle_end_session(self, client: ClientSession, message: Dict[str, Any]) -> None:
        name = self._session_name(message)
        if name is None:
            await self._send_error(client.websocket, code="BAD_SCHEMA", msg="session required")
            return
        reason = EndReason.ADMIN_ENDED if client.role == "admin" else EndReason.OPERATOR_ENDED

        async with self.lock:
            entry = self.registry.get(name)
            ended = entry.engine.end_session(reason) if entry else False
        if entry is None:
            # Session not loaded in memory; still retire the stored record.
            if not await self.gateway.close_session(name):
                await self._send_error(client.websocket, code="SESSION_NOT_FOUND", msg="Session not found")
                return
        elif not ended:
            await self._send_error(client.websocket, code="SESSION_COMPLETE", msg="Session already ended")
            return
        LOGGER.info("Session %s ended by %s (%s)", name, client.conn_id, reason.value)
        await self._flush()
        await self._send_json(client.websocket, "ack", {"command": "end_session", "session": name})

    # Game actions ----------------------------------------------------

    async def _handle_game_action(self, client: ClientSession, message: Dict[str, Any]) -> None:
        name = self._session_name(message)
        payload = message.get("action")
        if name is None or not isinstance(payload, dict):
            await self._send_error(client.websocket, code="BAD_SCHEMA", msg="session and action required")
            return
        try:
            action = Action.from_payload(payload)
        except ActionRejected as exc:
            await self._send_error(client.websocket, code=exc.code.value, msg=exc.msg)
            return

        async with self.lock:
            entry = self.registry.get(name)
            if entry is None:
                result = None
            else:
                entry.operators.add(client.conn_id)
                result = entry.engine.handle_action(action)

        if result is None:
            await self._send_error(client.websocket, code="SESSION_NOT_FOUND", msg="Session not found")
            return
        if not result.success:
            LOGGER.warning(
                "Rejected action session=%s type=%s player=%s reason=%s",
                name,
                action.type.value,
                action.player_id,
                result.error,
            )
            await self._send_rejection(client.websocket, result)
            return

        LOGGER.debug("Applied action session=%s type=%s player=%s", name, action.type.value, action.player_id)
        await self._flush()

    async def _handle_add_player(self, client: ClientSession, message: Dict[str, Any]) -> None:
        name = self._session_name(message)
        player = message.get("player")
        if name is None or not isinstance(player, dict) or not str(player.get("name") or "").strip():
            await self._send_error(client.websocket, code="BAD_SCHEMA", msg="session and player name required")
            return
        player_name = str(player["name"]).strip()

        async with self.lock:
            entry = self.registry.get(name)
            error = self._roster_error(entry)
            if error is None and entry is not None:
                seats = {existing.seat for existing in entry.engine.players}
                seat_raw = player.get("seat")
                seat = seat_raw if isinstance(seat_raw, int) else max(seats, default=0) + 1
                if seat in seats:
                    error = (ErrorCode.INVALID_ACTION.value, "Seat already taken")
        if error is not None:
            await self._send_error(client.websocket, code=error[0], msg=error[1])
            return

        record = await self.gateway.add_player(name, player_name, seat)
        async with self.lock:
            # The session may have started or ended while storage was written.
            current = self.registry.get(name)
            if current is None:
                result = ActionResult.fail(ErrorCode.SESSION_COMPLETE, "Session complete")
            else:
                result = current.engine.add_player(record.to_player())
        if not result.success:
            await self.gateway.remove_player(name, record.id)
            LOGGER.warning("Rolled back player %s for session %s: %s", record.id, name, result.error)
            await self._send_rejection(client.websocket, result)
            return
        await self._flush()

    @staticmethod
    def _roster_error(entry: Optional[SessionEntry]) -> Optional[Tuple[str, str]]:
        if entry is None:
            return ("SESSION_NOT_FOUND", "Session not found")
        if not entry.engine.is_active:
            return (ErrorCode.SESSION_COMPLETE.value, "Session complete")
        if entry.engine.phase != Phase.SETUP:
            return (ErrorCode.PHASE_LOCKED.value, "Players can only change during setup")
        return None

    async def _handle_remove_player(self, client: ClientSession, message: Dict[str, Any]) -> None:
        name = self._session_name(message)
        player_id = message.get("player_id")
        if name is None or not isinstance(player_id, int):
            await self._send_error(client.websocket, code="BAD_SCHEMA", msg="session and player_id required")
            return
        async with self.lock:
            entry = self.registry.get(name)
            error = self._roster_error(entry)
            if error is None and entry is not None:
                result = entry.engine.remove_player(player_id)
        if error is not None:
            await self._send_error(client.websocket, code=error[0], msg=error[1])
            return
        if not result.success:
            await self._send_rejection(client.websocket, result)
            return
        await self.gateway.remove_player(name, player_id)
        await self._flush()

    # Viewer access ---------------------------------------------------

    async def _handle_request_access(self, client: ClientSession, message: Dict[str, Any]) -> None:
        name = self._session_name(message)
        viewer_name = message.get("name")
        if name is None or not isinstance(viewer_name, str) or not viewer_name.strip():
            await self._send_error(client.websocket, code="BAD_SCHEMA", msg="session and name required")
            return
        async with self.lock:
            entry = self.registry.get(name)
            if entry is not None:
                entry.add_pending(client.conn_id, viewer_name.strip())
                operators = list(entry.operators)
                pending = entry.pending_payload()
        if entry is None:
            await self._send_error(client.websocket, code="SESSION_NOT_FOUND", msg="Session not found")
            return

        LOGGER.info("Viewer %s (%s) requested access to %s", client.conn_id, viewer_name, name)
        await self._send_json(client.websocket, "access_requested", {"session": name})
        await self._send_to(
            operators,
            "viewer_requested",
            {"session": name, "viewer_id": client.conn_id, "name": viewer_name.strip()},
        )
        await self._send_to(operators, "pending_viewers", {"session": name, "pending": pending})

    async def _handle_resolve_access(self, client: ClientSession, message: Dict[str, Any]) -> None:
        name = self._session_name(message)
        viewer_id = message.get("viewer_id")
        approved = bool(message.get("approved"))
        if name is None or not isinstance(viewer_id, str):
            await self._send_error(client.websocket, code="BAD_SCHEMA", msg="session and viewer_id required")
            return
        async with self.lock:
            entry = self.registry.get(name)
            viewer_name = entry.resolve_pending(viewer_id, approved) if entry else None
            if entry is not None:
                state = entry.engine.public_state()
                operators = list(entry.operators)
                pending = entry.pending_payload()
        if entry is None:
            await self._send_error(client.websocket, code="SESSION_NOT_FOUND", msg="Session not found")
            return
        if viewer_name is None:
            await self._send_error(client.websocket, code="NO_PENDING_REQUEST", msg="No pending request for viewer")
            return

        LOGGER.info("Viewer %s (%s) %s for %s", viewer_id, viewer_name, "approved" if approved else "denied", name)
        if approved:
            await self._send_to([viewer_id], "access_granted", {"session": name, "state": state})
        else:
            await self._send_to([viewer_id], "access_denied", {"session": name})
        await self._send_to(operators, "pending_viewers", {"session": name, "pending": pending})

    async def _handle_disconnect(self, client: ClientSession) -> None:
        notices: List[Tuple[List[str], Dict[str, object]]] = []
        async with self.lock:
            self.clients.pop(client.conn_id, None)
            for entry in self.registry.entries_for(client.conn_id):
                # Operators leave the engine untouched so a reconnect resumes the hand.
                if entry.drop_connection(client.conn_id):
                    notices.append(
                        (list(entry.operators), {"session": entry.name, "pending": entry.pending_payload()})
                    )
        for operators, payload in notices:
            await self._send_to(operators, "pending_viewers", payload)

    # Engine observers ------------------------------------------------

    def _attach(self, entry: SessionEntry) -> None:
        engine = entry.engine
        engine.on_state_change(lambda state: self._queue(entry.room(), "game_update", state))
        engine.on_hand_complete(lambda summary: self._on_hand_complete(entry, summary))
        engine.on_session_ended(lambda ended: self._on_session_ended(entry, ended))

    def _on_hand_complete(self, entry: SessionEntry, summary: HandSummary) -> None:
        LOGGER.info(
            "Hand finished session=%s winner=%s pot=%s next_round=%s",
            entry.name,
            summary.winner_name,
            summary.pot,
            summary.current_round,
        )
        self._queue(entry.room(), "hand_complete", {"session": entry.name, **summary.to_payload()})
        self._spawn(self._persist_hand(entry.name, summary))

    def _on_session_ended(self, entry: SessionEntry, ended: SessionEnded) -> None:
        # Engine calls run under self.lock, so the entry leaves the registry
        # before any later command can reach it.
        LOGGER.info("Session %s ended: %s", entry.name, ended.reason.value)
        self._queue(entry.room(), "session_ended", {"session": entry.name, **ended.to_payload()})
        self.registry.remove(entry.name)
        self._spawn(self._teardown(entry.name))

    async def _persist_hand(self, name: str, summary: HandSummary) -> None:
        try:
            await self.gateway.record_hand(name, summary)
        except Exception:
            LOGGER.exception("Failed to persist hand for session %s", name)

    async def _teardown(self, name: str) -> None:
        await self._flush()
        try:
            await self.gateway.close_session(name)
        except Exception:
            LOGGER.exception("Failed to close session %s in storage", name)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)  # type: ignore[arg-type]
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for queued broadcasts and persistence work to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self._flush()

    # Outbound --------------------------------------------------------

    def _queue(self, targets: Iterable[str], msg_type: str, payload: Dict[str, object]) -> None:
        # Recipients are fixed at mutation time; the room may change before sending.
        self._outbox.append((list(targets), self._envelope(msg_type, payload)))
        self._spawn(self._flush())

    async def _flush(self) -> None:
        async with self._send_lock:
            while self._outbox:
                targets, message = self._outbox.pop(0)
                sockets = [self.clients[conn_id].websocket for conn_id in targets if conn_id in self.clients]
                if sockets:
                    await asyncio.gather(*(socket.send(message) for socket in sockets), return_exceptions=True)

    async def _send_to(self, conn_ids: Iterable[str], msg_type: str, payload: Dict[str, object]) -> None:
        message = self._envelope(msg_type, payload)
        sockets = [self.clients[conn_id].websocket for conn_id in conn_ids if conn_id in self.clients]
        if sockets:
            await asyncio.gather(*(socket.send(message) for socket in sockets), return_exceptions=True)

    async def _send_json(self, websocket: ServerConnection, msg_type: str, payload: Dict[str, object]) -> None:
        try:
            await websocket.send(self._envelope(msg_type, payload))
        except websockets.ConnectionClosed:
            pass

    async def _send_error(self, websocket: ServerConnection, code: str, msg: str) -> None:
        await self._send_json(websocket, "error", {"code": code, "msg": msg})

    async def _send_rejection(self, websocket: ServerConnection, result: ActionResult) -> None:
        code = result.code.value if result.code else ErrorCode.INVALID_ACTION.value
        await self._send_error(websocket, code=code, msg=result.error or "")

    def _envelope(self, msg_type: str, payload: Dict[str, object]) -> str:
        body: Dict[str, object] = {"type": msg_type, "v": 1, "ts": datetime.now(timezone.utc).isoformat()}
        body.update(payload)
        return json.dumps(body)

    async def _read_message(self, websocket: ServerConnection) -> Optional[Dict[str, Any]]:
        try:
            raw = await asyncio.wait_for(websocket.recv(), timeout=5)
        except (asyncio.TimeoutError, websockets.ConnectionClosed):
            return None
        return self._decode(raw)

    def _decode(self, raw: Any) -> Dict[str, Any]:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return {}
        return message if isinstance(message, dict) else {}

    @staticmethod
    def _session_name(message: Dict[str, Any]) -> Optional[str]:
        name = message.get("session")
        if not isinstance(name, str) or not name.strip():
            return None
        return name.strip()


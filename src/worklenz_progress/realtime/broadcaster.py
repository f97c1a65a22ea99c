"""Session and room registry that fans progress events out to connected clients."""

import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from typing import Protocol

logger = logging.getLogger(__name__)

Send = Callable[[str, dict], Awaitable[None]]


def project_room(project_id: str) -> str:
    return f"project:{project_id}"


def task_room(task_id: str) -> str:
    return f"task:{task_id}"


class ProgressChannel(Protocol):
    """What the command handler needs from the realtime layer."""

    async def emit(self, session_id: str, event: str, payload: dict) -> bool: ...

    async def broadcast(
        self,
        event: str,
        payload: dict,
        rooms: Iterable[str] | None = None,
        exclude: str | None = None,
    ) -> int: ...

    def join(self, session_id: str, room: str) -> None: ...

    def leave(self, session_id: str, room: str) -> None: ...


class Broadcaster:
    """In-process ProgressChannel backed by per-session send coroutines.

    Delivery is at-most-once: a session whose send fails is dropped and must
    re-fetch its progress when it reconnects.
    """

    def __init__(self):
        self._sessions: dict[str, Send] = {}
        self._rooms: dict[str, set[str]] = {}

    def connect(self, send: Send, session_id: str | None = None) -> str:
        session_id = session_id or uuid.uuid4().hex
        self._sessions[session_id] = send
        logger.info("Session %s connected (%d open)", session_id, len(self._sessions))
        return session_id

    def disconnect(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            return
        for room in list(self._rooms):
            members = self._rooms[room]
            members.discard(session_id)
            if not members:
                del self._rooms[room]
        logger.info("Session %s disconnected (%d open)", session_id, len(self._sessions))

    def join(self, session_id: str, room: str) -> None:
        if session_id not in self._sessions:
            return
        self._rooms.setdefault(room, set()).add(session_id)

    def leave(self, session_id: str, room: str) -> None:
        members = self._rooms.get(room)
        if not members:
            return
        members.discard(session_id)
        if not members:
            del self._rooms[room]

    def members(self, room: str) -> set[str]:
        return set(self._rooms.get(room, ()))

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    async def emit(self, session_id: str, event: str, payload: dict) -> bool:
        """Send one event to one session. Returns False if it is gone."""
        send = self._sessions.get(session_id)
        if send is None:
            return False
        try:
            await send(event, payload)
        except Exception:
            logger.warning("Dropping session %s after failed send of %s", session_id, event, exc_info=True)
            self.disconnect(session_id)
            return False
        return True

    async def broadcast(
        self,
        event: str,
        payload: dict,
        rooms: Iterable[str] | None = None,
        exclude: str | None = None,
    ) -> int:
        """Send to every session in ``rooms`` (all sessions when None), once each."""
        if rooms is None:
            targets = self.session_ids
        else:
            targets = []
            seen = set()
            for room in rooms:
                for session_id in sorted(self._rooms.get(room, ())):
                    if session_id not in seen:
                        seen.add(session_id)
                        targets.append(session_id)

        delivered = 0
        for session_id in targets:
            if session_id == exclude:
                continue
            if await self.emit(session_id, event, payload):
                delivered += 1
        return delivered

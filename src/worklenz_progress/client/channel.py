"""Client-side event channels used by the progress reconciler."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from worklenz_progress.core.handler import ProgressCommandHandler
from worklenz_progress.realtime.broadcaster import Broadcaster

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class ClientChannel:
    """Event-emitter half of a socket connection as seen from a client.

    Subclasses implement ``emit``; incoming server events are fed to
    ``dispatch``. ``once`` listeners fire on the next matching event only,
    all of them together, the way socket clients behave.
    """

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}
        self._once: dict[str, list[Listener]] = {}

    def emit(self, event: str, data: Any) -> None:
        raise NotImplementedError

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def once(self, event: str, listener: Listener) -> None:
        self._once.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Listener) -> None:
        for table in (self._listeners, self._once):
            listeners = table.get(event, [])
            if listener in listeners:
                listeners.remove(listener)

    def dispatch(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            listener(payload)
        for listener in self._once.pop(event, []):
            listener(payload)


class LocalClientChannel(ClientChannel):
    """A client connected in-process to a Broadcaster and command handler.

    Outgoing events are queued and handled one at a time, so a single
    channel sees its commands processed in the order it emitted them.
    """

    def __init__(self, broadcaster: Broadcaster, handler: ProgressCommandHandler):
        super().__init__()
        self.broadcaster = broadcaster
        self.handler = handler
        self.session_id: str | None = None
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._pump: asyncio.Task | None = None

    async def connect(self) -> str:
        self.session_id = self.broadcaster.connect(self._receive)
        self._pump = asyncio.create_task(self._run())
        return self.session_id

    async def close(self) -> None:
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None
        if self.session_id is not None:
            self.broadcaster.disconnect(self.session_id)

    def emit(self, event: str, data: Any) -> None:
        if self.session_id is None:
            raise RuntimeError("Channel is not connected")
        self._outbox.put_nowait((event, data))

    async def drain(self) -> None:
        """Wait until every emitted event has been handled."""
        await self._outbox.join()

    async def _receive(self, event: str, payload: dict) -> None:
        self.dispatch(event, payload)

    async def _run(self) -> None:
        while True:
            event, data = await self._outbox.get()
            try:
                await self.handler.handle(self.session_id, event, data)
            except Exception:
                logger.exception("Unhandled error processing %s", event)
            finally:
                self._outbox.task_done()

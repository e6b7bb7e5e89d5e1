"""
Broadcast hub for live UI connections.

Every connection gets its own FIFO queue drained by its own sender task, so a
stalled socket only delays itself. Delivery is at most once: no acks, no
persistence, and connections that join late miss earlier messages.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Protocol

from starlette.websockets import WebSocketState

from logging_setup import get_logger, Component
from protocol.messages import BroadcastMessage


logger = get_logger(Component.BROADCAST_HUB)


class Connection(Protocol):
    """The subset of a Starlette WebSocket the hub relies on."""

    client_state: WebSocketState
    application_state: WebSocketState

    async def send_text(self, data: str) -> None: ...


def is_open(connection: Connection) -> bool:
    return (
        connection.client_state == WebSocketState.CONNECTED
        and connection.application_state == WebSocketState.CONNECTED
    )


class _Outbox:
    """Per-connection queue plus the task that writes it to the socket."""

    def __init__(self, connection: Connection, hub: "BroadcastHub"):
        self.connection = connection
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self.task = asyncio.get_running_loop().create_task(self._drain(hub))

    async def _drain(self, hub: "BroadcastHub") -> None:
        while True:
            data = await self.queue.get()
            try:
                await self.connection.send_text(data)
            except Exception as e:
                logger.warning(
                    "Broadcast send failed, dropping connection",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                hub.unregister(self.connection)
                return


class BroadcastHub:
    """Tracks live connections and fans messages out to them."""

    def __init__(self):
        self._outboxes: Dict[int, _Outbox] = {}

    @property
    def connection_count(self) -> int:
        return len(self._outboxes)

    def register(self, connection: Connection) -> None:
        key = id(connection)
        if key in self._outboxes:
            return
        self._outboxes[key] = _Outbox(connection, self)
        logger.info("Connection registered", connections=self.connection_count)

    def unregister(self, connection: Connection) -> None:
        """Idempotent; called on close and on transport error."""
        outbox = self._outboxes.pop(id(connection), None)
        if outbox is None:
            return
        if outbox.task is not asyncio.current_task() and not outbox.task.done():
            outbox.task.cancel()
        logger.info("Connection unregistered", connections=self.connection_count)

    def broadcast(self, message: BroadcastMessage) -> int:
        """
        Queue message for every open connection. Returns the number queued.

        Connections that are not open are skipped; pruning is left to
        unregister on close.
        """
        data = message.to_json()
        delivered = 0
        for outbox in list(self._outboxes.values()):
            if not is_open(outbox.connection):
                continue
            outbox.queue.put_nowait(data)
            delivered += 1
        logger.debug(
            "Broadcast queued",
            message_type=message.type.value,
            recipients=delivered,
            connections=self.connection_count,
        )
        return delivered

    async def close(self, timeout: Optional[float] = 1.0) -> None:
        """Stop all sender tasks (used on application shutdown)."""
        outboxes = list(self._outboxes.values())
        self._outboxes.clear()
        for outbox in outboxes:
            outbox.task.cancel()
        if outboxes:
            await asyncio.wait([o.task for o in outboxes], timeout=timeout)

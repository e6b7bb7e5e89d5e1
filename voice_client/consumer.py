"""
Client side of the broadcast channel.

EventSlot keeps only the newest unprocessed message: if two arrive before the
UI gets to them, the first is dropped. BroadcastListener feeds the slot from
the control plane WebSocket and reconnects after a close.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from logging_setup import get_logger, Component
from protocol.messages import BroadcastMessage


logger = get_logger(Component.CLIENT_CONSUMER)

MessageHandler = Callable[[BroadcastMessage], Any]


def parse_broadcast_message(text: str) -> BroadcastMessage:
    """Parse one text frame. Raises ValueError (pydantic ValidationError) when unusable."""
    return BroadcastMessage.model_validate_json(text)


class EventSlot:
    """Single-message mailbox with newest-wins semantics."""

    def __init__(self, on_arrival: Optional[MessageHandler] = None):
        self._pending: Optional[BroadcastMessage] = None
        self._on_arrival = on_arrival

    @property
    def pending(self) -> Optional[BroadcastMessage]:
        return self._pending

    def offer(self, message: BroadcastMessage) -> None:
        if self._pending is not None:
            logger.debug(
                "Unprocessed message replaced",
                dropped_type=self._pending.type.value,
                message_type=message.type.value,
            )
        self._pending = message
        if self._on_arrival is not None:
            try:
                self._on_arrival(message)
            except Exception as e:
                logger.error("Arrival callback failed", error=str(e), error_type=type(e).__name__)

    def take(self) -> Optional[BroadcastMessage]:
        message = self._pending
        self._pending = None
        return message

    def clear(self) -> None:
        self._pending = None

    def process(self, handler: MessageHandler) -> bool:
        """
        Hand the pending message to handler and clear the slot.

        The slot is cleared before the handler runs, so a re-render triggered
        by the handler never sees the same message again. Returns False when
        nothing was pending.
        """
        message = self.take()
        if message is None:
            return False
        handler(message)
        return True


class BroadcastListener:
    """Keeps a WebSocket open to the control plane and offers every message to a slot."""

    def __init__(
        self,
        url: str,
        slot: EventSlot,
        *,
        session_factory: Callable[..., aiohttp.ClientSession] = aiohttp.ClientSession,
        reconnect_seconds: float = 3.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_connect: Optional[Callable[[], Any]] = None,
    ):
        self.url = url
        self.on_connect = on_connect
        self.slot = slot
        self.reconnect_seconds = reconnect_seconds
        self._session_factory = session_factory
        self._sleep = sleep
        self._running = False
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Connect, read until closed, wait, reconnect. Returns after stop()."""
        self._running = True
        while self._running:
            try:
                async with self._session_factory() as session:
                    async with session.ws_connect(self.url) as ws:
                        self._ws = ws
                        logger.info("Broadcast channel connected", url=self.url)
                        self._notify_connected()
                        async for msg in ws:
                            if msg.type == aiohttp.WSMsgType.TEXT:
                                self.handle_text(msg.data)
                            elif msg.type == aiohttp.WSMsgType.ERROR:
                                logger.warning("Broadcast channel error", error=str(ws.exception()))
                                break
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "Broadcast channel connection failed",
                    url=self.url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._ws = None

            if not self._running:
                break
            logger.info("Broadcast channel closed, reconnecting", delay_seconds=self.reconnect_seconds)
            await self._sleep(self.reconnect_seconds)

    def _notify_connected(self) -> None:
        if self.on_connect is None:
            return
        try:
            self.on_connect()
        except Exception as e:
            logger.error("Connect callback failed", error=str(e), error_type=type(e).__name__)

    def handle_text(self, text: str) -> None:
        try:
            message = parse_broadcast_message(text)
        except ValueError as e:
            logger.warning("Unparseable broadcast frame dropped", error=str(e), frame_size=len(text))
            return
        self.slot.offer(message)

    async def stop(self) -> None:
        self._running = False
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()

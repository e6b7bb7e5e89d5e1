"""
Client voice state machine.

    off -> connecting -> active -> disconnecting -> off
    connecting/active -> error -> off (after error_reset_seconds)

A single VoiceController owns the transport handlers, the local countdown and
the mute flag for one UI tab. Transport callbacks may fire while a user
action is in flight, so every transition re-checks the current state.
"""

from __future__ import annotations

import asyncio
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import aiohttp

from logging_setup import get_logger, Component
from protocol.errors import TransportFailure
from protocol.messages import BroadcastMessage, TerminationReason
from .backend_client import BackendClient, VoiceSession
from .config import ClientConfig, get_config
from .consumer import BroadcastListener, EventSlot
from .events import ErrorEvent, GoodbyeDetected, StateChanged, VoiceEventBus, VoiceLevel
from .transport import Transport, TransportEvent


logger = get_logger(Component.VOICE_CLIENT)

VOICE_LEVEL_WINDOW = 5
POOR_NETWORK_QUALITY = 50


class VoiceState(str, Enum):
    OFF = "off"
    CONNECTING = "connecting"
    ACTIVE = "active"
    DISCONNECTING = "disconnecting"
    ERROR = "error"


class StopReason:
    USER = "user"
    TIMEOUT = "timeout"
    GOODBYE = "goodbye"
    TRANSPORT_LEFT = "transport_left"


class VoiceController:
    """Drives one voice session from the client side."""

    def __init__(
        self,
        backend: BackendClient,
        transport: Transport,
        *,
        owner_id: str,
        bus: Optional[VoiceEventBus] = None,
        config: Optional[ClientConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.backend = backend
        self.transport = transport
        self.owner_id = owner_id
        self.bus = bus or VoiceEventBus()
        self.config = config or get_config()
        self._sleep = sleep

        self.state = VoiceState.OFF
        self.session: Optional[VoiceSession] = None
        self.is_muted = False
        self.time_remaining = self.config.session_ttl_seconds
        self.voice_level = 0.0
        self.slot = EventSlot(on_arrival=self._on_channel_message)

        self._accepting_input = False
        self._levels: deque = deque(maxlen=VOICE_LEVEL_WINDOW)
        self._countdown_task: Optional[asyncio.Task] = None
        self._attempt = 0
        self._channel_connects = 0
        self._tasks: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Callable[[Any], None]] = {
            TransportEvent.JOINED: self._on_joined,
            TransportEvent.LEFT: self._on_left,
            TransportEvent.ERROR: self._on_transport_error,
            TransportEvent.PARTICIPANT_UPDATED: self._on_participant_updated,
            TransportEvent.NETWORK_QUALITY_CHANGED: self._on_network_quality,
            TransportEvent.PARTICIPANT_LEFT: self._on_participant_left,
        }
        self._log = logger.with_session(owner_id=owner_id)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """
        Request a session and join its room.

        Ignored unless the controller is off, so a double click while
        connecting does not provision twice. Returns True once the join call
        has completed; the transport's joined event makes the session active.
        """
        if self.state != VoiceState.OFF:
            self._log.debug("Start ignored", state=self.state.value)
            return False

        self._set_state(VoiceState.CONNECTING)
        self._attach_handlers()
        self._attempt += 1
        attempt = self._attempt

        try:
            session = await self.backend.create_session(self.owner_id)
        except Exception as e:
            if attempt == self._attempt:
                await self._fail(e)
            return False

        if self.state != VoiceState.CONNECTING or attempt != self._attempt:
            # Stopped (and maybe restarted) while provisioning; this room is not wanted
            await self.backend.end_session(session.session_id)
            return False

        self.session = session
        self._log = logger.with_session(self.owner_id, session.session_id)

        try:
            await self.transport.join(session.room_url, session.token)
        except Exception as e:
            await self._fail(TransportFailure(f"Join failed: {e}", owner_id=self.owner_id))
            return False
        return True

    async def stop(self, reason: str = StopReason.USER) -> bool:
        """Leave the room and end the backend session. No-op unless connecting or active."""
        if self.state not in (VoiceState.CONNECTING, VoiceState.ACTIVE):
            self._log.debug("Stop ignored", state=self.state.value, reason=reason)
            return False

        self._log.info("Stopping voice session", reason=reason)
        self._set_state(VoiceState.DISCONNECTING)
        await self._teardown()
        self._set_state(VoiceState.OFF)
        return True

    async def toggle_mute(self) -> bool:
        """
        Flip local audio immediately, then tell the backend.

        The local flag is authoritative for the microphone, so a failed
        backend call is only logged. Returns the new mute state.
        """
        if self.state != VoiceState.ACTIVE or self.session is None:
            return self.is_muted

        self.is_muted = not self.is_muted
        self.transport.set_local_audio_enabled(not self.is_muted)
        self._log.info("Mute toggled", is_muted=self.is_muted)

        ok = await self.backend.set_muted(self.session.session_id, self.is_muted)
        if not ok:
            self._log.warning("Backend did not confirm mute state", is_muted=self.is_muted)
        return self.is_muted

    def on_broadcast(self, message: BroadcastMessage) -> bool:
        """
        React to a broadcast message. A termination signal stops the session,
        except a timeout that names another owner's session.

        Returns True when the message caused a stop to be scheduled.
        """
        if not message.is_termination:
            return False
        if self.state not in (VoiceState.CONNECTING, VoiceState.ACTIVE):
            return False

        reason = message.payload.get("reason") or StopReason.GOODBYE
        if reason == TerminationReason.TIMEOUT.value and not self._is_own_session(message.payload):
            # Timeouts are broadcast to every connection; only ours stops us
            self._log.debug(
                "Timeout for another session ignored",
                other_session_id=message.payload.get("sessionId"),
            )
            return False
        self._log.info("Termination signal received", reason=reason)
        self.bus.publish(GoodbyeDetected(reason=reason))
        self._spawn(self.stop(reason))
        return True

    def listen(
        self,
        *,
        session_factory: Callable[..., aiohttp.ClientSession] = aiohttp.ClientSession,
    ) -> BroadcastListener:
        """
        Build the broadcast listener for this controller.

        Termination signals go straight to on_broadcast. Data events stay in
        self.slot for the UI to take. Run the returned listener as a task.
        """
        return BroadcastListener(
            self.config.ws_url,
            self.slot,
            session_factory=session_factory,
            reconnect_seconds=self.config.reconnect_seconds,
            sleep=self._sleep,
            on_connect=self._on_channel_connected,
        )

    def _on_channel_message(self, message: BroadcastMessage) -> None:
        if message.is_termination:
            self.slot.process(self.on_broadcast)

    def _on_channel_connected(self) -> None:
        self._channel_connects += 1
        if self._channel_connects > 1 and self.state == VoiceState.ACTIVE and self.session is not None:
            # A termination signal may have been missed while disconnected
            self._spawn(self._check_session_alive(self.session.session_id))

    async def _check_session_alive(self, session_id: str) -> None:
        status = await self.backend.session_status(session_id)
        if status is None or status.get("active"):
            return
        if self.session is None or self.session.session_id != session_id:
            return
        self._log.info("Session ended on the server while the channel was down")
        await self.stop(StopReason.TIMEOUT)

    def _is_own_session(self, payload: Dict[str, Any]) -> bool:
        session_id = payload.get("sessionId")
        if session_id and self.session is not None:
            return session_id == self.session.session_id
        user_id = payload.get("userId")
        if user_id:
            return user_id == self.owner_id
        return True

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------

    def _on_joined(self, event: Any = None) -> None:
        if self.state != VoiceState.CONNECTING:
            return
        self._set_state(VoiceState.ACTIVE)
        self._accepting_input = True
        self._start_countdown()

    def _on_left(self, event: Any = None) -> None:
        if self.state == VoiceState.ACTIVE:
            self._spawn(self.stop(StopReason.TRANSPORT_LEFT))

    def _on_transport_error(self, event: Any = None) -> None:
        if self.state not in (VoiceState.CONNECTING, VoiceState.ACTIVE):
            return
        message = event.get("errorMsg") if isinstance(event, dict) else None
        error = TransportFailure(message or "Transport error", owner_id=self.owner_id)
        self._spawn(self._fail(error))

    def _on_participant_updated(self, event: Any) -> None:
        if not self._accepting_input or not isinstance(event, dict):
            return
        participant = event.get("participant") or {}
        if not participant.get("local"):
            return
        level = float(participant.get("audioLevel") or 0.0)
        self._levels.append(level)
        self.voice_level = sum(self._levels) / len(self._levels)
        self.bus.publish(VoiceLevel(level=self.voice_level))

    def _on_network_quality(self, event: Any) -> None:
        quality = event.get("quality") if isinstance(event, dict) else event
        if isinstance(quality, (int, float)) and quality < POOR_NETWORK_QUALITY:
            self._log.warning("Poor network quality", quality=quality)

    def _on_participant_left(self, event: Any) -> None:
        participant = (event.get("participant") if isinstance(event, dict) else None) or {}
        if participant.get("local") or self.state != VoiceState.ACTIVE:
            return
        # The agent leaves the room after saying goodbye
        self._log.info("Agent left the room")
        self.bus.publish(GoodbyeDetected(reason=StopReason.GOODBYE))
        self._spawn(self.stop(StopReason.GOODBYE))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_state(self, state: VoiceState) -> None:
        previous = self.state
        if previous == state:
            return
        self.state = state
        self._log.info("Voice state changed", state=state.value, previous=previous.value)
        self.bus.publish(StateChanged(state=state.value, previous=previous.value))

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _attach_handlers(self) -> None:
        for event, handler in self._handlers.items():
            self.transport.on(event, handler)

    def _detach_handlers(self) -> None:
        for event, handler in self._handlers.items():
            self.transport.off(event, handler)

    def _start_countdown(self) -> None:
        self._cancel_countdown()
        self.time_remaining = self.config.session_ttl_seconds
        self._countdown_task = self._spawn(self._run_countdown())

    async def _run_countdown(self) -> None:
        while self.time_remaining > 0:
            await self._sleep(1)
            self.time_remaining -= 1
            if self.time_remaining == self.config.countdown_warning_seconds:
                self._log.warning("Voice session ending soon", seconds_remaining=self.time_remaining)
        self._countdown_task = None
        self._log.info("Session time expired")
        await self.stop(StopReason.TIMEOUT)

    def _cancel_countdown(self) -> None:
        task = self._countdown_task
        self._countdown_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _teardown(self) -> None:
        """Release everything in a fixed order; each step runs even if the previous failed."""
        self._accepting_input = False
        self._cancel_countdown()

        try:
            await self.transport.leave()
        except Exception as e:
            failure = TransportFailure(f"Leave failed: {e}", owner_id=self.owner_id)
            self._log.warning(failure.message, error_code=failure.code, error_type=type(e).__name__)

        session = self.session
        if session is not None:
            # Let webhooks already in flight reach the backend first
            await self._sleep(self.config.disconnect_settle_seconds)
            await self.backend.end_session(session.session_id)

        self.session = None
        self.is_muted = False
        self.time_remaining = self.config.session_ttl_seconds
        self.voice_level = 0.0
        self._levels.clear()
        self._detach_handlers()
        self._log = logger.with_session(owner_id=self.owner_id)

    async def _fail(self, error: Exception) -> None:
        if self.state not in (VoiceState.CONNECTING, VoiceState.ACTIVE):
            return
        code = getattr(error, "code", None)
        self._log.error(
            "Voice session failed",
            error=str(error),
            error_type=type(error).__name__,
            error_code=code,
        )
        self._set_state(VoiceState.ERROR)
        self.bus.publish(ErrorEvent(message="Voice mode is unavailable right now"))
        await self._teardown()
        self._spawn(self._reset_after_error())

    async def _reset_after_error(self) -> None:
        await self._sleep(self.config.error_reset_seconds)
        if self.state == VoiceState.ERROR:
            self._set_state(VoiceState.OFF)

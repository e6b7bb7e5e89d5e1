"""
Client event bus.

The controller publishes a closed set of events; the UI subscribes. Handlers
run synchronously in publish order and a failing handler never stops the
others.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from logging_setup import get_logger, Component


logger = get_logger(Component.VOICE_CLIENT)


@dataclass(frozen=True)
class StateChanged:
    state: str
    previous: Optional[str] = None


@dataclass(frozen=True)
class VoiceLevel:
    """Smoothed local microphone level, 0.0 - 1.0."""

    level: float


@dataclass(frozen=True)
class ErrorEvent:
    message: str


@dataclass(frozen=True)
class GoodbyeDetected:
    reason: str


VoiceEvent = Union[StateChanged, VoiceLevel, ErrorEvent, GoodbyeDetected]
VoiceEventHandler = Callable[[VoiceEvent], None]


class VoiceEventBus:
    """Observer registry for VoiceEvent."""

    def __init__(self):
        self._handlers: List[VoiceEventHandler] = []

    def subscribe(self, handler: VoiceEventHandler) -> Callable[[], None]:
        """Register handler. Returns a callable that unsubscribes it."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: VoiceEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Voice event handler failed",
                    event=type(event).__name__,
                    error=str(e),
                    error_type=type(e).__name__,
                )

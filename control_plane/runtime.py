"""
Process-scoped runtime: the one set of session/debounce/broadcast state the
server works with. Built once at startup, torn down on shutdown, and handed
to routes through app.state instead of living in module globals.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from logging_setup import get_logger, Component
from protocol.messages import BroadcastMessage, TerminationReason
from .broadcast import BroadcastHub
from .config import ControlPlaneConfig
from .events import control_plane_emitter
from .provisioning import PipecatProvisioner, Provisioner
from .session import EndReason, Session, SessionManager
from .webhook_handler import WebhookGate


logger = get_logger(Component.CONTROL_PLANE)


@dataclass
class VoiceRuntime:
    config: ControlPlaneConfig
    manager: SessionManager
    hub: BroadcastHub
    gate: WebhookGate

    async def shutdown(self, reason: str = EndReason.SHUTDOWN) -> None:
        """End every session and close all connections."""
        self.gate.cancel_pending()
        self.manager.shutdown_all(reason)
        await self.hub.close()


def build_runtime(
    config: ControlPlaneConfig,
    provisioner: Optional[Provisioner] = None,
    *,
    now: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> VoiceRuntime:
    hub = BroadcastHub()
    manager = SessionManager(
        provisioner or PipecatProvisioner(config),
        ttl_seconds=config.session_ttl_seconds,
        now=now,
        sleep=sleep,
    )
    gate = WebhookGate(
        manager,
        hub,
        debounce_ms=config.debounce_ms,
        goodbye_grace_seconds=config.goodbye_grace_seconds,
        now=now,
        sleep=sleep,
    )

    def _broadcast_timeout(session: Session) -> None:
        message = BroadcastMessage.termination(
            TerminationReason.TIMEOUT,
            session_id=session.external_session_id,
            user_id=session.owner_id,
        )
        recipients = hub.broadcast(message)
        control_plane_emitter.termination_broadcast(
            TerminationReason.TIMEOUT.value,
            recipients,
            owner_id=session.owner_id,
            session_id=session.external_session_id,
        )

    manager.add_expiry_listener(_broadcast_timeout)
    return VoiceRuntime(config=config, manager=manager, hub=hub, gate=gate)

"""
Voice session store and lifecycle management.

Each owner (user) has at most one live voice session. A session links the
owner to a provisioned voice room, its join token and a hard expiry. The
provider has no "end session" operation, so ending a session is purely
local: the expiry timer is cancelled and the records are dropped, and the
room expires on the provider side.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from logging_setup import get_logger, Component
from .errors import SessionNotFound
from .events import control_plane_emitter
from .provisioning import Provisioner


logger = get_logger(Component.SESSION_MANAGER)

DEFAULT_TTL_SECONDS = 600.0

ExpiryListener = Callable[["Session"], Any]


class EndReason:
    """Reasons recorded when a session ends."""

    USER_INITIATED = "user_initiated"
    NEW_SESSION_REQUESTED = "new_session_requested"
    TIMEOUT = "timeout"
    USER_GOODBYE = "user_goodbye"
    SHUTDOWN = "shutdown"


@dataclass
class Session:
    """A live voice session for one owner."""

    owner_id: str
    external_session_id: str
    room_url: str
    token: str
    created_at: float
    expires_at: float
    muted: bool = False

    def __post_init__(self):
        if not self.owner_id:
            raise ValueError("owner_id is required")
        if not self.external_session_id:
            raise ValueError("external_session_id is required")
        if self.expires_at < self.created_at:
            raise ValueError("expires_at must not be before created_at")

    def remaining_ms(self, now: float) -> int:
        return max(0, int(round((self.expires_at - now) * 1000)))

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_summary(self) -> Dict[str, Any]:
        """Monitoring view; never includes the join token."""
        return {
            "userId": self.owner_id,
            "sessionId": self.external_session_id,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "isMuted": self.muted,
        }


class SessionStore:
    """
    Sessions by owner plus the reverse index external_session_id -> owner.

    Both maps are only ever changed together by insert/remove.
    """

    def __init__(self):
        self._by_owner: Dict[str, Session] = {}
        self._owner_by_external: Dict[str, str] = {}

    def insert(self, session: Session) -> None:
        existing = self._by_owner.get(session.owner_id)
        if existing is not None:
            self._owner_by_external.pop(existing.external_session_id, None)
        self._by_owner[session.owner_id] = session
        self._owner_by_external[session.external_session_id] = session.owner_id

    def remove(self, owner_id: str) -> Optional[Session]:
        session = self._by_owner.pop(owner_id, None)
        if session is not None:
            self._owner_by_external.pop(session.external_session_id, None)
        return session

    def get(self, owner_id: str) -> Optional[Session]:
        return self._by_owner.get(owner_id)

    def get_by_external_id(self, external_session_id: str) -> Optional[Session]:
        owner_id = self._owner_by_external.get(external_session_id)
        if owner_id is None:
            return None
        return self._by_owner.get(owner_id)

    def owner_for(self, external_session_id: str) -> Optional[str]:
        return self._owner_by_external.get(external_session_id)

    def owners(self) -> List[str]:
        return list(self._by_owner.keys())

    def list(self) -> List[Session]:
        return list(self._by_owner.values())

    def __len__(self) -> int:
        return len(self._by_owner)

    def __contains__(self, owner_id: object) -> bool:
        return owner_id in self._by_owner


class SessionManager:
    """
    Creates and ends voice sessions and owns their expiry timers.

    Callers never need to check for an existing session before creating one.
    Concurrent create_session calls for the same owner are serialized, so a
    second call waits for the first provisioning to finish and then replaces
    that session instead of leaking a second room.
    """

    def __init__(
        self,
        provisioner: Provisioner,
        *,
        store: Optional[SessionStore] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        now: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provisioner = provisioner
        self.store = store or SessionStore()
        self.ttl_seconds = ttl_seconds
        self._now = now
        self._sleep = sleep
        self._expiry_tasks: Dict[str, asyncio.Task] = {}
        self._owner_locks: Dict[str, asyncio.Lock] = {}
        # Callers holding or waiting on each owner lock
        self._lock_users: Dict[str, int] = {}
        self._expiry_listeners: List[ExpiryListener] = []

    def add_expiry_listener(self, listener: ExpiryListener) -> None:
        """Register a callback run after a session is removed by its timer."""
        self._expiry_listeners.append(listener)

    async def create_session(self, owner_id: str) -> Session:
        """
        Provision a new session for owner_id, ending any existing one first.

        Provisioning errors propagate unchanged and leave no partial state.
        """
        lock = self._owner_locks.setdefault(owner_id, asyncio.Lock())
        self._lock_users[owner_id] = self._lock_users.get(owner_id, 0) + 1
        try:
            async with lock:
                if owner_id in self.store:
                    logger.info("Owner has existing session, ending it first", owner_id=owner_id)
                    self.end_session(owner_id, EndReason.NEW_SESSION_REQUESTED)

                room = await self.provisioner.start_agent_session(owner_id)

                now = self._now()
                session = Session(
                    owner_id=owner_id,
                    external_session_id=f"session-{owner_id}-{uuid.uuid4().hex[:12]}",
                    room_url=room.room_url,
                    token=room.token,
                    created_at=now,
                    expires_at=now + self.ttl_seconds,
                )
                self.store.insert(session)
                self._start_expiry_timer(session)
        finally:
            self._release_owner_lock(owner_id)

        control_plane_emitter.session_created(
            owner_id,
            session.external_session_id,
            room_url=session.room_url,
            ttl_seconds=self.ttl_seconds,
        )
        logger.with_session(owner_id, session.external_session_id).info(
            "Session created",
            expires_at=session.expires_at,
        )
        return session

    def end_session(self, owner_id: str, reason: str = EndReason.USER_INITIATED) -> bool:
        """
        End the owner's session. Idempotent: returns False when there is none.

        Only local state is touched; the provider room expires on its own.
        """
        session = self.store.remove(owner_id)
        if session is None:
            logger.debug("No active session to end", owner_id=owner_id, reason=reason)
            return False

        self._cancel_expiry_timer(owner_id)

        control_plane_emitter.session_ended(owner_id, session.external_session_id, reason)
        logger.with_session(owner_id, session.external_session_id).info(
            "Session ended locally (provider room expires on its own)",
            reason=reason,
        )
        return True

    def shutdown_all(self, reason: str = EndReason.SHUTDOWN) -> int:
        """End every session. Returns how many were ended."""
        owners = self.store.owners()
        ended = sum(1 for owner_id in owners if self.end_session(owner_id, reason))
        logger.info("Ended all sessions", reason=reason, count=ended)
        return ended

    def set_muted(self, owner_id: str, muted: bool) -> bool:
        session = self.store.get(owner_id)
        if session is None:
            return False
        session.muted = muted
        control_plane_emitter.session_muted(owner_id, session.external_session_id, muted)
        return True

    def is_muted(self, owner_id: str) -> bool:
        session = self.store.get(owner_id)
        return session.muted if session else False

    def get_remaining_ms(self, owner_id: str) -> int:
        session = self.store.get(owner_id)
        if session is None:
            return 0
        return session.remaining_ms(self._now())

    def session_status(self, owner_id: str) -> Dict[str, Any]:
        session = self.store.get(owner_id)
        if session is None:
            return {"active": False}
        return {
            "active": True,
            "remainingTime": session.remaining_ms(self._now()),
            "isMuted": session.muted,
        }

    def get_session(self, owner_id: str) -> Optional[Session]:
        return self.store.get(owner_id)

    def get_session_by_external_id(self, external_session_id: str) -> Optional[Session]:
        return self.store.get_by_external_id(external_session_id)

    def owner_for(self, external_session_id: str) -> Optional[str]:
        return self.store.owner_for(external_session_id)

    def require_owner(self, external_session_id: str) -> str:
        """Owner of a live session; raises SessionNotFound when there is none."""
        owner_id = self.store.owner_for(external_session_id)
        if owner_id is None:
            raise SessionNotFound(f"No active session {external_session_id}")
        return owner_id

    def list_sessions(self) -> List[Session]:
        return self.store.list()

    def _release_owner_lock(self, owner_id: str) -> None:
        users = self._lock_users.get(owner_id, 0) - 1
        if users > 0:
            self._lock_users[owner_id] = users
            return
        self._lock_users.pop(owner_id, None)
        self._owner_locks.pop(owner_id, None)

    def _start_expiry_timer(self, session: Session) -> None:
        owner_id = session.owner_id
        external_id = session.external_session_id
        delay = max(0.0, session.expires_at - self._now())

        async def _timer():
            try:
                await self._sleep(delay)
            except asyncio.CancelledError:
                return
            current = self.store.get(owner_id)
            if current is None or current.external_session_id != external_id:
                return
            # Drop our own handle first so end_session does not cancel the running task
            self._expiry_tasks.pop(owner_id, None)
            logger.info("Session timeout", owner_id=owner_id, session_id=external_id)
            self.end_session(owner_id, EndReason.TIMEOUT)
            for listener in list(self._expiry_listeners):
                try:
                    listener(current)
                except Exception as e:
                    logger.error(
                        "Expiry listener failed",
                        owner_id=owner_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )

        self._expiry_tasks[owner_id] = asyncio.get_running_loop().create_task(_timer())

    def _cancel_expiry_timer(self, owner_id: str) -> None:
        task = self._expiry_tasks.pop(owner_id, None)
        if task is not None and not task.done():
            task.cancel()

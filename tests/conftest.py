"""
Shared fixtures: a controllable clock, fake provisioning, fake sockets and a
fake client transport.
"""
import asyncio
from typing import Any, Dict, List, Tuple

import aiohttp
import pytest
from starlette.websockets import WebSocketState

from control_plane.config import ControlPlaneConfig
from control_plane.provisioning import ProvisionedRoom
from observability.event_store import event_store


async def settle(rounds: int = 20) -> None:
    """Let woken tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """
    Manual clock. sleep() blocks until advance() moves time past its deadline.
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self.current = start
        self._sleepers: List[Tuple[float, asyncio.Future]] = []

    def now(self) -> float:
        return self.current

    async def sleep(self, delay: float) -> None:
        if delay <= 0:
            await asyncio.sleep(0)
            return
        fut = asyncio.get_running_loop().create_future()
        self._sleepers.append((self.current + delay, fut))
        await fut

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, fut in self._sleepers if not fut.done())

    async def advance(self, seconds: float) -> None:
        target = self.current + seconds
        while True:
            await settle()
            self._sleepers = [(d, f) for d, f in self._sleepers if not f.done()]
            due = [s for s in self._sleepers if s[0] <= target]
            if not due:
                break
            deadline, fut = min(due, key=lambda s: s[0])
            self.current = max(self.current, deadline)
            fut.set_result(None)
        self.current = target
        await settle()


class FakeProvisioner:
    """Provisioner returning numbered rooms; can be told to fail or to block."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.calls: List[str] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def start_agent_session(self, owner_id: str) -> ProvisionedRoom:
        self.calls.append(owner_id)
        n = len(self.calls)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return ProvisionedRoom(
            room_url=f"https://example.daily.co/room-{n}",
            token=f"token-{n}",
        )


class FakeWebSocket:
    """Just enough of a Starlette WebSocket for the broadcast hub."""

    def __init__(self, fail: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: List[str] = []
        self.fail = fail

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def close(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED


class FakeTransport:
    """Records calls and lets tests fire transport events."""

    def __init__(self, emit_joined: bool = True):
        self.emit_joined = emit_joined
        self.handlers: Dict[str, List[Any]] = {}
        self.joined: List[Tuple[str, str]] = []
        self.left = 0
        self.audio_enabled = True
        self.join_error: Exception | None = None
        self.leave_error: Exception | None = None
        self.calls: List[str] = []

    async def join(self, url: str, token: str) -> None:
        self.calls.append("join")
        if self.join_error is not None:
            raise self.join_error
        self.joined.append((url, token))
        if self.emit_joined:
            self.fire("joined", {})

    async def leave(self) -> None:
        self.calls.append("leave")
        self.left += 1
        if self.leave_error is not None:
            raise self.leave_error

    def set_local_audio_enabled(self, enabled: bool) -> None:
        self.audio_enabled = enabled

    def on(self, event: str, handler: Any) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Any) -> None:
        if handler in self.handlers.get(event, []):
            self.handlers[event].remove(handler)

    def fire(self, event: str, payload: Any = None) -> None:
        for handler in list(self.handlers.get(event, [])):
            handler(payload)

    @property
    def handler_count(self) -> int:
        return sum(len(h) for h in self.handlers.values())


class FakeWSMessage:
    def __init__(self, data, type=aiohttp.WSMsgType.TEXT):
        self.data = data
        self.type = type


class FakeClientWebSocket:
    def __init__(self, frames):
        self._frames = list(frames)
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed or not self._frames:
            self.closed = True
            raise StopAsyncIteration
        return FakeWSMessage(self._frames.pop(0))

    async def close(self):
        self.closed = True

    def exception(self):
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False


class FakeWSSession:
    """Hands out one FakeClientWebSocket per connection, then fails to connect."""

    def __init__(self, connections):
        self.connections = list(connections)
        self.urls = []

    def __call__(self):
        return self

    def ws_connect(self, url):
        self.urls.append(url)
        if not self.connections:
            raise aiohttp.ClientConnectionError("refused")
        return FakeClientWebSocket(self.connections.pop(0))

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provisioner():
    return FakeProvisioner()


@pytest.fixture
def cp_config():
    return ControlPlaneConfig(
        pipecat_api_key="test-key",
        webhook_url="http://localhost:3051/api/answer",
    )


@pytest.fixture(autouse=True)
def clean_event_store():
    event_store.clear()
    yield
    event_store.clear()

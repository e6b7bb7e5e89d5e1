"""Runtime wiring tests: expiry broadcast and shutdown."""
import json

import pytest

from conftest import FakeWebSocket
from control_plane.runtime import build_runtime


@pytest.mark.asyncio
async def test_expiry_broadcasts_timeout(cp_config, provisioner, clock):
    runtime = build_runtime(cp_config, provisioner=provisioner, now=clock.now, sleep=clock.sleep)
    ws = FakeWebSocket()
    runtime.hub.register(ws)
    session = await runtime.manager.create_session("u1")
    assert 599000 <= runtime.manager.get_remaining_ms("u1") <= 600000

    await clock.advance(600)

    assert runtime.manager.get_session("u1") is None
    [message] = [json.loads(m) for m in ws.sent]
    assert message["type"] == "termination-signal"
    assert message["payload"] == {
        "reason": "timeout",
        "sessionId": session.external_session_id,
        "userId": "u1",
    }
    await runtime.shutdown()


@pytest.mark.asyncio
async def test_shutdown_ends_everything(cp_config, provisioner, clock):
    runtime = build_runtime(cp_config, provisioner=provisioner, now=clock.now, sleep=clock.sleep)
    runtime.hub.register(FakeWebSocket())
    await runtime.manager.create_session("u1")
    await runtime.manager.create_session("u2")
    runtime.gate.accept_event({"transcription": "goodbye"})

    await runtime.shutdown()

    assert runtime.manager.list_sessions() == []
    assert runtime.hub.connection_count == 0
    assert clock.pending_sleepers == 0

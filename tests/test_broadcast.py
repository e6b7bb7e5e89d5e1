"""Broadcast hub tests."""
import asyncio
import json

import pytest

from conftest import FakeWebSocket, settle
from control_plane.broadcast import BroadcastHub
from protocol.messages import BroadcastMessage, TerminationReason


class StalledWebSocket(FakeWebSocket):
    """send_text never completes until released."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def send_text(self, data: str) -> None:
        await self.release.wait()
        self.sent.append(data)


@pytest.mark.asyncio
async def test_broadcast_reaches_every_open_connection():
    hub = BroadcastHub()
    a, b = FakeWebSocket(), FakeWebSocket()
    hub.register(a)
    hub.register(b)

    count = hub.broadcast(BroadcastMessage.data_event(answer=7, transcription="seven"))
    await settle()

    assert count == 2
    assert json.loads(a.sent[0])["payload"]["answer"] == 7
    assert a.sent == b.sent
    await hub.close()


@pytest.mark.asyncio
async def test_register_and_unregister_are_idempotent():
    hub = BroadcastHub()
    ws = FakeWebSocket()
    hub.register(ws)
    hub.register(ws)
    assert hub.connection_count == 1

    hub.unregister(ws)
    hub.unregister(ws)
    assert hub.connection_count == 0
    assert hub.broadcast(BroadcastMessage.data_event(answer=1, transcription=None)) == 0
    await settle()


@pytest.mark.asyncio
async def test_closed_connection_skipped_not_pruned():
    hub = BroadcastHub()
    ws = FakeWebSocket()
    hub.register(ws)
    ws.close()

    assert hub.broadcast(BroadcastMessage.data_event(answer=1, transcription=None)) == 0
    assert hub.connection_count == 1
    await hub.close()


@pytest.mark.asyncio
async def test_failed_send_unregisters_connection():
    hub = BroadcastHub()
    bad, good = FakeWebSocket(fail=True), FakeWebSocket()
    hub.register(bad)
    hub.register(good)

    hub.broadcast(BroadcastMessage.termination(TerminationReason.TIMEOUT))
    await settle()

    assert hub.connection_count == 1
    assert len(good.sent) == 1
    await hub.close()


@pytest.mark.asyncio
async def test_stalled_connection_does_not_block_others_and_order_is_fifo():
    hub = BroadcastHub()
    stalled, fast = StalledWebSocket(), FakeWebSocket()
    hub.register(stalled)
    hub.register(fast)

    for n in range(3):
        hub.broadcast(BroadcastMessage.data_event(answer=n, transcription=None))
    await settle()

    assert [json.loads(m)["payload"]["answer"] for m in fast.sent] == [0, 1, 2]
    assert stalled.sent == []

    stalled.release.set()
    await settle()
    assert [json.loads(m)["payload"]["answer"] for m in stalled.sent] == [0, 1, 2]
    await hub.close()


@pytest.mark.asyncio
async def test_close_stops_sender_tasks():
    hub = BroadcastHub()
    hub.register(FakeWebSocket())
    await hub.close()
    assert hub.connection_count == 0

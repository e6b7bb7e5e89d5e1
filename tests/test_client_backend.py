"""Voice client backend HTTP client tests (fake aiohttp session)."""
import aiohttp
import pytest

from protocol.errors import ConfigurationError, ProvisioningFailure
from voice_client.backend_client import BackendClient, VoiceSession
from voice_client.config import ClientConfig
from voice_client.events import StateChanged, VoiceEventBus


class FakeResponse:
    def __init__(self, status=200, data=None):
        self.status = status
        self._data = data

    async def json(self, content_type=None):
        return self._data

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeHTTP:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def __call__(self):
        return self

    def _request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs.get("json")))
        if self.error is not None:
            raise self.error
        return self.response

    def post(self, url, **kwargs):
        return self._request("POST", url, **kwargs)

    def delete(self, url, **kwargs):
        return self._request("DELETE", url, **kwargs)

    def get(self, url, **kwargs):
        return self._request("GET", url, **kwargs)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


CONFIG = ClientConfig(api_url="http://cp.test")


@pytest.mark.asyncio
async def test_create_session():
    http = FakeHTTP(FakeResponse(data={
        "sessionId": "session-u1-abc",
        "roomUrl": "https://x.daily.co/r",
        "token": "tok",
        "expiresAt": 1700000600000,
        "remainingTime": 600000,
    }))
    client = BackendClient(CONFIG, session_factory=http)

    session = await client.create_session("u1")

    assert session == VoiceSession("session-u1-abc", "https://x.daily.co/r", "tok", 1700000600000, 600000)
    assert http.requests == [("POST", "http://cp.test/api/voice/session", {"userId": "u1"})]


@pytest.mark.asyncio
async def test_create_session_not_configured():
    client = BackendClient(CONFIG, session_factory=FakeHTTP(FakeResponse(status=503)))
    with pytest.raises(ConfigurationError):
        await client.create_session("u1")


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [FakeResponse(status=502), FakeResponse(data={"sessionId": "x"})])
async def test_create_session_failures(response):
    client = BackendClient(CONFIG, session_factory=FakeHTTP(response))
    with pytest.raises(ProvisioningFailure):
        await client.create_session("u1")


@pytest.mark.asyncio
async def test_create_session_unreachable():
    client = BackendClient(CONFIG, session_factory=FakeHTTP(error=aiohttp.ClientConnectionError("refused")))
    with pytest.raises(ProvisioningFailure) as exc_info:
        await client.create_session("u1")
    assert exc_info.value.category == "provider.network_error"


@pytest.mark.asyncio
@pytest.mark.parametrize("status,expected", [(200, True), (404, True), (500, False)])
async def test_end_session_treats_not_found_as_success(status, expected):
    http = FakeHTTP(FakeResponse(status=status))
    client = BackendClient(CONFIG, session_factory=http)

    assert await client.end_session("session-u1-abc") is expected
    assert http.requests[0][:2] == ("DELETE", "http://cp.test/api/voice/session/session-u1-abc")


@pytest.mark.asyncio
async def test_end_session_network_error_is_swallowed():
    client = BackendClient(CONFIG, session_factory=FakeHTTP(error=aiohttp.ClientConnectionError("refused")))
    assert await client.end_session("session-u1-abc") is False


@pytest.mark.asyncio
async def test_set_muted():
    http = FakeHTTP(FakeResponse(data={"success": True, "isMuted": True}))
    client = BackendClient(CONFIG, session_factory=http)

    assert await client.set_muted("session-u1-abc", True) is True
    assert http.requests == [
        ("POST", "http://cp.test/api/voice/mute", {"sessionId": "session-u1-abc", "isMuted": True})
    ]


@pytest.mark.asyncio
async def test_session_status_is_none_when_unreadable():
    ok = BackendClient(CONFIG, session_factory=FakeHTTP(FakeResponse(data={"active": True, "remainingTime": 5})))
    missing = BackendClient(CONFIG, session_factory=FakeHTTP(FakeResponse(status=500)))

    assert (await ok.session_status("s"))["active"] is True
    assert await missing.session_status("s") is None


def test_event_bus_unsubscribe_and_failing_handler():
    bus = VoiceEventBus()
    seen = []

    def broken(event):
        raise RuntimeError("ui bug")

    bus.subscribe(broken)
    unsubscribe = bus.subscribe(seen.append)
    bus.publish(StateChanged(state="active", previous="connecting"))
    unsubscribe()
    bus.publish(StateChanged(state="off", previous="active"))

    assert seen == [StateChanged(state="active", previous="connecting")]

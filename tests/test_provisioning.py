"""
Provisioning client tests.

Uses a fake aiohttp session so no request leaves the process.
"""
import aiohttp
import pytest

from control_plane.config import ControlPlaneConfig
from control_plane.errors import ConfigurationError, ProvisioningErrorCategory, ProvisioningFailure
from control_plane.provisioning import PipecatProvisioner, parse_start_response
from observability.event_store import event_store


class FakeResponse:
    def __init__(self, status=200, data=None, text=""):
        self.status = status
        self._data = data
        self._text = text

    async def json(self, content_type=None):
        return self._data

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeClientSession:
    """Records posts and returns a canned response (or raises)."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.posts = []
        self.kwargs = {}

    def __call__(self, **kwargs):
        self.kwargs = kwargs
        return self

    def post(self, url, json=None, headers=None):
        self.posts.append({"url": url, "json": json, "headers": headers})
        if self.error is not None:
            raise self.error
        return self.response

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


@pytest.fixture
def config():
    return ControlPlaneConfig(
        pipecat_api_key="pk_test",
        pipecat_agent_name="math-agent",
        pipecat_api_url="https://api.example.com/v1",
        webhook_url="https://app.example.com/api/answer",
        provisioning_timeout_seconds=5,
    )


@pytest.mark.asyncio
async def test_start_agent_session(config):
    fake = FakeClientSession(FakeResponse(data={"dailyRoom": "https://x.daily.co/r1", "dailyToken": "tok"}))
    provisioner = PipecatProvisioner(config, session_factory=fake)

    room = await provisioner.start_agent_session("u1")

    assert room.room_url == "https://x.daily.co/r1"
    assert room.token == "tok"
    [post] = fake.posts
    assert post["url"] == "https://api.example.com/v1/public/math-agent/start"
    assert post["headers"]["Authorization"] == "Bearer pk_test"
    assert post["json"] == {
        "createDailyRoom": True,
        "metadata": {"userId": "u1", "webhookUrl": "https://app.example.com/api/answer"},
    }
    assert fake.kwargs["timeout"].total == 5


@pytest.mark.asyncio
async def test_missing_key_is_configuration_error(config):
    config.pipecat_api_key = None
    fake = FakeClientSession(FakeResponse(data={}))
    provisioner = PipecatProvisioner(config, session_factory=fake)

    assert provisioner.is_configured is False
    with pytest.raises(ConfigurationError):
        await provisioner.start_agent_session("u1")
    assert fake.posts == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,category",
    [
        (401, ProvisioningErrorCategory.AUTH_FAILED),
        (404, ProvisioningErrorCategory.MISCONFIGURED),
        (429, ProvisioningErrorCategory.RATE_LIMITED),
        (503, ProvisioningErrorCategory.CAPACITY_LIMITED),
        (500, ProvisioningErrorCategory.UNKNOWN_ERROR),
    ],
)
async def test_error_status_is_classified(config, status, category):
    fake = FakeClientSession(FakeResponse(status=status, text="nope"))
    provisioner = PipecatProvisioner(config, session_factory=fake)

    with pytest.raises(ProvisioningFailure) as exc_info:
        await provisioner.start_agent_session("u1")

    assert exc_info.value.category == category
    assert exc_info.value.status == status
    [event] = event_store.query(event_type="provider.event")
    assert event["category"] == category


@pytest.mark.asyncio
async def test_network_error_is_classified(config):
    fake = FakeClientSession(error=aiohttp.ClientConnectionError("Cannot connect to host"))
    provisioner = PipecatProvisioner(config, session_factory=fake)

    with pytest.raises(ProvisioningFailure) as exc_info:
        await provisioner.start_agent_session("u1")
    assert exc_info.value.category == ProvisioningErrorCategory.NETWORK_ERROR


@pytest.mark.asyncio
async def test_incomplete_response_is_failure(config):
    fake = FakeClientSession(FakeResponse(data={"dailyRoom": "https://x.daily.co/r1"}))
    provisioner = PipecatProvisioner(config, session_factory=fake)

    with pytest.raises(ProvisioningFailure):
        await provisioner.start_agent_session("u1")


def test_parse_start_response_accepts_both_shapes():
    a = parse_start_response({"dailyRoom": "https://r", "dailyToken": "t"})
    b = parse_start_response({"room_url": "https://r", "token": "t", "sessionId": "p-1"})
    assert (a.room_url, a.token) == (b.room_url, b.token)
    assert b.provider_session_id == "p-1"


def test_parse_start_response_rejects_missing_token():
    with pytest.raises(ValueError):
        parse_start_response({"room_url": "https://r"})

"""Shared test fixtures and configuration."""
import pytest
from fastapi.testclient import TestClient

from voicechat.core.config import Settings, get_settings
from voicechat.core.dependencies import get_log_buffer, get_upstream_transport
from voicechat.main import app
from voicechat.services.agent_gateway.gateway import AgentGateway
from voicechat.services.agent_launch.builder import LaunchRequestBuilder
from voicechat.services.call_session.backend import LocalCallBackend
from voicechat.services.logs.buffer import LogBuffer
from voicechat.services.tokens.service import TokenService
from tests.fakes import UpstreamStub

FIXED_NOW = 1_700_000_000.0


@pytest.fixture
def test_settings():
    """Settings with every credential filled in."""
    return Settings(
        _env_file=None,
        agora_app_id="agora-app-id-0001",
        agora_app_certificate="agora-cert-0001",
        agora_customer_id="agora-customer",
        agora_customer_secret="agora-secret",
        shengwang_app_id="sw-app-id-0001",
        shengwang_app_certificate="sw-cert-0001",
        shengwang_customer_id="sw-customer",
        shengwang_customer_secret="sw-secret",
        elevenlabs_api_key="el-test-key-123456",
        minimax_api_key="mm-test-key-123456",
        minimax_group_id="mm-group",
        volcano_app_id="volc-app",
        volcano_token="volc-token-123456",
        llm_url="https://llm.example.com/v1/chat/completions",
        llm_api_key="sk-test-llm-key-123456",
        llm_model="",
        voice_password="testpass123",
    )


@pytest.fixture
def empty_settings():
    """Settings with no credentials at all."""
    return Settings(_env_file=None, **{name: "" for name in (
        "agora_app_id",
        "agora_app_certificate",
        "agora_customer_id",
        "agora_customer_secret",
        "shengwang_app_id",
        "shengwang_app_certificate",
        "shengwang_customer_id",
        "shengwang_customer_secret",
        "voice_password",
    )})


class RecordingSigner:
    """Stands in for the vendor token builder and records its arguments."""

    def __init__(self):
        self.calls = []

    def __call__(self, app_id, app_certificate, channel_name, uid, role, expires_ts):
        self.calls.append((app_id, app_certificate, channel_name, uid, role, expires_ts))
        return f"tok-{channel_name}-{uid}"


@pytest.fixture
def signer():
    return RecordingSigner()


@pytest.fixture
def token_service(test_settings, signer):
    return TokenService(settings=test_settings, signer=signer, clock=lambda: FIXED_NOW)


@pytest.fixture
def upstream():
    """Programmable vendor API."""
    return UpstreamStub()


@pytest.fixture
def log_buffer():
    return LogBuffer(capacity=200)


@pytest.fixture
def gateway(test_settings, log_buffer, upstream):
    return AgentGateway(settings=test_settings, log_buffer=log_buffer, transport=upstream.transport)


@pytest.fixture
def builder(test_settings):
    return LaunchRequestBuilder(settings=test_settings, clock=lambda: FIXED_NOW)


@pytest.fixture
def local_backend(token_service, gateway, builder):
    return LocalCallBackend(token_service=token_service, gateway=gateway, builder=builder)


@pytest.fixture
def test_client(test_settings, signer, upstream, log_buffer, monkeypatch):
    """Create FastAPI test client with overrides."""
    monkeypatch.setattr("voicechat.services.tokens.service._vendor_signer", signer)

    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_upstream_transport] = lambda: upstream.transport
    app.dependency_overrides[get_log_buffer] = lambda: log_buffer

    client = TestClient(app)

    yield client

    # Clear overrides
    app.dependency_overrides.clear()

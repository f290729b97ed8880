"""Unit tests for the call session state machine."""
import asyncio
import json
import random

import httpx
import pytest

from voicechat.core.dependencies import get_log_buffer
from voicechat.core.errors import IllegalTransitionError
from voicechat.main import app
from voicechat.services.agent_launch.models import LaunchOptions, LaunchSession
from voicechat.services.call_session.backend import LocalCallBackend
from voicechat.services.call_session.controller import CallSessionController
from voicechat.services.call_session.models import CallOptions, CallStatus, is_valid_transition
from voicechat.services.logs.buffer import LogBuffer
from voicechat.services.platforms.profiles import Platform
from voicechat.services.rtc.base import USER_PUBLISHED, USER_UNPUBLISHED
from voicechat.services.tokens.service import TokenService
from tests.fakes import FakeRtcClient, RemoteUser


@pytest.fixture
def agent_online(upstream):
    upstream.add("POST", "/join", json={"agent_id": "agent-1", "status": "RUNNING"})
    upstream.add("POST", "/leave", json={})
    return upstream


@pytest.fixture
async def make_controller(local_backend, log_buffer):
    """Build controllers around a fake RTC client; tickers are stopped afterwards."""
    controllers = []

    def _make(client=None, backend=None, buffer=None, seed=7, tick_interval=1.0):
        rtc = client or FakeRtcClient()
        controller = CallSessionController(
            backend=backend or local_backend,
            rtc_client_factory=lambda: rtc,
            log_buffer=buffer if buffer is not None else log_buffer,
            tick_interval=tick_interval,
            rng=random.Random(seed),
        )
        controller.rtc = rtc
        controllers.append(controller)
        return controller

    yield _make

    for controller in controllers:
        controller._stop_ticker()


class TestTransitionTable:
    """Test the allowed transitions."""

    def test_allowed(self):
        assert is_valid_transition(CallStatus.IDLE, CallStatus.CONNECTING)
        assert is_valid_transition(CallStatus.CONNECTING, CallStatus.CONNECTED)
        assert is_valid_transition(CallStatus.CONNECTED, CallStatus.TALKING)
        assert is_valid_transition(CallStatus.TALKING, CallStatus.CONNECTED)
        assert is_valid_transition(CallStatus.TALKING, CallStatus.IDLE)
        assert is_valid_transition(CallStatus.ERROR, CallStatus.CONNECTING)

    def test_rejected(self):
        assert not is_valid_transition(CallStatus.IDLE, CallStatus.TALKING)
        assert not is_valid_transition(CallStatus.IDLE, CallStatus.CONNECTED)
        assert not is_valid_transition(CallStatus.CONNECTING, CallStatus.TALKING)
        assert not is_valid_transition(CallStatus.CONNECTING, CallStatus.IDLE)


class TestStart:
    """Test the start sequence."""

    @pytest.mark.asyncio
    async def test_happy_path(self, make_controller, agent_online, signer):
        controller = make_controller()

        session = await controller.start(CallOptions(language="en-US"))

        assert session.status == CallStatus.CONNECTED
        assert session.agent_id == "agent-1"
        assert session.error is None
        assert session.channel_name.startswith("aura-")
        assert session.user_uid != session.agent_uid
        rtc = controller.rtc
        assert rtc.calls[:3] == ["join", "create_microphone_track", "publish"]
        assert rtc.joined_with == (
            "agora-app-id-0001",
            session.channel_name,
            f"tok-{session.channel_name}-{session.user_uid}",
            session.user_uid,
        )
        # One grant for the user, one for the agent
        assert [call[3] for call in signer.calls] == [session.user_uid, session.agent_uid]

    @pytest.mark.asyncio
    async def test_agent_receives_agent_token(self, make_controller, agent_online):
        controller = make_controller()
        session = await controller.start()

        body = json.loads(agent_online.requests_to("/join")[0].content)
        assert body["properties"]["channel"] == session.channel_name
        assert body["properties"]["agent_rtc_uid"] == str(session.agent_uid)
        assert body["properties"]["remote_rtc_uids"] == [str(session.user_uid)]
        assert body["properties"]["token"] == f"tok-{session.channel_name}-{session.agent_uid}"

    @pytest.mark.asyncio
    async def test_start_while_connected_rejected(self, make_controller, agent_online):
        controller = make_controller()
        await controller.start()

        with pytest.raises(IllegalTransitionError):
            await controller.start()
        assert controller.status == CallStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_token_failure_skips_join(self, empty_settings, signer, gateway, builder, upstream):
        backend = LocalCallBackend(
            token_service=TokenService(settings=empty_settings, signer=signer),
            gateway=gateway,
            builder=builder,
        )
        created = []

        def factory():
            client = FakeRtcClient()
            created.append(client)
            return client

        controller = CallSessionController(backend=backend, rtc_client_factory=factory)

        session = await controller.start()

        assert session.status == CallStatus.ERROR
        assert session.error
        assert created == []
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_join_failure_releases_client(self, make_controller, agent_online):
        controller = make_controller(client=FakeRtcClient(fail_on="join"))

        session = await controller.start()

        assert session.status == CallStatus.ERROR
        assert session.error == "join failed"
        assert "leave" in controller.rtc.calls
        assert agent_online.requests == []

    @pytest.mark.asyncio
    async def test_microphone_failure(self, make_controller, agent_online):
        controller = make_controller(client=FakeRtcClient(fail_on="create_microphone_track"))

        session = await controller.start()

        assert session.status == CallStatus.ERROR
        assert session.error == "Microphone unavailable"
        assert controller.rtc.calls[-1] == "leave"
        assert agent_online.requests == []

    @pytest.mark.asyncio
    async def test_publish_failure_closes_track(self, make_controller, agent_online):
        controller = make_controller(client=FakeRtcClient(fail_on="publish"))

        session = await controller.start()

        assert session.error == "Failed to publish microphone audio"
        assert controller.rtc.track.stopped
        assert controller.rtc.track.closed

    @pytest.mark.asyncio
    async def test_agent_failure_message_visible(self, make_controller, upstream, log_buffer):
        upstream.add("POST", "/join", status_code=500, json={"message": "X"})
        controller = make_controller()

        session = await controller.start()

        assert session.status == CallStatus.ERROR
        assert session.error == "X"
        assert session.error_status == 500
        assert session.to_dict()["errorStatus"] == 500
        assert session.duration_seconds == 0
        rtc = controller.rtc
        assert rtc.track.stopped and rtc.track.closed
        assert rtc.calls[-1] == "leave"
        assert "remove_all_listeners" in rtc.calls
        # Nothing was started, so nothing to stop
        assert upstream.requests_to("/leave") == []
        errors = [e for e in log_buffer.entries() if e.category == "CALL_ERROR"]
        assert errors and errors[-1].message.endswith("Error: X")

    @pytest.mark.asyncio
    async def test_remote_audio_during_connect(self, make_controller, agent_online):
        """Test audio published before the agent is confirmed lands in talking."""

        async def publish_remote(client):
            await client.emit(USER_PUBLISHED, RemoteUser(42), "audio")

        controller = make_controller(client=FakeRtcClient(hooks={"publish": publish_remote}))

        session = await controller.start()

        assert session.status == CallStatus.TALKING
        assert controller.rtc.subscribed[0][1] == "audio"


class TestRemoteEvents:
    """Test remote publish and unpublish."""

    @pytest.mark.asyncio
    async def test_talking_and_back(self, make_controller, agent_online):
        controller = make_controller()
        await controller.start()
        rtc = controller.rtc
        agent = RemoteUser(controller.session.agent_uid)

        await rtc.emit(USER_PUBLISHED, agent, "audio")
        assert controller.status == CallStatus.TALKING
        assert rtc.subscribed == [(agent, "audio")]

        await rtc.emit(USER_UNPUBLISHED, agent, "audio")
        assert controller.status == CallStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_video_does_not_change_state(self, make_controller, agent_online):
        controller = make_controller()
        await controller.start()

        await controller.rtc.emit(USER_PUBLISHED, RemoteUser(5), "video")

        assert controller.status == CallStatus.CONNECTED
        assert controller.rtc.subscribed[0][1] == "video"

    @pytest.mark.asyncio
    async def test_events_ignored_after_hangup(self, make_controller, agent_online):
        controller = make_controller()
        await controller.start()
        rtc = controller.rtc
        handlers = {event: list(h) for event, h in rtc.handlers.items()}
        await controller.hangup()

        # A late event from the old client must not touch the idle session
        for handler in handlers[USER_PUBLISHED]:
            await handler(RemoteUser(1), "audio")
        assert controller.status == CallStatus.IDLE


class TestHangup:
    """Test teardown."""

    @pytest.mark.asyncio
    async def test_hangup_releases_everything(self, make_controller, agent_online):
        controller = make_controller()
        await controller.start()
        rtc = controller.rtc

        session = await controller.hangup()

        assert session.status == CallStatus.IDLE
        assert session.duration_seconds == 0
        assert rtc.track.stopped and rtc.track.closed
        assert rtc.handlers == {}
        assert rtc.calls[-1] == "leave"
        assert agent_online.requests_to("/agents/agent-1/leave")

    @pytest.mark.asyncio
    async def test_hangup_when_idle_rejected(self, make_controller):
        controller = make_controller()
        with pytest.raises(IllegalTransitionError):
            await controller.hangup()

    @pytest.mark.asyncio
    async def test_agent_already_gone(self, make_controller, upstream, log_buffer):
        upstream.add("POST", "/join", json={"agent_id": "agent-1"})
        upstream.add("POST", "/leave", status_code=404, json={"message": "agent not found"})
        controller = make_controller()
        await controller.start()

        session = await controller.hangup()

        assert session.status == CallStatus.IDLE
        assert any("agent not found" in e.message for e in log_buffer.entries() if e.is_error)

    @pytest.mark.asyncio
    async def test_leave_failure_does_not_block_agent_stop(self, make_controller, agent_online):
        controller = make_controller(client=FakeRtcClient(fail_on="leave"))
        await controller.start()

        session = await controller.hangup()

        assert session.status == CallStatus.IDLE
        assert len(agent_online.requests_to("/leave")) == 1

    @pytest.mark.asyncio
    async def test_agent_stop_network_failure_swallowed(self, make_controller, upstream):
        upstream.add("POST", "/join", json={"agent_id": "agent-1"})
        upstream.add("POST", "/leave", error=httpx.ConnectError("down"))
        controller = make_controller()
        await controller.start()

        session = await controller.hangup()

        assert session.status == CallStatus.IDLE
        assert controller.rtc.calls[-1] == "leave"


class TestFailAndRecovery:
    """Test runtime failures, stale attempts, retry and reset."""

    @pytest.mark.asyncio
    async def test_fail_while_connected(self, make_controller, agent_online):
        controller = make_controller()
        await controller.start()

        session = await controller.fail("Connection lost")

        assert session.status == CallStatus.ERROR
        assert session.error == "Connection lost"
        assert agent_online.requests_to("/leave")

    @pytest.mark.asyncio
    async def test_fail_during_join_discards_attempt(self, make_controller, agent_online):
        holder = {}

        async def fail_mid_join(client):
            await holder["controller"].fail("network lost")

        controller = make_controller(client=FakeRtcClient(hooks={"join": fail_mid_join}))
        holder["controller"] = controller

        session = await controller.start()

        assert session.status == CallStatus.ERROR
        assert session.error == "network lost"
        assert "create_microphone_track" not in controller.rtc.calls
        assert agent_online.requests == []

    @pytest.mark.asyncio
    async def test_agent_started_after_fail_is_stopped(self, make_controller, token_service, gateway, builder, agent_online):
        """Test an agent that comes up after the call was abandoned is not left running."""
        holder = {}

        class AbandoningBackend(LocalCallBackend):
            async def start_agent(self, session, options):
                result = await super().start_agent(session, options)
                await holder["controller"].fail("user cancelled")
                return result

        backend = AbandoningBackend(token_service=token_service, gateway=gateway, builder=builder)
        controller = make_controller(backend=backend)
        holder["controller"] = controller

        session = await controller.start()

        assert session.status == CallStatus.ERROR
        assert session.error == "user cancelled"
        assert len(agent_online.requests_to("/agents/agent-1/leave")) == 1

    @pytest.mark.asyncio
    async def test_retry_reuses_options(self, make_controller, upstream):
        upstream.add("POST", "/join", status_code=500, json={"message": "busy"})
        controller = make_controller()
        first = await controller.start(CallOptions(platform=Platform.SHENGWANG, language="en-US"))
        assert first.status == CallStatus.ERROR

        upstream.add("POST", "/join", json={"agent_id": "agent-2"})
        second = await controller.retry()

        assert second.status == CallStatus.CONNECTED
        assert second.platform == Platform.SHENGWANG
        assert second.agent_id == "agent-2"
        assert second is not first

    @pytest.mark.asyncio
    async def test_reset(self, make_controller, upstream):
        upstream.add("POST", "/join", status_code=500, json={"message": "busy"})
        controller = make_controller()
        await controller.start()

        session = await controller.reset()

        assert session.status == CallStatus.IDLE

    @pytest.mark.asyncio
    async def test_reset_when_idle_rejected(self, make_controller):
        controller = make_controller()
        with pytest.raises(IllegalTransitionError):
            await controller.reset()


class TestDuration:
    """Test the duration counter."""

    @pytest.mark.asyncio
    async def test_ticks_while_connected(self, make_controller, agent_online):
        controller = make_controller(tick_interval=0.01)
        await controller.start()

        await asyncio.sleep(0.1)
        assert controller.session.duration_seconds >= 1

        await controller.hangup()
        assert controller.session.duration_seconds == 0
        await asyncio.sleep(0.05)
        assert controller.session.duration_seconds == 0


class TestSharedLogBuffer:
    """Test two calls writing to one diagnostic buffer."""

    @pytest.mark.asyncio
    async def test_concurrent_sessions(self, make_controller, agent_online, test_settings):
        shared = LogBuffer(capacity=12)
        first = make_controller(buffer=shared, seed=1)
        second = make_controller(buffer=shared, seed=2)
        first.backend.gateway.log_buffer = shared
        assert first.log_buffer is shared
        assert second.log_buffer is shared

        await asyncio.gather(first.start(), second.start())
        await asyncio.gather(first.hangup(), second.hangup())

        app.dependency_overrides[get_log_buffer] = lambda: shared
        try:
            async with httpx.AsyncClient(
                transport=httpx.ASGITransport(app=app), base_url="http://test"
            ) as client:
                response = await client.get("/agent")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 12
        messages = " ".join(entry["message"] for entry in data["logs"])
        assert first.session.channel_name in messages
        assert second.session.channel_name in messages
        call_channels = {
            entry["message"].split("]")[0].lstrip("[")
            for entry in data["logs"]
            if entry["category"].startswith("CALL_")
        }
        assert call_channels == {first.session.channel_name, second.session.channel_name}
        timestamps = [entry["timestamp"] for entry in data["logs"]]
        assert timestamps == sorted(timestamps)


class TestGuards:
    """Test which entry points each state accepts."""

    @pytest.mark.asyncio
    async def test_start_from_error_rejected(self, make_controller, upstream):
        upstream.add("POST", "/join", status_code=500, json={"message": "busy"})
        controller = make_controller()
        await controller.start()

        with pytest.raises(IllegalTransitionError):
            await controller.start()
        assert controller.status == CallStatus.ERROR
        assert controller.session.error == "busy"

    @pytest.mark.asyncio
    async def test_retry_from_idle_rejected(self, make_controller, upstream):
        controller = make_controller()

        with pytest.raises(IllegalTransitionError):
            await controller.retry()
        assert controller.status == CallStatus.IDLE
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_empty_shared_buffer_is_used(self, local_backend):
        """Test a freshly created buffer is not swapped for a private one."""
        shared = LogBuffer(capacity=20)
        controller = CallSessionController(
            backend=local_backend,
            rtc_client_factory=FakeRtcClient,
            log_buffer=shared,
        )

        assert controller.log_buffer is shared
        # No upstream stub is registered, so the agent start fails
        session = await controller.start()

        categories = [e.category for e in shared.entries()]
        assert session.status == CallStatus.ERROR
        assert "CALL_INFO" in categories
        assert "CALL_ERROR" in categories
        assert all(e.message.startswith(f"[{session.channel_name}]") for e in shared.entries())


class _RepeatingRandom(random.Random):
    """Draws the same participant id every time."""

    def randrange(self, *args, **kwargs):
        return 5


class TestIdentityFailure:
    """Test id generation failures go through the error path."""

    @pytest.mark.asyncio
    async def test_uid_collision_cap(self, local_backend, log_buffer):
        created = []

        def factory():
            created.append(FakeRtcClient())
            return created[-1]

        controller = CallSessionController(
            backend=local_backend,
            rtc_client_factory=factory,
            log_buffer=log_buffer,
            rng=_RepeatingRandom(),
        )

        session = await controller.start()

        assert session.status == CallStatus.ERROR
        assert session.error == "Could not generate distinct participant ids"
        assert session.error_status is None
        assert created == []

        session = await controller.reset()
        assert session.status == CallStatus.IDLE


class TestLocalBackendDefaults:
    """Test the in-process backend without an injected builder."""

    @pytest.mark.asyncio
    async def test_builds_with_gateway_settings(self, token_service, gateway, agent_online):
        backend = LocalCallBackend(token_service=token_service, gateway=gateway)

        result = await backend.start_agent(
            LaunchSession(channel_name="chan", agent_uid=2, user_uid=1),
            LaunchOptions(language="en-US"),
        )

        assert result.agent_id == "agent-1"
        body = json.loads(agent_online.requests_to("/join")[0].content)
        assert body["name"].startswith("convoai-")
        assert body["properties"]["llm"]["url"] == "https://llm.example.com/v1/chat/completions"
        assert body["properties"]["llm"]["greeting_message"] == "Hello! How can I help you today?"

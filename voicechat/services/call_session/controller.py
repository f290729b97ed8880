"""Call session controller.

Drives one call through token acquisition, channel join, microphone publish
and agent launch, and tears everything down on hangup or failure. Every
state change goes through ``_transition`` and the table in ``models``.
"""
import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import SecretStr

from voicechat.core.errors import IllegalTransitionError, MediaError, VoiceChatError
from voicechat.services.agent_launch.models import LaunchOptions, LaunchSession
from voicechat.services.call_session.backend import CallBackend
from voicechat.services.call_session.identifiers import generate_channel_name, generate_uids
from voicechat.services.call_session.models import (
    CallOptions,
    CallSession,
    CallStatus,
    is_valid_transition,
)
from voicechat.services.logs.buffer import LogBuffer
from voicechat.services.rtc.base import (
    MEDIA_AUDIO,
    USER_JOINED,
    USER_LEFT,
    USER_PUBLISHED,
    USER_UNPUBLISHED,
    AudioTrack,
    RtcClient,
)

logger = logging.getLogger(__name__)


class _StaleAttempt(Exception):
    """Raised inside a start sequence that was torn down while awaiting."""


class _Attempt:
    """Resources acquired by one start sequence."""

    def __init__(self, number: int, options: CallOptions):
        self.number = number
        self.options = options
        self.client: Optional[RtcClient] = None
        self.track: Optional[AudioTrack] = None
        self.agent_id: Optional[str] = None
        self.closed = False


class CallSessionController:
    """State machine for a single voice call.

    ``start()`` is only accepted from idle and ``retry()`` only from error;
    anything else raises ``IllegalTransitionError``.
    """

    def __init__(
        self,
        backend: CallBackend,
        rtc_client_factory: Callable[[], RtcClient],
        log_buffer: Optional[LogBuffer] = None,
        tick_interval: float = 1.0,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.rtc_client_factory = rtc_client_factory
        self.log_buffer = log_buffer if log_buffer is not None else LogBuffer()
        self.tick_interval = tick_interval
        self.rng = rng
        self.clock = clock
        self.session = CallSession()
        self._attempt: Optional[_Attempt] = None
        self._attempt_count = 0
        self._last_options: Optional[CallOptions] = None
        self._remote_audio = False
        self._ticker: Optional[asyncio.Task] = None

    @property
    def status(self) -> CallStatus:
        return self.session.status

    # Public transitions

    async def start(self, options: Optional[CallOptions] = None) -> CallSession:
        """
        Start a call.

        Returns:
            The session, either connected/talking or in error with
            ``session.error`` set

        Raises:
            IllegalTransitionError: If the controller is not idle
        """
        self._require("start", CallStatus.IDLE)
        self._transition(CallStatus.CONNECTING)
        return await self._run(options or CallOptions())

    async def retry(self) -> CallSession:
        """Start again from the error state with the last options."""
        self._require("retry", CallStatus.ERROR)
        self._transition(CallStatus.CONNECTING)
        return await self._run(self._last_options or CallOptions())

    async def hangup(self) -> CallSession:
        """End a connected call and return to idle."""
        self._require("hang up", CallStatus.CONNECTED, CallStatus.TALKING)
        self._log("info", "Hanging up")
        await self._teardown(self._attempt)
        self._transition(CallStatus.IDLE)
        self._log("info", "Call ended")
        logger.info(f"[CALL] Session ended: {self.session.to_dict()}")
        return self.session

    async def reset(self) -> CallSession:
        """Leave the error state."""
        self._require("reset", CallStatus.ERROR)
        await self._teardown(self._attempt)
        self._transition(CallStatus.IDLE)
        return self.session

    async def fail(self, reason: str) -> CallSession:
        """Record a runtime failure and release everything the call holds."""
        self._transition(CallStatus.ERROR)
        self.session.error = reason
        self.session.error_status = None
        self._log("error", f"Error: {reason}")
        await self._teardown(self._attempt)
        return self.session

    # Start sequence

    async def _run(self, options: CallOptions) -> CallSession:
        self._last_options = options
        self._attempt_count += 1
        attempt = _Attempt(self._attempt_count, options)
        self._attempt = attempt
        self._remote_audio = False

        session = CallSession(platform=options.platform)
        session.status = CallStatus.CONNECTING
        session.started_at = datetime.now(timezone.utc)
        self.session = session

        try:
            session.user_uid, session.agent_uid = generate_uids(self.rng)
            session.channel_name = generate_channel_name(
                options.channel_prefix, self.clock, self.rng
            )
            self._log(
                "info",
                f"Connecting on {options.platform.value}, "
                f"user {session.user_uid}, agent {session.agent_uid}",
            )
            await self._connect(attempt, session)
        except _StaleAttempt:
            self._log("info", f"Discarding result of abandoned attempt {attempt.number}")
            await self._release(attempt)
            return session
        except Exception as e:
            if attempt.closed:
                self._log("info", f"Attempt {attempt.number} failed after teardown: {e}")
                await self._release(attempt)
                return session
            await self._fail_attempt(attempt, session, e)
            return session

        session.agent_id = attempt.agent_id
        self._transition(CallStatus.CONNECTED)
        self._log("success", "Agent online")
        if self._remote_audio:
            self._transition(CallStatus.TALKING)
        return session

    async def _connect(self, attempt: _Attempt, session: CallSession) -> None:
        platform = session.platform

        user_grant = await self.backend.issue_grant(session.channel_name, session.user_uid, platform)
        self._ensure_live(attempt)
        self._log("success", "User token acquired")

        client = self.rtc_client_factory()
        attempt.client = client
        self._subscribe_events(attempt, client)
        await client.join(user_grant.app_id, session.channel_name, user_grant.token, session.user_uid)
        self._ensure_live(attempt)
        self._log("success", "Joined channel")

        try:
            attempt.track = await client.create_microphone_track()
        except Exception as e:
            raise MediaError("Microphone unavailable", details=str(e))
        self._ensure_live(attempt)
        try:
            await client.publish(attempt.track)
        except Exception as e:
            raise MediaError("Failed to publish microphone audio", details=str(e))
        self._ensure_live(attempt)
        self._log("success", "Microphone enabled")

        agent_grant = await self.backend.issue_grant(session.channel_name, session.agent_uid, platform)
        self._ensure_live(attempt)

        self._log("info", "Starting AI agent")
        options = attempt.options
        result = await self.backend.start_agent(
            LaunchSession(
                channel_name=session.channel_name,
                agent_uid=session.agent_uid,
                user_uid=session.user_uid,
                token=SecretStr(agent_grant.token),
                platform=platform,
            ),
            LaunchOptions(
                language=options.language,
                system_prompt=options.system_prompt,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                tts_vendor=options.tts_vendor,
            ),
        )
        attempt.agent_id = result.agent_id
        self._ensure_live(attempt)

    async def _fail_attempt(self, attempt: _Attempt, session: CallSession, error: Exception) -> None:
        if isinstance(error, VoiceChatError):
            message = error.message
            status_code = error.status_code
            logger.warning(f"[CALL] Start failed - {type(error).__name__}: {message}, details: {error.details}")
        else:
            message = str(error) or type(error).__name__
            status_code = None
            logger.error(f"[CALL] Start failed - {type(error).__name__}: {message}", exc_info=True)
        session.error = message
        session.error_status = status_code
        self._log("error", f"Error: {message}")
        self._transition(CallStatus.ERROR)
        await self._teardown(attempt)

    def _require(self, action: str, *allowed: CallStatus) -> None:
        status = self.session.status
        if status not in allowed:
            raise IllegalTransitionError(
                f"Cannot {action} while {status.value}",
                details={"status": status.value, "action": action},
            )

    def _ensure_live(self, attempt: _Attempt) -> None:
        if not self._is_live(attempt):
            raise _StaleAttempt()

    def _is_live(self, attempt: _Attempt) -> bool:
        return not attempt.closed and attempt is self._attempt

    # Remote events

    def _subscribe_events(self, attempt: _Attempt, client: RtcClient) -> None:
        async def on_user_published(user: Any, media_type: str) -> None:
            await self._on_user_published(attempt, client, user, media_type)

        def on_user_unpublished(user: Any, media_type: str) -> None:
            self._on_user_unpublished(attempt, user, media_type)

        def on_user_joined(user: Any) -> None:
            if self._is_live(attempt):
                self._log("info", f"Participant {getattr(user, 'uid', user)} joined")

        def on_user_left(user: Any, *args: Any) -> None:
            if self._is_live(attempt):
                self._log("info", f"Participant {getattr(user, 'uid', user)} left")

        client.on(USER_PUBLISHED, on_user_published)
        client.on(USER_UNPUBLISHED, on_user_unpublished)
        client.on(USER_JOINED, on_user_joined)
        client.on(USER_LEFT, on_user_left)

    async def _on_user_published(
        self, attempt: _Attempt, client: RtcClient, user: Any, media_type: str
    ) -> None:
        if not self._is_live(attempt):
            return
        try:
            await client.subscribe(user, media_type)
        except Exception as e:
            self._log("error", f"Subscribe to {getattr(user, 'uid', user)} failed: {e}")
            return
        if media_type != MEDIA_AUDIO or not self._is_live(attempt):
            return
        self._remote_audio = True
        self._log("agent", "Agent is speaking")
        # While still connecting the flag is applied once the agent is up
        if self.session.status is CallStatus.CONNECTED:
            self._transition(CallStatus.TALKING)

    def _on_user_unpublished(self, attempt: _Attempt, user: Any, media_type: str) -> None:
        if media_type != MEDIA_AUDIO or not self._is_live(attempt):
            return
        self._remote_audio = False
        self._log("info", "Agent stopped speaking")
        if self.session.status is CallStatus.TALKING:
            self._transition(CallStatus.CONNECTED)

    # Teardown

    async def _teardown(self, attempt: Optional[_Attempt]) -> None:
        self._stop_ticker()
        self._remote_audio = False
        if attempt is not None:
            attempt.closed = True
            await self._release(attempt)
        self.session.duration_seconds = 0

    async def _release(self, attempt: _Attempt) -> None:
        """Release whatever an attempt holds; every step runs regardless of the others."""
        track, attempt.track = attempt.track, None
        if track is not None:
            try:
                track.stop()
                track.close()
            except Exception as e:
                self._log("error", f"Failed to release microphone: {e}")

        client, attempt.client = attempt.client, None
        if client is not None:
            try:
                client.remove_all_listeners()
            except Exception as e:
                self._log("error", f"Failed to remove RTC listeners: {e}")
            try:
                await client.leave()
            except Exception as e:
                self._log("error", f"Failed to leave channel: {e}")

        agent_id, attempt.agent_id = attempt.agent_id, None
        if agent_id is not None:
            try:
                result = await self.backend.stop_agent(agent_id, attempt.options.platform)
                if result.get("error"):
                    self._log("error", f"Agent stop reported: {result['error']}")
            except Exception as e:
                self._log("error", f"Failed to stop agent {agent_id}: {e}")

    # State and duration

    def _transition(self, target: CallStatus) -> None:
        current = self.session.status
        if not is_valid_transition(current, target):
            raise IllegalTransitionError(
                f"Cannot move from {current.value} to {target.value}",
                details={"from": current.value, "to": target.value},
            )
        self.session.status = target
        logger.debug(f"[CALL] {self.session.channel_name or '-'}: {current.value} -> {target.value}")
        if target in (CallStatus.CONNECTED, CallStatus.TALKING):
            self._start_ticker()
        else:
            self._stop_ticker()
        if target is CallStatus.IDLE:
            self.session.duration_seconds = 0
        if target is not CallStatus.ERROR and target is not CallStatus.IDLE:
            self.session.error = None
            self.session.error_status = None

    def _start_ticker(self) -> None:
        if self._ticker is None or self._ticker.done():
            self._ticker = asyncio.get_running_loop().create_task(self._tick(self.session))

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    async def _tick(self, session: CallSession) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            session.duration_seconds += 1

    def _log(self, kind: str, message: str) -> None:
        channel = self.session.channel_name or "-"
        self.log_buffer.record(
            f"CALL_{kind.upper()}", f"[{channel}] {message}", is_error=kind == "error"
        )

"""Conversational-AI agent gateway.

Every call opens its own ``httpx.AsyncClient`` and sends Basic auth built
from the platform's customer id and secret. Nothing is retried; callers
decide whether to try again.
"""
import base64
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from voicechat.core.config import Settings, get_settings
from voicechat.core.errors import ConfigurationError, TransportError, UpstreamError
from voicechat.services.agent_launch.models import LaunchRequest
from voicechat.services.logs.buffer import LogBuffer
from voicechat.services.platforms.credentials import PlatformCredentials, resolve_credentials
from voicechat.services.platforms.profiles import Platform, get_platform_profile

logger = logging.getLogger(__name__)


class AgentStartResult(BaseModel):
    """Normalized agent start response."""

    model_config = ConfigDict(frozen=True)

    agent_id: str
    provider_status: Optional[str] = None
    raw: Dict[str, Any] = {}


class SipCallResult(BaseModel):
    """Normalized SIP call response."""

    model_config = ConfigDict(frozen=True)

    call_id: Optional[str] = None
    raw: Dict[str, Any] = {}


def build_basic_auth_header(client_id: str, client_secret: str) -> str:
    """Basic authorization value, as httpx builds it, for credential previews."""
    encoded = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


def _parse_body(response: httpx.Response) -> Optional[Dict[str, Any]]:
    """Decode a JSON object body; None if the body is not a JSON object."""
    try:
        data = json.loads(response.text) if response.text else {}
    except ValueError:
        return None
    return data if isinstance(data, dict) else {"data": data}


def _upstream_message(data: Dict[str, Any], fallback: str) -> str:
    return data.get("message") or data.get("detail") or fallback


class AgentGateway:
    """Starts and stops remote conversational agents."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        log_buffer: Optional[LogBuffer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self.log_buffer = log_buffer if log_buffer is not None else LogBuffer()
        self.transport = transport

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def _credentials(self, platform: Platform) -> PlatformCredentials:
        credentials = resolve_credentials(platform, self.settings)
        if not credentials.has_rest_credentials:
            raise ConfigurationError(
                f"Missing {platform.value} REST API credentials",
                details={
                    "appIdLen": len(credentials.app_id),
                    "customerIdLen": len(credentials.client_id),
                    "customerSecretLen": len(credentials.client_secret),
                },
            )
        return credentials

    async def _post(
        self,
        url: str,
        credentials: PlatformCredentials,
        payload: Optional[Dict[str, Any]],
        category: str,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                transport=self.transport,
                timeout=self.settings.http_timeout_seconds,
            ) as client:
                return await client.post(
                    url,
                    json=payload,
                    auth=(credentials.client_id, credentials.client_secret),
                )
        except httpx.HTTPError as e:
            self.log_buffer.record(
                f"{category}_EXCEPTION", f"{type(e).__name__}: {e}", is_error=True
            )
            raise TransportError("Request to agent service failed", details=str(e))

    async def start_agent(self, launch_request: LaunchRequest) -> AgentStartResult:
        """
        Start a remote agent.

        Raises:
            ConfigurationError: Platform REST credentials missing
            UpstreamError: Vendor answered non-2xx (message and status verbatim)
            TransportError: Network failure or unparseable success body
        """
        platform = launch_request.platform
        credentials = self._credentials(platform)
        self.log_buffer.record(
            "CREDENTIALS",
            f"platform={platform.value} appIdLen={len(credentials.app_id)} "
            f"customerIdLen={len(credentials.client_id)}",
        )
        url = get_platform_profile(platform).agent_url(credentials.app_id, "join")

        self.log_buffer.record(
            "AGENT_REQUEST",
            json.dumps({"url": url, "body": launch_request.to_log_dict()}, ensure_ascii=False),
        )
        response = await self._post(url, credentials, launch_request.to_payload(), "AGENT")
        data = _parse_body(response)
        self.log_buffer.record(
            "AGENT_RESPONSE",
            f"status={response.status_code} body={response.text[:500]}",
            is_error=not response.is_success,
        )

        if not response.is_success:
            details = data if data is not None else {"rawText": response.text}
            raise UpstreamError(
                _upstream_message(details, "Failed to start agent"),
                status_code=response.status_code,
                details=details,
            )
        if data is None:
            raise TransportError(
                "Failed to start agent", details={"rawText": response.text}
            )

        agent_id = data.get("agent_id") or data.get("id")
        if not agent_id:
            raise TransportError(
                "Agent id missing from upstream response", details=data
            )
        logger.info(f"[AGENT] Started agent {agent_id} on {platform.value}")
        return AgentStartResult(
            agent_id=str(agent_id),
            provider_status=data.get("status"),
            raw=data,
        )

    async def stop_agent(self, agent_id: str, platform: Platform = Platform.AGORA) -> Dict[str, Any]:
        """
        Ask a remote agent to leave.

        An upstream rejection (already stopped, unknown id) is attached to the
        result rather than raised.

        Raises:
            ConfigurationError: Platform REST credentials missing
            TransportError: Network failure
        """
        credentials = self._credentials(platform)
        url = get_platform_profile(platform).agent_url(
            credentials.app_id, "agents", agent_id, "leave"
        )
        response = await self._post(url, credentials, None, "AGENT_STOP")
        data = _parse_body(response)
        if data is None:
            data = {"rawText": response.text}

        result: Dict[str, Any] = {**data, "status": "stopped"}
        if not response.is_success:
            result["error"] = _upstream_message(data, "Failed to stop agent")
            result["upstreamStatus"] = response.status_code
            self.log_buffer.record(
                "AGENT_STOP",
                f"agentId={agent_id} platform={platform.value} "
                f"status={response.status_code} error={result['error']}",
                is_error=True,
            )
        else:
            self.log_buffer.record(
                "AGENT_STOP",
                f"agentId={agent_id} platform={platform.value} status={response.status_code}",
            )
        return result

    async def start_sip_call(
        self,
        channel_name: str,
        agent_uid: int,
        token: str,
        phone_number: str,
        from_number: Optional[str] = None,
        platform: Platform = Platform.AGORA,
        clock=time.time,
    ) -> SipCallResult:
        """Dial a phone number and bridge it into a channel through the agent."""
        credentials = self._credentials(platform)
        url = get_platform_profile(platform).agent_url(credentials.app_id, "sip", "call")
        payload = {
            "convoai_body": {
                "name": f"sip-call-{int(clock() * 1000)}",
                "properties": {
                    "channel": channel_name,
                    "token": token,
                    "agent_rtc_uid": str(agent_uid),
                },
                "sip": {
                    "to_number": phone_number,
                    "from_number": from_number or self.settings.sip_from_number,
                    "rtc_token": token,
                    "rtc_uid": str(agent_uid),
                },
            },
        }
        self.log_buffer.record(
            "SIP_REQUEST", f"channel={channel_name} agentUid={agent_uid} to={phone_number}"
        )
        response = await self._post(url, credentials, payload, "SIP")
        data = _parse_body(response)
        self.log_buffer.record(
            "SIP_RESPONSE",
            f"status={response.status_code}",
            is_error=not response.is_success,
        )
        if not response.is_success:
            details = data if data is not None else {"rawText": response.text}
            raise UpstreamError(
                _upstream_message(details, "Failed to start SIP call"),
                status_code=response.status_code,
                details=details,
            )
        if data is None:
            raise TransportError("Failed to start SIP call", details={"rawText": response.text})
        call_id = data.get("call_id") or data.get("id")
        return SipCallResult(call_id=str(call_id) if call_id else None, raw=data)

    async def hangup_sip_call(self, call_id: str, platform: Platform = Platform.AGORA) -> Dict[str, Any]:
        """Hang up a SIP call; upstream rejections are attached, not raised."""
        credentials = self._credentials(platform)
        url = get_platform_profile(platform).agent_url(credentials.app_id, "sip", "hangup")
        self.log_buffer.record("SIP_HANGUP", f"callId={call_id}")
        response = await self._post(url, credentials, {"call_id": call_id}, "SIP_HANGUP")
        data = _parse_body(response)
        if data is None:
            data = {"rawText": response.text}
        result: Dict[str, Any] = {**data, "status": "hangup"}
        if not response.is_success:
            result["error"] = _upstream_message(data, "Failed to hangup SIP call")
            result["upstreamStatus"] = response.status_code
        return result

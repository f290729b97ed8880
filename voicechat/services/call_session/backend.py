"""Backends the call session controller uses for tokens and agents."""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from voicechat.core.errors import TransportError, UpstreamError
from voicechat.services.agent_gateway.gateway import AgentGateway, AgentStartResult
from voicechat.services.agent_launch.builder import LaunchRequestBuilder, build_launch_request
from voicechat.services.agent_launch.models import LaunchOptions, LaunchSession
from voicechat.services.platforms.profiles import Platform
from voicechat.services.tokens.service import AccessGrant, TokenService

logger = logging.getLogger(__name__)


class CallBackend(ABC):
    """Token and agent operations a call needs."""

    @abstractmethod
    async def issue_grant(self, channel_name: str, uid: int, platform: Platform) -> AccessGrant:
        """Obtain an access grant for one participant."""
        pass

    @abstractmethod
    async def start_agent(
        self, session: LaunchSession, options: LaunchOptions
    ) -> AgentStartResult:
        """Launch the remote agent into the channel."""
        pass

    @abstractmethod
    async def stop_agent(self, agent_id: str, platform: Platform) -> Dict[str, Any]:
        """Ask the remote agent to leave."""
        pass


class LocalCallBackend(CallBackend):
    """In-process backend wired straight to the services."""

    def __init__(
        self,
        token_service: TokenService,
        gateway: AgentGateway,
        builder: Optional[LaunchRequestBuilder] = None,
    ):
        self.token_service = token_service
        self.gateway = gateway
        self.builder = builder

    async def issue_grant(self, channel_name: str, uid: int, platform: Platform) -> AccessGrant:
        return self.token_service.issue_grant(channel_name, uid, platform)

    async def start_agent(
        self, session: LaunchSession, options: LaunchOptions
    ) -> AgentStartResult:
        if self.builder is not None:
            launch_request = self.builder.build(session, options)
        else:
            launch_request = build_launch_request(session, options, self.gateway.settings)
        return await self.gateway.start_agent(launch_request)

    async def stop_agent(self, agent_id: str, platform: Platform) -> Dict[str, Any]:
        return await self.gateway.stop_agent(agent_id, platform)


class HttpCallBackend(CallBackend):
    """Backend that calls this service's own HTTP API, like the browser does."""

    def __init__(
        self,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout

    async def _request(self, method: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, transport=self.transport, timeout=self.timeout
            ) as client:
                response = await client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed", details=str(e))

        try:
            data = response.json()
        except ValueError:
            raise TransportError(
                f"{method} {path} returned a non-JSON body", details={"rawText": response.text}
            )
        if not response.is_success:
            raise UpstreamError(
                data.get("error") or f"{method} {path} failed",
                status_code=response.status_code,
                details=data.get("details"),
            )
        return data

    async def issue_grant(self, channel_name: str, uid: int, platform: Platform) -> AccessGrant:
        data = await self._request(
            "POST",
            "/token",
            {"channelName": channel_name, "uid": uid, "platform": platform.value},
        )
        return AccessGrant(
            token=data["token"],
            app_id=data["appId"],
            channel_name=data["channelName"],
            uid=int(data["uid"]),
            platform=Platform(data["platform"]),
            expires_at=datetime.fromisoformat(data["expiresAt"]),
        )

    async def start_agent(
        self, session: LaunchSession, options: LaunchOptions
    ) -> AgentStartResult:
        payload = {
            "channelName": session.channel_name,
            "agentUid": session.agent_uid,
            "userUid": session.user_uid,
            "token": session.token.get_secret_value(),
            "platform": session.platform.value,
            "language": options.language,
            "systemPrompt": options.system_prompt,
            "temperature": options.temperature,
            "maxTokens": options.max_tokens,
            "ttsVendor": options.tts_vendor,
        }
        data = await self._request(
            "POST", "/agent", {k: v for k, v in payload.items() if v is not None}
        )
        return AgentStartResult(
            agent_id=str(data["agentId"]),
            provider_status=data.get("providerStatus"),
            raw=data,
        )

    async def stop_agent(self, agent_id: str, platform: Platform) -> Dict[str, Any]:
        return await self._request(
            "DELETE", "/agent", {"agentId": agent_id, "platform": platform.value}
        )

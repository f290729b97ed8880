"""FastAPI dependencies."""
from typing import Optional

import httpx
from fastapi import Depends, Request

from voicechat.core.config import Settings, get_settings
from voicechat.services.agent_gateway.gateway import AgentGateway
from voicechat.services.agent_launch.builder import LaunchRequestBuilder
from voicechat.services.logs.buffer import LogBuffer
from voicechat.services.tokens.service import TokenService


def get_log_buffer(request: Request) -> LogBuffer:
    """Process-wide diagnostic log buffer owned by the application."""
    return request.app.state.log_buffer


def get_upstream_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for vendor API calls; None means the real network."""
    return None


def get_token_service(settings: Settings = Depends(get_settings)) -> TokenService:
    """Get token service instance."""
    return TokenService(settings=settings)


def get_launch_builder(settings: Settings = Depends(get_settings)) -> LaunchRequestBuilder:
    """Get agent launch request builder."""
    return LaunchRequestBuilder(settings=settings)


def get_agent_gateway(
    settings: Settings = Depends(get_settings),
    log_buffer: LogBuffer = Depends(get_log_buffer),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_upstream_transport),
) -> AgentGateway:
    """Get agent gateway instance."""
    return AgentGateway(settings=settings, log_buffer=log_buffer, transport=transport)

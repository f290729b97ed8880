"""Conversational agent endpoints."""
import json
import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr

from voicechat.core.dependencies import get_agent_gateway, get_launch_builder, get_log_buffer
from voicechat.core.errors import ValidationError, VoiceChatError
from voicechat.services.agent_gateway.gateway import AgentGateway
from voicechat.services.agent_launch.builder import LaunchRequestBuilder
from voicechat.services.agent_launch.models import LaunchOptions, LaunchSession
from voicechat.services.logs.buffer import LogBuffer
from voicechat.services.platforms.profiles import parse_platform

router = APIRouter()
logger = logging.getLogger(__name__)


class AgentStartRequest(BaseModel):
    """Agent start body. Unknown fields from the UI are accepted and ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    channel_name: Optional[str] = Field(default=None, alias="channelName")
    agent_uid: Optional[int] = Field(default=None, alias="agentUid")
    user_uid: Optional[int] = Field(default=None, alias="userUid")
    token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("token", "userToken")
    )
    platform: Optional[str] = None
    language: Optional[str] = None
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    temperature: Optional[Union[float, str]] = None
    max_tokens: Optional[Union[int, str]] = Field(default=None, alias="maxTokens")
    tts_vendor: Optional[str] = Field(default=None, alias="ttsVendor")


class AgentStopRequest(BaseModel):
    """Agent stop body."""

    model_config = ConfigDict(populate_by_name=True)

    agent_id: Optional[str] = Field(default=None, alias="agentId")
    platform: Optional[str] = None


def _error_response(error: VoiceChatError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@router.post("/agent")
async def start_agent(
    body: AgentStartRequest,
    builder: LaunchRequestBuilder = Depends(get_launch_builder),
    gateway: AgentGateway = Depends(get_agent_gateway),
    log_buffer: LogBuffer = Depends(get_log_buffer),
):
    """Build the launch request and start the remote agent."""
    log_buffer.record(
        "REQUEST_BODY",
        json.dumps(
            body.model_dump(by_alias=True, exclude={"token"}, exclude_none=True),
            ensure_ascii=False,
            default=str,
        ),
    )
    try:
        if not body.channel_name or body.agent_uid is None or body.user_uid is None:
            raise ValidationError("Missing required parameters")
        platform = parse_platform(body.platform)
        launch_request = builder.build(
            LaunchSession(
                channel_name=body.channel_name,
                agent_uid=body.agent_uid,
                user_uid=body.user_uid,
                token=SecretStr(body.token or ""),
                platform=platform,
            ),
            LaunchOptions(
                language=body.language,
                system_prompt=body.system_prompt,
                temperature=body.temperature,
                max_tokens=body.max_tokens,
                tts_vendor=body.tts_vendor,
            ),
        )
        result = await gateway.start_agent(launch_request)
    except VoiceChatError as e:
        log_buffer.record("AGENT_ERROR", f"{e.message} (status {e.status_code})", is_error=True)
        return _error_response(e)
    except Exception as e:
        logger.error(
            f"[AGENT] Error starting agent - Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        log_buffer.record("EXCEPTION", f"{type(e).__name__}: {e}", is_error=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to start agent", "details": str(e)},
        )

    return {
        **result.raw,
        "agentId": result.agent_id,
        "status": "started",
        "providerStatus": result.provider_status,
        "platform": platform.value,
    }


@router.delete("/agent")
async def stop_agent(
    body: AgentStopRequest,
    gateway: AgentGateway = Depends(get_agent_gateway),
    log_buffer: LogBuffer = Depends(get_log_buffer),
):
    """Stop a remote agent. Upstream rejections are reported, not failed."""
    try:
        if not body.agent_id:
            raise ValidationError("Missing agentId")
        platform = parse_platform(body.platform)
        return await gateway.stop_agent(body.agent_id, platform)
    except VoiceChatError as e:
        log_buffer.record("AGENT_STOP_ERROR", f"{e.message} {e.details or ''}", is_error=True)
        return _error_response(e)
    except Exception as e:
        logger.error(
            f"[AGENT] Error stopping agent - Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to stop agent", "details": str(e)},
        )


@router.get("/agent")
async def get_agent_logs(log_buffer: LogBuffer = Depends(get_log_buffer)):
    """Dump the diagnostic log buffer."""
    entries = log_buffer.entries()
    return {
        "logs": [entry.model_dump(mode="json", by_alias=True) for entry in entries],
        "count": len(entries),
    }

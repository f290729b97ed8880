"""SIP outbound call endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from voicechat.core.dependencies import get_agent_gateway
from voicechat.core.errors import ValidationError, VoiceChatError
from voicechat.services.agent_gateway.gateway import AgentGateway
from voicechat.services.platforms.profiles import parse_platform

router = APIRouter()
logger = logging.getLogger(__name__)


class SipCallRequest(BaseModel):
    """SIP call body."""

    model_config = ConfigDict(populate_by_name=True)

    channel_name: Optional[str] = Field(default=None, alias="channelName")
    agent_uid: Optional[int] = Field(default=None, alias="agentUid")
    token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("userToken", "token")
    )
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    from_number: Optional[str] = Field(default=None, alias="fromNumber")
    platform: Optional[str] = None


class SipHangupRequest(BaseModel):
    """SIP hangup body."""

    model_config = ConfigDict(populate_by_name=True)

    call_id: Optional[str] = Field(default=None, alias="callId")
    platform: Optional[str] = None


@router.post("/sip")
async def start_sip_call(
    body: SipCallRequest,
    gateway: AgentGateway = Depends(get_agent_gateway),
):
    """Dial out to a phone number through the conversational agent."""
    try:
        if not body.channel_name or body.agent_uid is None or not body.phone_number:
            raise ValidationError(
                "Missing required parameters: channelName, agentUid, phoneNumber"
            )
        result = await gateway.start_sip_call(
            channel_name=body.channel_name,
            agent_uid=body.agent_uid,
            token=body.token or "",
            phone_number=body.phone_number,
            from_number=body.from_number,
            platform=parse_platform(body.platform),
        )
    except VoiceChatError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_dict())
    except Exception as e:
        logger.error(f"[SIP] Error starting call - Error: {type(e).__name__}: {str(e)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to start SIP call", "details": str(e)},
        )
    return {**result.raw, "callId": result.call_id, "status": "calling"}


@router.delete("/sip")
async def hangup_sip_call(
    body: SipHangupRequest,
    gateway: AgentGateway = Depends(get_agent_gateway),
):
    """Hang up a SIP call."""
    try:
        if not body.call_id:
            raise ValidationError("Missing callId")
        return await gateway.hangup_sip_call(body.call_id, parse_platform(body.platform))
    except VoiceChatError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_dict())
    except Exception as e:
        logger.error(f"[SIP] Error hanging up - Error: {type(e).__name__}: {str(e)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to hangup SIP call", "details": str(e)},
        )

"""RTC token endpoint."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from voicechat.core.dependencies import get_log_buffer, get_token_service
from voicechat.core.errors import ValidationError, VoiceChatError
from voicechat.services.logs.buffer import LogBuffer
from voicechat.services.platforms.profiles import parse_platform
from voicechat.services.tokens.service import TokenService

router = APIRouter()
logger = logging.getLogger(__name__)


class TokenRequest(BaseModel):
    """Token request body; fields are checked by the handler to answer 400."""

    model_config = ConfigDict(populate_by_name=True)

    channel_name: Optional[str] = Field(default=None, alias="channelName")
    uid: Optional[int] = None
    platform: Optional[str] = None


@router.post("/token")
async def create_token(
    body: TokenRequest,
    request: Request,
    token_service: TokenService = Depends(get_token_service),
    log_buffer: LogBuffer = Depends(get_log_buffer),
):
    """Sign an access token for one participant."""
    log_buffer.record(
        "TOKEN_REQUEST",
        f"platform={body.platform} channel={body.channel_name} uid={body.uid} "
        f"client={request.client.host if request.client else 'unknown'}",
    )
    try:
        if not body.channel_name or body.uid is None:
            raise ValidationError("Missing channelName or uid")
        platform = parse_platform(body.platform)
        grant = token_service.issue_grant(body.channel_name, body.uid, platform)
    except VoiceChatError as e:
        log_buffer.record("TOKEN_ERROR", f"{e.message} {e.details}", is_error=True)
        return JSONResponse(status_code=e.status_code, content=e.to_dict())
    except Exception as e:
        logger.error(
            f"[TOKEN] Error generating token - Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        log_buffer.record("TOKEN_ERROR", f"{type(e).__name__}: {e}", is_error=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to generate token", "details": str(e)},
        )

    log_buffer.record(
        "TOKEN_ISSUED",
        f"platform={platform.value} channel={grant.channel_name} uid={grant.uid} "
        f"tokenLen={len(grant.token)}",
    )
    return {
        "token": grant.token,
        "appId": grant.app_id,
        "channelName": grant.channel_name,
        "uid": grant.uid,
        "platform": platform.value,
        "expiresAt": grant.expires_at.isoformat(),
    }

"""Health check endpoint."""
import logging

from fastapi import APIRouter, Depends, Request

from voicechat.core.config import Settings, get_settings
from voicechat.services.platforms.credentials import resolve_credentials
from voicechat.services.platforms.profiles import Platform

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request, settings: Settings = Depends(get_settings)):
    """Health check endpoint with per-platform credential readiness."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    platforms = {}
    for platform in Platform:
        credentials = resolve_credentials(platform, settings)
        platforms[platform.value] = {
            "tokens": credentials.has_signing_credentials,
            "agents": credentials.has_rest_credentials,
        }
    return {"status": "healthy", "platforms": platforms}

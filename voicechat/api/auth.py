"""Password gate endpoints."""
import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from voicechat.core.config import Settings, get_settings

router = APIRouter()
logger = logging.getLogger(__name__)


class LoginRequest(BaseModel):
    """Login request model."""
    password: str


class GateStatus(BaseModel):
    """Whether the gate password is configured."""
    configured: bool


def is_password_configured(settings: Settings) -> bool:
    """Check whether a gate password is set."""
    return bool(settings.voice_password)


def validate_password(password: str, settings: Settings) -> bool:
    """Compare a candidate password with the configured one."""
    if not is_password_configured(settings):
        return False
    return secrets.compare_digest(password.encode("utf-8"), settings.voice_password.encode("utf-8"))


@router.get("/auth/status", response_model=GateStatus)
async def gate_status(settings: Settings = Depends(get_settings)):
    """Report whether the UI gate is configured."""
    return GateStatus(configured=is_password_configured(settings))


@router.post("/auth/login")
async def login(login_req: LoginRequest, settings: Settings = Depends(get_settings)):
    """Check the gate password. Remembering the result is up to the client."""
    if not is_password_configured(settings):
        raise HTTPException(status_code=503, detail="Password not configured")
    if not validate_password(login_req.password, settings):
        logger.warning("[AUTH] Invalid gate password attempt")
        raise HTTPException(status_code=401, detail="Invalid password")
    return {"success": True, "authenticated": True}

"""Credential debug endpoint."""
import os
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from voicechat.core.errors import VoiceChatError
from voicechat.core.logging import hidden_characters, mask_secret
from voicechat.services.agent_gateway.gateway import build_basic_auth_header
from voicechat.services.platforms.profiles import parse_platform

router = APIRouter()

_CREDENTIAL_SUFFIXES = ("APP_ID", "APP_CERTIFICATE", "CUSTOMER_ID", "CUSTOMER_SECRET")


@router.get("/debug")
async def debug_credentials(platform: Optional[str] = None):
    """Show whether credentials are loaded, without revealing them.

    Reads the raw environment so stray whitespace is visible before the
    settings layer strips it.
    """
    try:
        selected = parse_platform(platform)
    except VoiceChatError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_dict())

    prefix = selected.value.upper()
    raw = {
        f"{prefix}_{suffix}": os.environ.get(f"{prefix}_{suffix}", "")
        for suffix in _CREDENTIAL_SUFFIXES
    }
    auth_header = build_basic_auth_header(
        raw[f"{prefix}_CUSTOMER_ID"].strip(), raw[f"{prefix}_CUSTOMER_SECRET"].strip()
    )
    return {
        "status": "debug",
        "platform": selected.value,
        "env": {name: mask_secret(value.strip()) for name, value in raw.items()},
        "hiddenChars": {name: hidden_characters(value) for name, value in raw.items()},
        # Enough of the encoded credentials to compare against a known-good value
        "testAuth": auth_header[len("Basic "):][:10] + "...",
    }

"""RTC platform and TTS vendor profiles."""
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict

from voicechat.core.errors import ValidationError


class Platform(str, Enum):
    """Supported RTC platforms."""

    AGORA = "agora"  # Agora international
    SHENGWANG = "shengwang"  # Shengwang China edition

    def __str__(self) -> str:
        return self.value


class TtsVendor(str, Enum):
    """TTS vendors the remote agent can speak through."""

    ELEVENLABS = "elevenlabs"
    MINIMAX = "minimax"
    VOLCANO = "volcano"

    def __str__(self) -> str:
        return self.value


class PlatformProfile(BaseModel):
    """Immutable per-platform launch defaults."""

    model_config = ConfigDict(frozen=True)

    platform: Platform
    api_base: str
    default_llm_model: str
    tts_vendors: FrozenSet[TtsVendor]
    default_tts_vendor: TtsVendor
    asr_vendor: str = "ares"
    temperature: float = 0.7
    max_tokens: int = 500
    idle_timeout: int = 120
    max_history: int = 32

    def agent_url(self, app_id: str, *parts: str) -> str:
        """Build a conversational-AI endpoint URL under this platform's project."""
        return "/".join([self.api_base, app_id, *parts])


_PROFILES: Dict[Platform, PlatformProfile] = {
    Platform.AGORA: PlatformProfile(
        platform=Platform.AGORA,
        api_base="https://api.agora.io/api/conversational-ai-agent/v2/projects",
        default_llm_model="gpt-4o-mini",
        tts_vendors=frozenset({TtsVendor.ELEVENLABS, TtsVendor.MINIMAX}),
        default_tts_vendor=TtsVendor.ELEVENLABS,
    ),
    Platform.SHENGWANG: PlatformProfile(
        platform=Platform.SHENGWANG,
        api_base="https://api.sd-rtn.com/cn/api/conversational-ai-agent/v2/projects",
        default_llm_model="qwen-turbo",
        tts_vendors=frozenset(
            {TtsVendor.ELEVENLABS, TtsVendor.MINIMAX, TtsVendor.VOLCANO}
        ),
        default_tts_vendor=TtsVendor.MINIMAX,
    ),
}


def parse_platform(value: Optional[str], default: Platform = Platform.AGORA) -> Platform:
    """Parse a platform selector from request input."""
    if value is None or value == "":
        return default
    if isinstance(value, Platform):
        return value
    try:
        return Platform(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unsupported platform: {value}",
            details={"supported": [p.value for p in Platform]},
        )


def get_platform_profile(platform: Platform) -> PlatformProfile:
    """Return the launch profile for a platform."""
    return _PROFILES[Platform(platform)]


def select_tts_vendor(profile: PlatformProfile, requested: Optional[str]) -> TtsVendor:
    """Pick the requested TTS vendor if the platform allows it.

    Unknown or disallowed vendors fall back to the platform default.
    """
    if requested:
        try:
            vendor = TtsVendor(str(requested).strip().lower())
        except ValueError:
            return profile.default_tts_vendor
        if vendor in profile.tts_vendors:
            return vendor
    return profile.default_tts_vendor

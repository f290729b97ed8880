"""Agent launch request builder.

Turns a channel/participant triple plus caller overrides into the
conversational-AI join payload. Values are merged with a fixed precedence:
explicit per-call overrides, then language defaults, then platform defaults.
No network calls happen here.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional

from pydantic import SecretStr

from voicechat.core.config import Settings, get_settings
from voicechat.core.errors import ValidationError
from voicechat.core.logging import mask_secret
from voicechat.services.agent_launch.languages import (
    LanguageCatalog,
    LanguageDefaults,
    get_language_catalog,
)
from voicechat.services.agent_launch.models import (
    AgentLaunchConfig,
    AsrConfig,
    LaunchOptions,
    LaunchRequest,
    LaunchSession,
    TtsConfig,
)
from voicechat.services.platforms.profiles import (
    PlatformProfile,
    TtsVendor,
    get_platform_profile,
    select_tts_vendor,
)

logger = logging.getLogger(__name__)

TEMPERATURE_RANGE = (0.0, 2.0)

ELEVENLABS_BASE_URL = "wss://api.elevenlabs.io/v1"
ELEVENLABS_MODEL = "eleven_flash_v2_5"
MINIMAX_MODEL = "speech-01-turbo"
VOLCANO_CLUSTER = "volcano_tts"


def _coerce_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{name} must be a number", details={name: value})


def _coerce_int(name: str, value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{name} must be an integer", details={name: value})


def build_tts_config(
    vendor: TtsVendor, language: LanguageDefaults, settings: Settings
) -> TtsConfig:
    """Vendor-specific TTS params for a language."""
    voice = language.voice_for(vendor.value)
    if vendor is TtsVendor.ELEVENLABS:
        return TtsConfig(
            vendor=vendor,
            params={
                "base_url": ELEVENLABS_BASE_URL,
                "model_id": ELEVENLABS_MODEL,
                "voice_id": voice,
                "sample_rate": 24000,
            },
            secret_params={"key": SecretStr(settings.elevenlabs_api_key)},
        )
    if vendor is TtsVendor.MINIMAX:
        return TtsConfig(
            vendor=vendor,
            params={
                "group_id": settings.minimax_group_id,
                "model": MINIMAX_MODEL,
                "voice_id": voice,
                "sample_rate": 16000,
            },
            secret_params={"key": SecretStr(settings.minimax_api_key)},
        )
    if vendor is TtsVendor.VOLCANO:
        return TtsConfig(
            vendor=vendor,
            params={
                "app_id": settings.volcano_app_id,
                "cluster": VOLCANO_CLUSTER,
                "voice_type": voice,
                "speed_ratio": 1.0,
                "volume_ratio": 1.0,
                "pitch_ratio": 1.0,
            },
            secret_params={"token": SecretStr(settings.volcano_token)},
        )
    raise ValueError(f"Unhandled TTS vendor: {vendor}")


class LaunchRequestBuilder:
    """Builds agent launch requests from session parameters."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        catalog: Optional[LanguageCatalog] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings
        self.catalog = catalog or get_language_catalog()
        self.clock = clock

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def build(self, session: LaunchSession, options: Optional[LaunchOptions] = None) -> LaunchRequest:
        """
        Build a launch request.

        Args:
            session: Channel, participant ids, agent token and platform
            options: Per-call overrides (language, prompt, sampling, TTS vendor)

        Returns:
            LaunchRequest ready for the agent gateway

        Raises:
            ValidationError: If numeric overrides are malformed or out of range
        """
        options = options or LaunchOptions()
        settings = self.settings
        profile = get_platform_profile(session.platform)
        language = self.catalog.lookup(options.language)

        vendor = select_tts_vendor(profile, options.tts_vendor)
        if options.tts_vendor and vendor.value != str(options.tts_vendor).strip().lower():
            logger.warning(
                f"[LAUNCH] TTS vendor '{options.tts_vendor}' not available on "
                f"{profile.platform.value}, using {vendor.value}"
            )

        config = AgentLaunchConfig(
            llm_endpoint=settings.llm_url,
            llm_api_key=SecretStr(settings.llm_api_key),
            llm_model=settings.llm_model or profile.default_llm_model,
            system_prompt=options.system_prompt or language.system_prompt,
            temperature=self._temperature(options, profile),
            max_tokens=self._max_tokens(options, profile),
            greeting=language.greeting,
            failure_message=language.failure,
            max_history=profile.max_history,
            idle_timeout=profile.idle_timeout,
            asr=AsrConfig(
                language=options.language or language.language,
                vendor=profile.asr_vendor,
            ),
            tts=build_tts_config(vendor, language, settings),
        )

        logger.info(
            f"[LAUNCH] Built config - platform: {profile.platform.value}, "
            f"language: {config.asr.language}, tts: {vendor.value}, "
            f"model: {config.llm_model}, llmUrlLen: {len(config.llm_endpoint)}, "
            f"llmKey: {mask_secret(settings.llm_api_key)}"
        )

        return LaunchRequest(
            name=f"convoai-{int(self.clock() * 1000)}",
            platform=profile.platform,
            session=session,
            config=config,
        )

    def _temperature(self, options: LaunchOptions, profile: PlatformProfile) -> float:
        if options.temperature is None or options.temperature == "":
            return profile.temperature
        temperature = _coerce_float("temperature", options.temperature)
        low, high = TEMPERATURE_RANGE
        if not low <= temperature <= high:
            raise ValidationError(
                f"temperature must be between {low} and {high}",
                details={"temperature": temperature},
            )
        return temperature

    def _max_tokens(self, options: LaunchOptions, profile: PlatformProfile) -> int:
        if options.max_tokens is None or options.max_tokens == "":
            return profile.max_tokens
        max_tokens = _coerce_int("maxTokens", options.max_tokens)
        if max_tokens <= 0:
            raise ValidationError("maxTokens must be positive", details={"maxTokens": max_tokens})
        return max_tokens


def build_launch_request(
    session: LaunchSession,
    options: Optional[LaunchOptions] = None,
    settings: Optional[Settings] = None,
) -> LaunchRequest:
    """Build a launch request with the packaged language catalog."""
    return LaunchRequestBuilder(settings=settings).build(session, options)

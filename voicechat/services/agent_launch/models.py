"""Agent launch models."""
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, SecretStr

from voicechat.core.logging import mask_secret
from voicechat.services.platforms.profiles import Platform, TtsVendor


def _reveal(value: Any) -> Any:
    return value.get_secret_value() if isinstance(value, SecretStr) else value


def _preview(value: Any) -> Any:
    return mask_secret(value.get_secret_value()) if isinstance(value, SecretStr) else value


class LaunchSession(BaseModel):
    """Channel and participants the remote agent should join."""

    model_config = ConfigDict(frozen=True)

    channel_name: str
    agent_uid: int
    user_uid: int
    token: SecretStr = SecretStr("")
    platform: Platform = Platform.AGORA


class LaunchOptions(BaseModel):
    """Caller-supplied overrides for one agent launch.

    Numeric fields accept strings; the builder coerces them.
    """

    language: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[Union[float, str]] = None
    max_tokens: Optional[Union[int, str]] = None
    tts_vendor: Optional[str] = None


class AsrConfig(BaseModel):
    """Speech recognition block."""

    model_config = ConfigDict(frozen=True)

    language: str
    vendor: str


class TtsConfig(BaseModel):
    """Speech synthesis block; secret params are kept apart from plain ones."""

    model_config = ConfigDict(frozen=True)

    vendor: TtsVendor
    params: Dict[str, Any] = {}
    secret_params: Dict[str, SecretStr] = {}

    def render(self) -> Dict[str, Any]:
        """Vendor params with secrets revealed, for the upstream request."""
        merged = dict(self.params)
        merged.update({k: _reveal(v) for k, v in self.secret_params.items()})
        return merged

    def preview(self) -> Dict[str, Any]:
        """Vendor params with secrets masked, safe to log."""
        merged = dict(self.params)
        merged.update({k: _preview(v) for k, v in self.secret_params.items()})
        return merged


class AgentLaunchConfig(BaseModel):
    """Resolved agent configuration; immutable once built."""

    model_config = ConfigDict(frozen=True)

    llm_endpoint: str
    llm_api_key: SecretStr
    llm_model: str
    system_prompt: str
    temperature: float
    max_tokens: int
    greeting: str
    failure_message: str
    max_history: int
    idle_timeout: int
    asr: AsrConfig
    tts: TtsConfig


class LaunchRequest(BaseModel):
    """A ready-to-send agent start request."""

    model_config = ConfigDict(frozen=True)

    name: str
    platform: Platform
    session: LaunchSession
    config: AgentLaunchConfig

    def to_payload(self, reveal_secrets: bool = True) -> Dict[str, Any]:
        """Build the vendor JSON body."""
        secret = _reveal if reveal_secrets else _preview
        config = self.config
        return {
            "name": self.name,
            "properties": {
                "channel": self.session.channel_name,
                "token": secret(self.session.token),
                "agent_rtc_uid": str(self.session.agent_uid),
                "remote_rtc_uids": [str(self.session.user_uid)],
                "idle_timeout": config.idle_timeout,
                "advanced_features": {
                    "enable_aivad": True,
                },
                "asr": {
                    "language": config.asr.language,
                    "vendor": config.asr.vendor,
                },
                "llm": {
                    "vendor": "custom",
                    "style": "openai",
                    "url": config.llm_endpoint,
                    "api_key": secret(config.llm_api_key),
                    "system_messages": [
                        {"role": "system", "content": config.system_prompt},
                    ],
                    "max_history": config.max_history,
                    "greeting_message": config.greeting,
                    "failure_message": config.failure_message,
                    "params": {
                        "model": config.llm_model,
                        "temperature": config.temperature,
                        "max_tokens": config.max_tokens,
                    },
                },
                "tts": {
                    "vendor": config.tts.vendor.value,
                    "params": config.tts.render() if reveal_secrets else config.tts.preview(),
                },
            },
        }

    def to_log_dict(self) -> Dict[str, Any]:
        """Payload with every secret replaced by a truncated preview."""
        return self.to_payload(reveal_secrets=False)

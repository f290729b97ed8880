"""Application configuration."""
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Every value is optional so the service can boot without credentials;
    callers validate what they need at request time.
    """

    # Agora (international)
    agora_app_id: str = ""
    agora_app_certificate: str = ""
    agora_customer_id: str = ""
    agora_customer_secret: str = ""

    # Shengwang (China edition)
    shengwang_app_id: str = ""
    shengwang_app_certificate: str = ""
    shengwang_customer_id: str = ""
    shengwang_customer_secret: str = ""

    # TTS vendors
    elevenlabs_api_key: str = ""
    minimax_api_key: str = ""
    minimax_group_id: str = ""
    volcano_app_id: str = ""
    volcano_token: str = ""

    # LLM
    llm_url: str = ""
    llm_api_key: str = ""
    llm_model: str = ""

    # Password gate for the UI
    voice_password: str = ""

    # SIP
    sip_from_number: str = Field(
        default="",
        validation_alias=AliasChoices("sip_from_number", "agora_sip_from_number"),
    )

    # Diagnostics
    log_buffer_size: int = 50

    # Upstream HTTP
    http_timeout_seconds: float = 15.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        # Secrets pasted into .env files carry stray newlines
        str_strip_whitespace=True,
    )


def get_settings() -> Settings:
    """Read settings from the environment. Not cached; routes resolve it per request."""
    return Settings()

"""Platform credential resolution."""
from typing import Optional

from pydantic import BaseModel, ConfigDict

from voicechat.core.config import Settings, get_settings
from voicechat.core.logging import mask_secret
from voicechat.services.platforms.profiles import Platform


class PlatformCredentials(BaseModel):
    """Named credential set for one RTC platform.

    Missing values are empty strings; callers check before use.
    """

    model_config = ConfigDict(frozen=True)

    app_id: str = ""
    app_certificate: str = ""
    client_id: str = ""
    client_secret: str = ""

    @property
    def has_signing_credentials(self) -> bool:
        """Whether tokens can be signed."""
        return bool(self.app_id and self.app_certificate)

    @property
    def has_rest_credentials(self) -> bool:
        """Whether the conversational-AI REST API can be called."""
        return bool(self.app_id and self.client_id and self.client_secret)

    def __repr__(self) -> str:
        return (
            f"PlatformCredentials(app_id={mask_secret(self.app_id)!r}, "
            f"app_certificate={mask_secret(self.app_certificate)!r}, "
            f"client_id={mask_secret(self.client_id)!r}, "
            f"client_secret={mask_secret(self.client_secret)!r})"
        )

    __str__ = __repr__


def resolve_credentials(
    platform: Platform, settings: Optional[Settings] = None
) -> PlatformCredentials:
    """Map a platform selector to its configured credentials."""
    settings = settings or get_settings()
    if Platform(platform) is Platform.SHENGWANG:
        return PlatformCredentials(
            app_id=settings.shengwang_app_id,
            app_certificate=settings.shengwang_app_certificate,
            client_id=settings.shengwang_customer_id,
            client_secret=settings.shengwang_customer_secret,
        )
    return PlatformCredentials(
        app_id=settings.agora_app_id,
        app_certificate=settings.agora_app_certificate,
        client_id=settings.agora_customer_id,
        client_secret=settings.agora_customer_secret,
    )

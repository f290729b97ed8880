"""RTC access token issuing."""
import logging
import time
from datetime import datetime, timezone
from enum import IntEnum
from typing import Callable, Optional

from agora_token_builder import RtcTokenBuilder
from pydantic import BaseModel, ConfigDict

from voicechat.core.config import Settings, get_settings
from voicechat.core.errors import ConfigurationError, ValidationError
from voicechat.services.platforms.credentials import resolve_credentials
from voicechat.services.platforms.profiles import Platform, parse_platform

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_SECONDS = 3600

# (app_id, app_certificate, channel_name, uid, role, privilege_expired_ts) -> token
TokenSigner = Callable[[str, str, str, int, int, int], str]


class TokenRole(IntEnum):
    """RTC roles, numbered as the vendor token builder expects."""

    PUBLISHER = 1
    SUBSCRIBER = 2


class AccessGrant(BaseModel):
    """Signed short-lived credential for one participant in one channel."""

    model_config = ConfigDict(frozen=True)

    token: str
    app_id: str
    channel_name: str
    uid: int
    platform: Platform
    expires_at: datetime

    def __repr__(self) -> str:
        return (
            f"AccessGrant(channel_name={self.channel_name!r}, uid={self.uid}, "
            f"platform={self.platform.value!r}, token_len={len(self.token)}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


def _vendor_signer(
    app_id: str,
    app_certificate: str,
    channel_name: str,
    uid: int,
    role: int,
    privilege_expired_ts: int,
) -> str:
    return RtcTokenBuilder.buildTokenWithUid(
        app_id, app_certificate, channel_name, uid, role, privilege_expired_ts
    )


class TokenService:
    """Issues RTC tokens for a (channel, participant, platform) triple."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        signer: Optional[TokenSigner] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings
        self.signer = signer or _vendor_signer
        self.clock = clock

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def issue_grant(
        self,
        channel_name: str,
        uid: int,
        platform: Platform = Platform.AGORA,
        role: TokenRole = TokenRole.PUBLISHER,
        ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
    ) -> AccessGrant:
        """
        Sign an access grant for one participant.

        Args:
            channel_name: Channel the participant will join
            uid: Participant id (non-negative integer)
            platform: RTC platform whose credentials sign the token
            role: Publisher or subscriber
            ttl_seconds: Lifetime of the grant

        Returns:
            AccessGrant with the signed token and its expiry

        Raises:
            ValidationError: If an argument is out of range
            ConfigurationError: If the platform's app id or certificate is empty
        """
        if not channel_name or not str(channel_name).strip():
            raise ValidationError("channelName must not be empty")
        if isinstance(uid, bool) or not isinstance(uid, int) or uid < 0:
            raise ValidationError("uid must be a non-negative integer", details={"uid": uid})
        if not isinstance(ttl_seconds, int) or ttl_seconds <= 0:
            raise ValidationError("ttlSeconds must be positive", details={"ttlSeconds": ttl_seconds})
        platform = parse_platform(platform)

        credentials = resolve_credentials(platform, self.settings)
        logger.info(
            f"[TOKEN] Credential check - platform: {platform.value}, "
            f"appIdLen: {len(credentials.app_id)}, "
            f"appCertLen: {len(credentials.app_certificate)}"
        )
        if not credentials.has_signing_credentials:
            raise ConfigurationError(
                f"Missing {platform.value} credentials",
                details={
                    "appIdLen": len(credentials.app_id),
                    "appCertLen": len(credentials.app_certificate),
                },
            )

        issued_at = int(self.clock())
        expires_ts = issued_at + ttl_seconds
        token = self.signer(
            credentials.app_id,
            credentials.app_certificate,
            channel_name,
            uid,
            int(role),
            expires_ts,
        )
        logger.info(
            f"[TOKEN] Generated - platform: {platform.value}, channel: {channel_name}, "
            f"uid: {uid}, tokenLen: {len(token)}"
        )
        return AccessGrant(
            token=token,
            app_id=credentials.app_id,
            channel_name=channel_name,
            uid=uid,
            platform=platform,
            expires_at=datetime.fromtimestamp(expires_ts, tz=timezone.utc),
        )

    def issue_token(
        self,
        channel_name: str,
        uid: int,
        platform: Platform = Platform.AGORA,
        role: TokenRole = TokenRole.PUBLISHER,
        ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
    ) -> str:
        """Sign a token and return only the opaque token string."""
        return self.issue_grant(channel_name, uid, platform, role, ttl_seconds).token

"""Call session models."""
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from pydantic import BaseModel

from voicechat.services.platforms.profiles import Platform


class CallStatus(str, Enum):
    """Call session states."""

    IDLE = "idle"  # No call in progress
    CONNECTING = "connecting"  # Tokens, channel join and agent launch in flight
    CONNECTED = "connected"  # Agent launched, remote side silent
    TALKING = "talking"  # Remote agent is publishing audio
    ERROR = "error"  # Start or runtime failure; resources released

    def __str__(self) -> str:
        """Return the string value of the status."""
        return self.value


# Allowed transitions for the call session state machine
TRANSITIONS: Dict[CallStatus, FrozenSet[CallStatus]] = {
    CallStatus.IDLE: frozenset({CallStatus.CONNECTING}),
    CallStatus.CONNECTING: frozenset({CallStatus.CONNECTED, CallStatus.ERROR}),
    CallStatus.CONNECTED: frozenset(
        {CallStatus.TALKING, CallStatus.IDLE, CallStatus.ERROR}
    ),
    CallStatus.TALKING: frozenset(
        {CallStatus.CONNECTED, CallStatus.IDLE, CallStatus.ERROR}
    ),
    CallStatus.ERROR: frozenset({CallStatus.IDLE, CallStatus.CONNECTING}),
}


def is_valid_transition(current: CallStatus, target: CallStatus) -> bool:
    """Whether the state machine allows moving from ``current`` to ``target``."""
    return target in TRANSITIONS.get(current, frozenset())


class CallOptions(BaseModel):
    """What the caller chose for a call."""

    platform: Platform = Platform.AGORA
    language: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[Union[float, str]] = None
    max_tokens: Optional[Union[int, str]] = None
    tts_vendor: Optional[str] = None
    channel_prefix: str = "aura"


class CallSession:
    """Call session model."""

    def __init__(
        self,
        channel_name: str = "",
        user_uid: int = 0,
        agent_uid: int = 0,
        platform: Platform = Platform.AGORA,
    ):
        self.channel_name = channel_name
        self.user_uid = user_uid
        self.agent_uid = agent_uid
        self.platform = platform
        self.status = CallStatus.IDLE
        self.started_at: Optional[datetime] = None
        self.duration_seconds = 0
        self.agent_id: Optional[str] = None
        self.error: Optional[str] = None
        self.error_status: Optional[int] = None

    def to_dict(self) -> dict:
        """Snapshot for display."""
        return {
            "channelName": self.channel_name,
            "userUid": self.user_uid,
            "agentUid": self.agent_uid,
            "platform": self.platform.value,
            "status": self.status.value,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "durationSeconds": self.duration_seconds,
            "agentId": self.agent_id,
            "error": self.error,
            "errorStatus": self.error_status,
        }

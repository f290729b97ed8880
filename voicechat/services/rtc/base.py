"""RTC media client interface.

The media SDK (channel join, audio capture, publish/subscribe) is a black
box; the call session controller drives it only through these methods.
"""
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Union

# Remote events emitted by the client
USER_JOINED = "user-joined"
USER_LEFT = "user-left"
USER_PUBLISHED = "user-published"
USER_UNPUBLISHED = "user-unpublished"

MEDIA_AUDIO = "audio"

EventHandler = Callable[..., Union[None, Awaitable[None]]]


class AudioTrack(ABC):
    """Local microphone capture track."""

    @abstractmethod
    def stop(self) -> None:
        """Stop capturing."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the capture device."""
        pass


class RtcClient(ABC):
    """Client for one RTC channel membership."""

    @abstractmethod
    async def join(self, app_id: str, channel_name: str, token: str, uid: int) -> None:
        """Join a channel as ``uid``."""
        pass

    @abstractmethod
    async def create_microphone_track(self) -> AudioTrack:
        """Open the local microphone."""
        pass

    @abstractmethod
    async def publish(self, track: AudioTrack) -> None:
        """Publish a local track into the joined channel."""
        pass

    @abstractmethod
    async def subscribe(self, user: Any, media_type: str) -> None:
        """Subscribe to and play a remote participant's media."""
        pass

    @abstractmethod
    async def leave(self) -> None:
        """Leave the channel."""
        pass

    @abstractmethod
    def on(self, event: str, handler: EventHandler) -> None:
        """Register a handler for a remote event."""
        pass

    @abstractmethod
    def remove_all_listeners(self) -> None:
        """Drop every registered handler."""
        pass

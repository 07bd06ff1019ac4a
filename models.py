"""
Data models shared by the router, dispatcher, supervisor and status server.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Platform(Enum):
    """Download targets selected by dot-commands."""

    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    YOUTUBE_MP3 = "youtube_mp3"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    FACEBOOK = "facebook"

    @property
    def display_name(self) -> str:
        names = {
            Platform.TIKTOK: "TikTok",
            Platform.YOUTUBE: "YouTube",
            Platform.YOUTUBE_MP3: "YouTube MP3",
            Platform.INSTAGRAM: "Instagram",
            Platform.TWITTER: "Twitter/X",
            Platform.FACEBOOK: "Facebook",
        }
        return names[self]

    @property
    def url_pattern_key(self) -> str:
        """Key of the URL pattern used to validate links for this platform."""
        if self is Platform.YOUTUBE_MP3:
            return Platform.YOUTUBE.value
        return self.value


class MediaType(Enum):
    """Kinds of chat media a download can produce."""

    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    DOCUMENT = "document"


class ConnectionStatus(Enum):
    """Lifecycle of the WhatsApp session."""

    CONNECTING = "connecting"
    QR_READY = "qr-ready"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    NEEDS_SCAN = "needs-scan"


@dataclass
class IncomingMessage:
    """One inbound chat event. ``raw_text`` is None when the event has no payload."""

    sender_id: str
    chat_id: str
    is_from_self: bool
    raw_text: Optional[str]
    push_name: Optional[str] = None


@dataclass(frozen=True)
class DownloadCommand:
    """Dot-command parsed out of a chat message."""

    command: str
    platform: Platform
    url: str


@dataclass
class DownloadResult:
    """Output of one extractor call, consumed once by the send step."""

    success: bool
    media_type: MediaType
    platform: Platform
    filename: str
    source_url: Optional[str] = None
    local_path: Optional[str] = None


@dataclass(frozen=True)
class ConnectionSnapshot:
    """Read-only view of the connection state."""

    status: ConnectionStatus
    qr: Optional[str]
    updated_at: float
    last_disconnect_code: Optional[int] = None
    reconnect_attempts: int = 0

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "qr": self.qr,
            "updated_at": self.updated_at,
            "last_disconnect_code": self.last_disconnect_code,
            "reconnect_attempts": self.reconnect_attempts,
        }

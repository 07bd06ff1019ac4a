"""
Configuration for the WhatsApp media downloader bot.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

BASE_DIR = Path(__file__).resolve().parent

BOT_NAME: str = "WhatsApp Downloader Bot"
BOT_VERSION: str = "1.0.0"


@dataclass(frozen=True)
class DashboardCredentials:
    """Username/password pair guarding the status dashboard."""

    username: str
    password: str


def require_dashboard_credentials() -> DashboardCredentials:
    """Return dashboard credentials or raise if they are not configured."""
    username = os.getenv("FRONTEND_USER", "").strip()
    password = os.getenv("FRONTEND_PASS", "")
    if not username or not password:
        raise RuntimeError("Set FRONTEND_USER and FRONTEND_PASS environment variables")
    return DashboardCredentials(username=username, password=password)


LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "9091"))
FRONTEND_DIR: Path = Path(os.getenv("FRONTEND_DIR", str(BASE_DIR / "frontend")))

AUTH_COOKIE_NAME: str = "auth"
AUTH_COOKIE_MAX_AGE: int = 24 * 60 * 60
SSE_POLL_INTERVAL_SECONDS: float = float(os.getenv("SSE_POLL_INTERVAL_SECONDS", "2"))

WA_BRIDGE_URL: str = os.getenv("WA_BRIDGE_URL", "ws://127.0.0.1:8080/ws")
WA_BROWSER: tuple[str, str, str] = ("bot-wa", "Chrome", "1.0")
AUTH_STATE_DIR: Path = Path(os.getenv("AUTH_STATE_DIR", "storage/auth"))

RECONNECT_MAX_ATTEMPTS: int = int(os.getenv("RECONNECT_MAX_ATTEMPTS", "10"))
RECONNECT_BACKOFF_START: float = float(os.getenv("RECONNECT_BACKOFF_START", "1"))
RECONNECT_MAX_DELAY: float = float(os.getenv("RECONNECT_MAX_DELAY", "60"))

TEMP_DIR: Path = Path(os.getenv("TEMP_DIR", str(BASE_DIR / "temp")))
MAX_CONCURRENT_DOWNLOADS: int = int(os.getenv("MAX_CONCURRENT_DOWNLOADS", "3"))
MAX_FILE_SIZE_MB: int = int(os.getenv("MAX_FILE_SIZE_MB", "16"))  # WhatsApp media limit
MAX_FILE_SIZE_BYTES: int = MAX_FILE_SIZE_MB * 1024 * 1024
DOWNLOAD_TIMEOUT_SECONDS: int = int(os.getenv("DOWNLOAD_TIMEOUT_SECONDS", "600"))
MAX_URL_LENGTH: int = 2000

YTDLP_COOKIES_FILE: str = os.getenv("YTDLP_COOKIES_FILE", "").strip()
YTDLP_COOKIES_FROM_BROWSER: str = os.getenv("YTDLP_COOKIES_FROM_BROWSER", "").strip()

USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/121.0.0.0 Safari/537.36"
)
MOBILE_USER_AGENT: str = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) "
    "AppleWebKit/605.1.15"
)

YTDL_BASE_OPTS: Dict[str, Any] = {
    "nocheckcertificate": True,
    "quiet": True,
    "no_warnings": True,
    "noplaylist": True,
    "user_agent": USER_AGENT,
    "http_headers": {"User-Agent": USER_AGENT},
}

DOWNLOAD_COMMANDS: Dict[str, str] = {
    ".tiktok": "tiktok",
    ".twitter": "twitter",
    ".ytmp3": "youtube_mp3",
    ".yt": "youtube",
    ".ig": "instagram",
    ".fb": "facebook",
    ".x": "twitter",
}

URL_PATTERNS: Dict[str, re.Pattern[str]] = {
    "tiktok": re.compile(
        r"(?:https?://)?(?:www\.|vm\.|vt\.)?tiktok\.com/(@?[\w.]+)/video/(\d+)"
        r"|(?:https?://)?(?:www\.)?tiktok\.com/t/[\w-]+"
    ),
    "youtube": re.compile(
        r"(?:https?://)?(?:www\.)?(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/shorts/)([\w-]{11})"
    ),
    "instagram": re.compile(
        r"(?:https?://)?(?:www\.)?instagram\.com/(?:p|reel|stories/[\w.-]+/\d+)/([\w-]+)"
        r"|(?:https?://)?(?:www\.)?instagram\.com/reels?/[\w-]+"
    ),
    "twitter": re.compile(
        r"(?:https?://)?(?:www\.|mobile\.)?(?:twitter\.com|x\.com)/\w+/status/(\d+)"
        r"|(?:https?://)?(?:www\.)?(?:twitter\.com|x\.com)/i/status/(\d+)"
    ),
    "facebook": re.compile(
        r"(?:https?://)?(?:www\.)?facebook\.com/(?:[\w.]+/videos/|[\w.]+/posts/|watch/?\?v=)(\d+)"
    ),
}

FORBIDDEN_URL_CHARS_RE: re.Pattern[str] = re.compile(r"[\s<>\"']")

VIDEO_EXTENSIONS: tuple[str, ...] = (".mp4", ".mov", ".avi")
AUDIO_EXTENSIONS: tuple[str, ...] = (".mp3", ".m4a", ".wav")
IMAGE_EXTENSIONS: tuple[str, ...] = (".jpg", ".jpeg", ".png")

SHORTENER_DOMAINS: tuple[str, ...] = (
    "vm.tiktok.com",
    "vt.tiktok.com",
    "tiktok.com/t/",
)

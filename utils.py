"""
Utilities for command parsing, URL validation and temp file handling.
"""

import html
import logging
import os
import random
import re
import string
import time
from pathlib import Path
from typing import Optional, Union
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import aiohttp

from config import (
    AUDIO_EXTENSIONS,
    DOWNLOAD_COMMANDS,
    FORBIDDEN_URL_CHARS_RE,
    IMAGE_EXTENSIONS,
    MAX_URL_LENGTH,
    MOBILE_USER_AGENT,
    SHORTENER_DOMAINS,
    TEMP_DIR,
    URL_PATTERNS,
    VIDEO_EXTENSIONS,
)
from models import DownloadCommand, MediaType, Platform

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def validate_url(url: Optional[str], platform: Optional[str]) -> bool:
    """Check that URL matches the link pattern of the given platform."""
    if not url or not platform:
        return False
    pattern = URL_PATTERNS.get(platform)
    if pattern is None:
        return False
    if len(url) > MAX_URL_LENGTH or FORBIDDEN_URL_CHARS_RE.search(url):
        return False
    return pattern.match(url) is not None


def extract_command_and_url(text: Optional[str]) -> Optional[DownloadCommand]:
    """
    Parse a dot-command such as ``.yt https://youtu.be/...``.

    The command must start the message; the URL is the first token after it.
    """
    if not text:
        return None

    for command in sorted(DOWNLOAD_COMMANDS, key=len, reverse=True):
        if not text.startswith(command):
            continue

        platform = Platform(DOWNLOAD_COMMANDS[command])
        tokens = text[len(command):].split()
        if not tokens:
            return None

        url = tokens[0]
        if not validate_url(url, platform.url_pattern_key):
            return None
        return DownloadCommand(command=command, platform=platform, url=url)

    return None


def strip_tracking_params(url: str) -> str:
    """Remove common tracking query params from URL."""
    try:
        parsed = urlparse(url)
        query_params = parse_qs(parsed.query)
        clean_params = {
            key: value
            for key, value in query_params.items()
            if key.lower()
            not in {"utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content", "fbclid", "gclid"}
        }
        clean_query = urlencode(clean_params, doseq=True)
        return urlunparse(
            (parsed.scheme, parsed.netloc, parsed.path, parsed.params, clean_query, parsed.fragment)
        )
    except ValueError:
        return url


def sanitize_filename(filename: str) -> str:
    """Return filesystem-safe filename."""
    safe_name = re.sub(r'[<>:"/\\|?*]', "_", filename)
    safe_name = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", safe_name)
    safe_name = safe_name.strip().strip(".")
    return (safe_name or "media")[:255]


def sanitize_user_input(text: str, max_length: int = 4096) -> str:
    """Remove control chars (newlines and tabs are kept) and trim length."""
    if not text:
        return ""
    sanitized = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]", "", text)
    return sanitized.strip()[:max_length]


def get_temp_dir(temp_dir: PathLike = TEMP_DIR) -> Path:
    """Return temp directory for downloads, creating it when missing."""
    path = Path(temp_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def generate_temp_filename(prefix: str) -> str:
    """Build ``<prefix>_<epoch ms>_<6 random chars>`` for collision-free temp names."""
    timestamp = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{prefix}_{timestamp}_{suffix}"


def cleanup_temp_file(filepath: Optional[PathLike]) -> bool:
    """Remove temp file if it exists. Safe to call repeatedly."""
    if not filepath:
        return False
    try:
        os.remove(filepath)
        return True
    except FileNotFoundError:
        return False
    except OSError as error:
        logger.warning("Error cleaning up temp file %s: %s", filepath, error)
        return False


def get_file_size(filepath: PathLike) -> int:
    """File size in bytes, 0 when file is missing."""
    try:
        return os.path.getsize(filepath)
    except OSError:
        return 0


def format_file_size(bytes_size: Optional[float]) -> str:
    """Human readable file size: ``0 Bytes``, ``512 Bytes``, ``1.50 KB``, ``16.00 MB``."""
    if not bytes_size:
        return "0 Bytes"
    if bytes_size < 1024:
        return f"{bytes_size:g} Bytes"

    size = float(bytes_size)
    for unit in ("KB", "MB", "GB"):
        size /= 1024.0
        if size < 1024.0 or unit == "GB":
            return f"{size:.2f} {unit}"
    return "0 Bytes"


def format_duration(seconds: float) -> str:
    """Human readable duration."""
    total_seconds = max(0, int(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def media_type_for_path(filepath: PathLike, fallback: Optional[MediaType] = None) -> MediaType:
    """Media kind by file extension."""
    ext = Path(filepath).suffix.lower()
    if ext in VIDEO_EXTENSIONS:
        return MediaType.VIDEO
    if ext in AUDIO_EXTENSIONS:
        return MediaType.AUDIO
    if ext in IMAGE_EXTENSIONS:
        return MediaType.IMAGE
    return fallback or MediaType.DOCUMENT


def mime_type_for_path(filepath: PathLike) -> str:
    """MIME type by file extension."""
    ext = Path(filepath).suffix.lower()
    if ext in VIDEO_EXTENSIONS:
        return "video/mp4"
    if ext == ".mp3":
        return "audio/mpeg"
    if ext in AUDIO_EXTENSIONS:
        return f"audio/{ext[1:]}"
    if ext in IMAGE_EXTENSIONS:
        return f"image/{ext[1:]}"
    return "application/octet-stream"


def extract_tiktok_video_from_html(html_content: str) -> Optional[str]:
    """Try to extract canonical TikTok video URL from page HTML."""
    match = re.search(r"/@(?P<user>[^/\"]+)/video/(?P<id>\d+)", html_content)
    if match:
        return f"https://www.tiktok.com/@{match.group('user')}/video/{match.group('id')}"

    match = re.search(r'"itemId"\s*:\s*"(?P<id>\d+)"', html_content)
    if match:
        return f"https://www.tiktok.com/@_/video/{match.group('id')}"
    return None


def extract_tiktok_media_url_from_html(html_content: str) -> Optional[str]:
    """
    Extract direct TikTok media URL from HTML.

    Prefers watermark-free download URL when present.
    """
    if not html_content:
        return None

    patterns = [
        r'"downloadAddr"\s*:\s*"(?P<url>https?:\\/\\/[^"]+)"',
        r'"playAddr"\s*:\s*"(?P<url>https?:\\/\\/[^"]+)"',
    ]

    for pattern in patterns:
        match = re.search(pattern, html_content)
        if not match:
            continue

        url = match.group("url")
        url = html.unescape(url).replace("\\/", "/").replace("\\u002F", "/").replace("\\u0026", "&")
        if url.startswith("http://") or url.startswith("https://"):
            return url

    return None


async def normalize_tiktok_url_async(url: str, session: aiohttp.ClientSession) -> Optional[str]:
    """
    Normalize TikTok URL:
    - resolve short links
    - extract direct /video/ URL from destination page when needed
    """
    headers = {"User-Agent": MOBILE_USER_AGENT}
    final_url = url if url.startswith("http") else f"https://{url}"

    if any(domain in final_url.lower() for domain in SHORTENER_DOMAINS):
        async with session.get(
            final_url,
            allow_redirects=True,
            timeout=aiohttp.ClientTimeout(total=12),
            headers=headers,
        ) as resp:
            final_url = str(resp.url)

    final_clean = strip_tracking_params(final_url)
    if "/video/" in final_clean:
        return final_clean

    async with session.get(
        final_url,
        timeout=aiohttp.ClientTimeout(total=12),
        headers=headers,
    ) as resp:
        if resp.status != 200:
            return None
        return extract_tiktok_video_from_html(await resp.text())

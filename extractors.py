"""
Platform extractors built on yt-dlp.

Every extractor exposes ``async fetch(url) -> DownloadResult`` and raises
``ExtractionError`` when the platform cannot be handled. yt-dlp is blocking,
so its calls run in the default thread pool.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

import aiohttp
from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError

from config import (
    AUDIO_EXTENSIONS,
    DOWNLOAD_TIMEOUT_SECONDS,
    MOBILE_USER_AGENT,
    TEMP_DIR,
    VIDEO_EXTENSIONS,
    YTDL_BASE_OPTS,
    YTDLP_COOKIES_FILE,
    YTDLP_COOKIES_FROM_BROWSER,
)
from errors import ExtractionError
from models import DownloadResult, MediaType, Platform
from utils import (
    cleanup_temp_file,
    extract_tiktok_media_url_from_html,
    generate_temp_filename,
    get_temp_dir,
    normalize_tiktok_url_async,
)

logger = logging.getLogger(__name__)

IMAGE_EXTS = {"jpg", "jpeg", "png", "webp"}
AUDIO_EXTS = {"mp3", "m4a", "wav", "aac", "ogg", "opus"}


class Extractor(Protocol):
    platform: Platform

    async def fetch(self, url: str) -> DownloadResult:
        ...


def _has_codec(fmt: Dict[str, Any], key: str) -> bool:
    return fmt.get(key) not in (None, "none")


def select_media_url(info: Optional[Dict[str, Any]]) -> Optional[Tuple[str, Optional[str]]]:
    """
    Pick a downloadable media URL out of a yt-dlp info dict.

    Order: top-level ``url``, first playlist entry, ``hd`` then ``sd`` formats,
    best format with audio and video, then the last (best ranked) format.
    Returns ``(url, ext)`` or None.
    """
    if not info:
        return None

    if info.get("url"):
        return info["url"], info.get("ext")

    entries = [entry for entry in info.get("entries") or [] if entry]
    if entries:
        return select_media_url(entries[0])

    formats: List[Dict[str, Any]] = [fmt for fmt in info.get("formats") or [] if fmt.get("url")]
    if not formats:
        return None

    by_id = {fmt.get("format_id"): fmt for fmt in formats}
    for format_id in ("hd", "sd"):
        if format_id in by_id:
            return by_id[format_id]["url"], by_id[format_id].get("ext")

    muxed = [fmt for fmt in formats if _has_codec(fmt, "vcodec") and _has_codec(fmt, "acodec")]
    if muxed:
        best = max(muxed, key=lambda fmt: (fmt.get("height") or 0, fmt.get("tbr") or 0))
        return best["url"], best.get("ext")

    return formats[-1]["url"], formats[-1].get("ext")


def media_type_for_ext(ext: Optional[str]) -> MediaType:
    ext = (ext or "").lower()
    if ext in IMAGE_EXTS:
        return MediaType.IMAGE
    if ext in AUDIO_EXTS:
        return MediaType.AUDIO
    return MediaType.VIDEO


class YtDlpExtractor:
    """Shared yt-dlp plumbing: options, cookies and executor calls."""

    platform: Platform
    label: str = "media"

    def __init__(
        self,
        temp_dir: os.PathLike = TEMP_DIR,
        timeout: int = DOWNLOAD_TIMEOUT_SECONDS,
        cookies_file: str = YTDLP_COOKIES_FILE,
        cookies_from_browser: str = YTDLP_COOKIES_FROM_BROWSER,
    ):
        self.temp_dir = temp_dir
        self.timeout = timeout
        self.cookies_file = cookies_file
        self.cookies_from_browser = cookies_from_browser

    def _build_ytdlp_options(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        ydl_opts: Dict[str, Any] = {
            **YTDL_BASE_OPTS,
            "socket_timeout": self.timeout,
            "retries": 3,
        }
        if extra:
            ydl_opts.update(extra)

        cookie_file = (self.cookies_file or "").strip()
        if cookie_file:
            if os.path.exists(cookie_file):
                ydl_opts["cookiefile"] = cookie_file
            else:
                logger.warning("YTDLP_COOKIES_FILE is set but file does not exist: %s", cookie_file)

        cookies_from_browser = self._parse_cookies_from_browser(self.cookies_from_browser)
        if cookies_from_browser:
            ydl_opts["cookiesfrombrowser"] = cookies_from_browser

        return ydl_opts

    @staticmethod
    def _parse_cookies_from_browser(raw_value: str) -> Optional[Tuple[str, ...]]:
        """
        Parse env string into yt-dlp `cookiesfrombrowser` tuple.

        Examples:
        - chrome
        - firefox:default-release
        - edge::Profile 1
        """
        if not raw_value:
            return None

        parts = [part.strip() for part in raw_value.split(":")]
        if not parts or not parts[0]:
            return None

        values: List[str] = [parts[0]]
        for part in parts[1:4]:
            if part:
                values.append(part)
        return tuple(values)

    def _extract_info(self, url: str, options: Dict[str, Any], download: bool) -> Dict[str, Any]:
        """Blocking yt-dlp call, run in the thread pool."""
        with YoutubeDL(options) as ydl:
            info = ydl.extract_info(url, download=download)
            return ydl.sanitize_info(info) if info else {}

    async def _extract_info_async(self, url: str, options: Dict[str, Any], download: bool) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._extract_info, url, options, download)

    @staticmethod
    def _absolute_url(url: str) -> str:
        return url if url.startswith(("http://", "https://")) else f"https://{url}"


class YouTubeExtractor(YtDlpExtractor):
    """Downloads YouTube video (mp4) or audio (mp3) into a temp file."""

    label = "YouTube"

    def __init__(self, audio_only: bool = False, **kwargs: Any):
        super().__init__(**kwargs)
        self.audio_only = audio_only
        self.platform = Platform.YOUTUBE_MP3 if audio_only else Platform.YOUTUBE

    async def fetch(self, url: str) -> DownloadResult:
        temp_dir = get_temp_dir(self.temp_dir)
        stem = generate_temp_filename("youtube")
        loop = asyncio.get_running_loop()
        try:
            filepath = await loop.run_in_executor(None, self._download, self._absolute_url(url), temp_dir, stem)
        except Exception as error:
            self._cleanup_partial(temp_dir, stem)
            raise ExtractionError(self.label, str(error)) from error

        return DownloadResult(
            success=True,
            media_type=MediaType.AUDIO if self.audio_only else MediaType.VIDEO,
            platform=self.platform,
            filename=Path(filepath).name,
            local_path=filepath,
        )

    def _download_options(self, temp_dir: Path, stem: str) -> Dict[str, Any]:
        extra: Dict[str, Any] = {"outtmpl": str(temp_dir / f"{stem}.%(ext)s")}
        if self.audio_only:
            extra.update(
                {
                    "format": "bestaudio/best",
                    "postprocessors": [
                        {
                            "key": "FFmpegExtractAudio",
                            "preferredcodec": "mp3",
                            "preferredquality": "192",
                        }
                    ],
                }
            )
        else:
            extra.update(
                {
                    "format": "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best",
                    "merge_output_format": "mp4",
                }
            )
        return self._build_ytdlp_options(extra)

    def _download(self, url: str, temp_dir: Path, stem: str) -> str:
        self._extract_info(url, self._download_options(temp_dir, stem), download=True)
        allowed_ext = AUDIO_EXTENSIONS if self.audio_only else VIDEO_EXTENSIONS
        filepath = self._find_output_file(temp_dir, stem, allowed_ext)
        if not filepath:
            raise FileNotFoundError("Downloaded file not found")
        return filepath

    @staticmethod
    def _find_output_file(temp_dir: Path, stem: str, allowed_ext: Tuple[str, ...]) -> Optional[str]:
        files = [
            entry
            for entry in Path(temp_dir).glob(f"{stem}.*")
            if entry.is_file() and entry.suffix.lower() not in (".part", ".ytdl")
        ]
        preferred = [entry for entry in files if entry.suffix.lower() in allowed_ext]
        candidates = preferred or files
        if not candidates:
            return None
        return str(max(candidates, key=lambda item: item.stat().st_mtime))

    @staticmethod
    def _cleanup_partial(temp_dir: Path, stem: str) -> None:
        for entry in Path(temp_dir).glob(f"{stem}*"):
            cleanup_temp_file(entry)


class TikTokExtractor(YtDlpExtractor):
    """Resolves a direct TikTok video URL without downloading it."""

    platform = Platform.TIKTOK
    label = "TikTok"

    async def fetch(self, url: str) -> DownloadResult:
        target = self._absolute_url(url)
        last_error: Optional[Exception] = None

        async with aiohttp.ClientSession() as session:
            try:
                normalized = await normalize_tiktok_url_async(target, session)
                if normalized:
                    target = normalized
            except (aiohttp.ClientError, asyncio.TimeoutError) as error:
                logger.warning("TikTok normalization failed for %s: %s", url, error)

            selected = None
            try:
                info = await self._extract_info_async(target, self._build_ytdlp_options(), download=False)
                selected = select_media_url(info)
            except DownloadError as error:
                last_error = error
                logger.warning("yt-dlp TikTok extraction failed for %s: %s", target, error)

            media_url = selected[0] if selected else await self._scrape_media_url(session, target)

        if not media_url:
            raise ExtractionError(self.label, str(last_error or "TikTok download failed"))

        return DownloadResult(
            success=True,
            media_type=MediaType.VIDEO,
            platform=self.platform,
            filename=f"tiktok_{int(time.time() * 1000)}.mp4",
            source_url=media_url,
        )

    async def _scrape_media_url(self, session: aiohttp.ClientSession, url: str) -> Optional[str]:
        """Best-effort fallback when yt-dlp cannot extract the video."""
        headers = {"User-Agent": MOBILE_USER_AGENT, "Referer": "https://www.tiktok.com/"}
        try:
            async with session.get(url, headers=headers, timeout=aiohttp.ClientTimeout(total=15)) as response:
                if response.status != 200:
                    return None
                html_content = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            logger.warning("TikTok HTML fallback failed for %s: %s", url, error)
            return None

        media_url = extract_tiktok_media_url_from_html(html_content)
        if media_url:
            logger.info("TikTok HTML fallback succeeded for %s", url)
        return media_url


class SocialExtractor(YtDlpExtractor):
    """Instagram, Twitter/X and Facebook: resolve a direct media URL via yt-dlp metadata."""

    def __init__(self, platform: Platform, **kwargs: Any):
        super().__init__(**kwargs)
        self.platform = platform
        self.label = platform.value

    async def fetch(self, url: str) -> DownloadResult:
        try:
            info = await self._extract_info_async(
                self._absolute_url(url), self._build_ytdlp_options(), download=False
            )
        except DownloadError as error:
            raise ExtractionError(self.label, str(error)) from error

        selected = select_media_url(info)
        if not selected:
            raise ExtractionError(self.label, f"{self.label} download failed")

        media_url, ext = selected
        ext = (ext or "mp4").lower()
        return DownloadResult(
            success=True,
            media_type=media_type_for_ext(ext),
            platform=self.platform,
            filename=f"{self.platform.value}_{int(time.time() * 1000)}.{ext}",
            source_url=media_url,
        )


def build_extractors(**kwargs: Any) -> Dict[Platform, Extractor]:
    """One extractor per platform; keyword arguments are passed to each."""
    return {
        Platform.TIKTOK: TikTokExtractor(**kwargs),
        Platform.YOUTUBE: YouTubeExtractor(audio_only=False, **kwargs),
        Platform.YOUTUBE_MP3: YouTubeExtractor(audio_only=True, **kwargs),
        Platform.INSTAGRAM: SocialExtractor(Platform.INSTAGRAM, **kwargs),
        Platform.TWITTER: SocialExtractor(Platform.TWITTER, **kwargs),
        Platform.FACEBOOK: SocialExtractor(Platform.FACEBOOK, **kwargs),
    }

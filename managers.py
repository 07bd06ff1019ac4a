"""
Download dispatcher: runs one dot-command end to end and replies in chat.
"""

import asyncio
import logging
import os
from typing import Any, Dict, Mapping, Optional, Union

import aiofiles

from config import MAX_CONCURRENT_DOWNLOADS, MAX_FILE_SIZE_BYTES
from errors import ExtractionError, TransportError, UnsupportedPlatformError, error_manager
from extractors import Extractor, build_extractors
from models import DownloadCommand, DownloadResult, MediaType, Platform
from state import TrafficStats
from transport import ChatTransport
from utils import (
    cleanup_temp_file,
    format_file_size,
    get_file_size,
    media_type_for_path,
    mime_type_for_path,
    sanitize_filename,
)

logger = logging.getLogger(__name__)


class DownloadDispatcher:
    """Single-attempt media downloader with guaranteed temp file cleanup."""

    def __init__(
        self,
        transport: ChatTransport,
        extractors: Optional[Mapping[Platform, Extractor]] = None,
        traffic: Optional[TrafficStats] = None,
        max_concurrent: int = MAX_CONCURRENT_DOWNLOADS,
        max_file_size: int = MAX_FILE_SIZE_BYTES,
    ):
        self.transport = transport
        self.extractors = extractors if extractors is not None else build_extractors()
        self.traffic = traffic if traffic is not None else TrafficStats()
        self.max_file_size = max_file_size
        self.semaphore = asyncio.Semaphore(max(1, max_concurrent))

    async def dispatch(self, chat_id: str, command: DownloadCommand) -> bool:
        """Run the download for ``command``; returns True when media was delivered."""
        result: Optional[DownloadResult] = None
        delivered = False
        try:
            await self._reply(chat_id, "⏳ Processing...")
            await self._reply(chat_id, f"📥 Downloading from {command.platform.display_name}...")

            extractor = self.extractors.get(command.platform)
            if extractor is None:
                raise UnsupportedPlatformError(f"Platform not supported: {command.platform.value}")

            async with self.semaphore:
                result = await extractor.fetch(command.url)
            if not result.success:
                raise ExtractionError(command.platform.value, "Download failed")

            await self._reply(chat_id, "📤 Sending file...")
            delivered = await self._send_media(chat_id, result)
            self.traffic.record_outcome(delivered)
            if delivered:
                await self._reply(chat_id, "✅ Sent!")
            return delivered
        except Exception as error:
            if delivered:
                logger.warning("Media sent to %s but the confirmation failed: %s", chat_id, error)
                return True
            self.traffic.record_outcome(False)
            await self._handle_download_error(chat_id, command, error)
            return False
        finally:
            if result is not None:
                cleanup_temp_file(result.local_path)

    async def _send_media(self, chat_id: str, result: DownloadResult) -> bool:
        local_path = result.local_path
        has_local_file = bool(local_path) and os.path.isfile(local_path)

        if not has_local_file and result.source_url and result.source_url.startswith("http"):
            content = self._media_content(result.media_type, {"url": result.source_url}, None, result)
            await self.transport.send_message(chat_id, content)
            return True

        if not has_local_file:
            raise FileNotFoundError("Downloaded file not found")

        file_size = get_file_size(local_path)
        self.traffic.record_download(file_size)
        if file_size > self.max_file_size:
            await self._reply(
                chat_id,
                f"⚠️ File too large ({format_file_size(file_size)}). "
                f"WhatsApp maximum is {format_file_size(self.max_file_size)}.\n\n"
                "Try a lower quality or another platform.",
            )
            return False

        async with aiofiles.open(local_path, "rb") as file:
            buffer = await file.read()

        media_type = media_type_for_path(local_path)
        if media_type is MediaType.DOCUMENT and result.media_type in (MediaType.VIDEO, MediaType.AUDIO):
            media_type = result.media_type

        content = self._media_content(media_type, buffer, mime_type_for_path(local_path), result)
        await self.transport.send_message(chat_id, content)
        self.traffic.record_sent(len(buffer))
        return True

    @staticmethod
    def _media_content(
        media_type: MediaType,
        payload: Union[bytes, Dict[str, str]],
        mimetype: Optional[str],
        result: DownloadResult,
    ) -> Dict[str, Any]:
        if media_type is MediaType.VIDEO:
            return {
                "video": payload,
                "mimetype": "video/mp4",
                "caption": f"📹 Video from {result.platform.display_name}",
            }
        if media_type is MediaType.AUDIO:
            if not mimetype or mimetype == "application/octet-stream":
                mimetype = "audio/mpeg"
            return {"audio": payload, "mimetype": mimetype, "caption": "🎵 Audio"}
        if media_type is MediaType.IMAGE:
            content: Dict[str, Any] = {"image": payload, "caption": "🖼️ Image"}
            if mimetype:
                content["mimetype"] = mimetype
            return content
        return {
            "document": payload,
            "mimetype": "application/octet-stream",
            "fileName": sanitize_filename(result.filename or "file"),
            "caption": "📄 File",
        }

    async def _reply(self, chat_id: str, text: str) -> None:
        await self.transport.send_message(chat_id, {"text": text})

    async def _handle_download_error(self, chat_id: str, command: DownloadCommand, error: Exception) -> None:
        error_manager.log_download_error(logger, error, chat_id, url=command.url)
        try:
            await self._reply(chat_id, error_manager.to_user_message(error))
        except TransportError as send_error:
            logger.warning("Could not report download failure to %s: %s", chat_id, send_error)

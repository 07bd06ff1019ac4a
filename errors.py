"""
Error types, formatting and logging utilities.
"""

import logging
from typing import Optional


def setup_logging(
    level: str = "INFO",
    format_string: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
) -> logging.Logger:
    """Configure root logging once and return module logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(format_string))
    root_logger.addHandler(console_handler)
    return logging.getLogger(__name__)


class BotError(Exception):
    """Base class for errors raised by the bot itself."""


class ExtractionError(BotError):
    """An extractor could not resolve or fetch media for a URL."""

    def __init__(self, platform: str, message: str):
        super().__init__(f"{platform} download error: {message}")
        self.platform = platform


class UnsupportedPlatformError(BotError):
    """No extractor is registered for the requested platform."""


class TransportError(BotError):
    """The chat bridge is unavailable or rejected an outbound frame."""


class ReauthRequiredError(TransportError):
    """The session was logged out and the QR code must be scanned again."""


class ErrorManager:
    """Convert download failures to the user-facing chat reply."""

    max_details_length = 350

    def to_user_message(self, error: Exception) -> str:
        details = str(error) or error.__class__.__name__
        return (
            f"❌ Download failed: {details[: self.max_details_length]}\n\n"
            "Make sure the URL is valid and try again."
        )

    def log_download_error(
        self,
        logger: logging.Logger,
        error: Exception,
        chat_id: str,
        url: Optional[str] = None,
    ) -> None:
        if isinstance(error, (ExtractionError, UnsupportedPlatformError)):
            logger.warning("Download failed for chat=%s url=%s: %s", chat_id, url, error)
        else:
            logger.error("Download failed for chat=%s url=%s", chat_id, url, exc_info=error)


error_manager = ErrorManager()

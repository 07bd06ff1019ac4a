"""
On-disk storage of WhatsApp session credentials.

The credential payload is opaque: it is produced by the bridge in
``creds.update`` events and handed back to it when a session is opened.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import aiofiles

logger = logging.getLogger(__name__)


class AuthStateStore:
    """Persist session credentials as ``creds.json`` inside an auth directory."""

    creds_filename = "creds.json"

    def __init__(self, directory: Union[str, os.PathLike]):
        self.directory = Path(directory)

    @property
    def creds_path(self) -> Path:
        return self.directory / self.creds_filename

    async def load(self) -> Optional[Dict[str, Any]]:
        """Return stored credentials, or None when nothing usable is stored."""
        if not self.creds_path.is_file():
            return None
        try:
            async with aiofiles.open(self.creds_path, "r", encoding="utf-8") as file:
                return json.loads(await file.read())
        except json.JSONDecodeError:
            logger.warning("Stored credentials at %s are corrupt, ignoring them", self.creds_path)
            return None

    async def save(self, creds: Dict[str, Any]) -> None:
        """Write credentials atomically (temp file, then replace)."""
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = self.creds_path.with_suffix(".json.tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as file:
            await file.write(json.dumps(creds))
        os.replace(tmp_path, self.creds_path)
        logger.debug("Credentials saved to %s", self.creds_path)

    def clear(self) -> None:
        """Forget stored credentials so the next session starts with a QR scan."""
        try:
            self.creds_path.unlink()
            logger.info("Stored credentials removed from %s", self.creds_path)
        except FileNotFoundError:
            pass

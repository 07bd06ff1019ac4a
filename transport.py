"""
Boundary to the WhatsApp bridge.

The WhatsApp protocol itself runs in a separate bridge process. This module
speaks a small JSON-over-WebSocket protocol with it:

inbound frames
    ``{"type": "connection.update", "connection": "open"|"close"|"connecting", "qr": ..., "statusCode": ...}``
    ``{"type": "creds.update", "creds": {...}}``
    ``{"type": "messages.upsert", "upsertType": "notify", "messages": [...]}``

outbound frames
    ``{"type": "auth", "creds": {...} | null, "browser": [...]}``
    ``{"type": "send", "jid": ..., "content": {...}}``
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Protocol

import aiohttp

from config import WA_BROWSER
from errors import TransportError
from models import IncomingMessage

logger = logging.getLogger(__name__)


class DisconnectReason:
    """Close codes reported in ``connection.update`` events."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    LOGGED_OUT = 401
    RESTART_REQUIRED = 515


@dataclass
class TransportEvent:
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)


class ChatTransport(Protocol):
    """Anything able to deliver an outbound chat message."""

    async def send_message(self, jid: str, content: Dict[str, Any]) -> None:
        ...


def encode_content(content: Dict[str, Any]) -> Dict[str, Any]:
    """Make message content JSON-safe: binary media becomes ``{"base64": ...}``."""
    encoded: Dict[str, Any] = {}
    for key, value in content.items():
        if isinstance(value, (bytes, bytearray)):
            encoded[key] = {"base64": base64.b64encode(bytes(value)).decode("ascii")}
        else:
            encoded[key] = value
    return encoded


def parse_incoming_message(raw: Dict[str, Any]) -> IncomingMessage:
    """Map a bridge message dict (WhatsApp web message shape) to IncomingMessage."""
    key = raw.get("key")
    if not isinstance(key, dict):
        key = {}
    chat_id = str(key.get("remoteJid") or "")
    message = raw.get("message")

    text: Optional[str]
    if not message or not isinstance(message, dict):
        text = None
    else:
        extended = message.get("extendedTextMessage")
        if not isinstance(extended, dict):
            extended = {}
        text = message.get("conversation") or extended.get("text") or ""
        if not isinstance(text, str):
            text = ""

    return IncomingMessage(
        sender_id=key.get("participant") or chat_id,
        chat_id=chat_id,
        is_from_self=bool(key.get("fromMe")),
        raw_text=text,
        push_name=raw.get("pushName"),
    )


class BridgeSession:
    """One open WebSocket session with the bridge."""

    def __init__(self, http_session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse):
        self._http_session = http_session
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def events(self) -> AsyncIterator[TransportEvent]:
        """Yield decoded bridge events; ends with a synthetic close if the socket drops."""
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    data = json.loads(msg.data)
                except ValueError:
                    logger.warning("Ignoring malformed bridge frame: %.200s", msg.data)
                    continue
                if not isinstance(data, dict):
                    continue
                yield TransportEvent(type=str(data.get("type", "")), payload=data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise TransportError(f"Bridge socket error: {self._ws.exception()}")

        yield TransportEvent(
            type="connection.update",
            payload={"connection": "close", "statusCode": DisconnectReason.CONNECTION_CLOSED},
        )

    async def send_message(self, jid: str, content: Dict[str, Any]) -> None:
        if self._ws.closed:
            raise TransportError("Bridge session is closed")
        await self._ws.send_json({"type": "send", "jid": jid, "content": encode_content(content)})

    async def close(self) -> None:
        try:
            if not self._ws.closed:
                await self._ws.close()
        finally:
            await self._http_session.close()


class BridgeTransport:
    """Opens sessions with the WhatsApp bridge at ``url``."""

    def __init__(self, url: str, browser: tuple[str, str, str] = WA_BROWSER, heartbeat: float = 30.0):
        self.url = url
        self.browser = browser
        self.heartbeat = heartbeat

    async def connect(self, creds: Optional[Dict[str, Any]]) -> BridgeSession:
        http_session = aiohttp.ClientSession()
        try:
            ws = await http_session.ws_connect(self.url, heartbeat=self.heartbeat)
            await ws.send_json({"type": "auth", "creds": creds, "browser": list(self.browser)})
        except Exception:
            await http_session.close()
            raise
        logger.info("Connected to WhatsApp bridge at %s", self.url)
        return BridgeSession(http_session, ws)

"""
Connection supervisor: owns the WhatsApp bridge session and its lifecycle.

State machine over ConnectionState:
connecting -> qr-ready -> connecting | connected
connected -> disconnected -> connecting (retry with backoff) | needs-scan
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional, Set, Tuple

import aiohttp

from auth_state import AuthStateStore
from config import RECONNECT_BACKOFF_START, RECONNECT_MAX_ATTEMPTS, RECONNECT_MAX_DELAY
from errors import ReauthRequiredError, TransportError
from models import ConnectionStatus, IncomingMessage
from state import ConnectionState
from transport import BridgeSession, BridgeTransport, DisconnectReason, parse_incoming_message

logger = logging.getLogger(__name__)

MessageHandler = Callable[[IncomingMessage], Awaitable[None]]


def backoff_delays(start: float = RECONNECT_BACKOFF_START, maximum: float = RECONNECT_MAX_DELAY) -> Iterator[float]:
    """Exponential delays in seconds, capped at ``maximum``."""
    delay = start
    while True:
        yield delay
        delay = min(delay * 2, maximum)


class ConnectionSupervisor:
    """Keeps a bridge session open and routes its events."""

    def __init__(
        self,
        transport: BridgeTransport,
        state: ConnectionState,
        auth_store: AuthStateStore,
        on_message: Optional[MessageHandler] = None,
        max_attempts: int = RECONNECT_MAX_ATTEMPTS,
        backoff_start: float = RECONNECT_BACKOFF_START,
        max_delay: float = RECONNECT_MAX_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.transport = transport
        self.state = state
        self.auth_store = auth_store
        self.on_message = on_message
        self.max_attempts = max(1, max_attempts)
        self.backoff_start = backoff_start
        self.max_delay = max_delay
        self.sleep = sleep

        self._session: Optional[BridgeSession] = None
        self._stopping = False
        self._message_tasks: Set[asyncio.Task] = set()

    def set_message_handler(self, handler: MessageHandler) -> None:
        self.on_message = handler

    async def send_message(self, jid: str, content: Dict[str, Any]) -> None:
        """ChatTransport implementation backed by the live session."""
        if self.state.status is ConnectionStatus.NEEDS_SCAN:
            raise ReauthRequiredError("WhatsApp session needs a new QR scan")
        session = self._session
        if session is None or session.closed:
            raise TransportError("WhatsApp session is not connected")
        await session.send_message(jid, content)

    async def run(self) -> ConnectionStatus:
        """Connect and reconnect until logged out, out of retries or stopped."""
        failures = 0
        delays = backoff_delays(self.backoff_start, self.max_delay)

        while not self._stopping:
            self.state.mark_connecting()
            reachable = False
            try:
                code, reachable = await self._run_session()
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError, TransportError) as error:
                logger.warning("Bridge connection failed: %s", error)
                code = DisconnectReason.CONNECTION_LOST

            if self._stopping:
                break

            if code == DisconnectReason.LOGGED_OUT:
                logger.error("Connection closed: logged out. Please scan the QR code again.")
                self.auth_store.clear()
                self.state.mark_needs_scan(code)
                return self.state.status

            if reachable:
                failures = 0
                delays = backoff_delays(self.backoff_start, self.max_delay)

            failures += 1
            if failures > self.max_attempts:
                logger.error("Giving up after %s reconnect attempts (last reason=%s)", self.max_attempts, code)
                self.state.mark_needs_scan(code)
                return self.state.status

            self.state.mark_disconnected(code, failures)
            delay = next(delays)
            logger.info(
                "Reconnecting in %.1fs (attempt %s/%s, reason=%s)",
                delay,
                failures,
                self.max_attempts,
                code,
            )
            await self.sleep(delay)

        self.state.mark_disconnected()
        return self.state.status

    async def stop(self) -> None:
        self._stopping = True
        session = self._session
        if session is not None:
            await session.close()
        for task in list(self._message_tasks):
            task.cancel()

    async def _run_session(self) -> Tuple[int, bool]:
        """Run one bridge session; returns (close code, whether it opened or showed a QR)."""
        creds = await self.auth_store.load()
        session = await self.transport.connect(creds)
        self._session = session
        reachable = False
        try:
            async for event in session.events():
                if event.type == "connection.update":
                    close_code = self._handle_connection_update(event.payload)
                    if self.state.status in (ConnectionStatus.CONNECTED, ConnectionStatus.QR_READY):
                        reachable = True
                    if close_code is not None:
                        return close_code, reachable
                elif event.type == "creds.update":
                    await self.auth_store.save(event.payload.get("creds") or {})
                elif event.type == "messages.upsert":
                    self._handle_messages(event.payload)
            return DisconnectReason.CONNECTION_CLOSED, reachable
        finally:
            self._session = None
            await session.close()

    def _handle_connection_update(self, update: Dict[str, Any]) -> Optional[int]:
        connection = update.get("connection")
        qr = update.get("qr")

        if connection == "close":
            code = update.get("statusCode")
            logger.info("Connection closed (reason=%s)", code)
            if code is None:
                return DisconnectReason.CONNECTION_CLOSED
            try:
                return int(code)
            except (TypeError, ValueError):
                logger.warning("Ignoring malformed close code %r", code)
                return DisconnectReason.CONNECTION_CLOSED

        if connection == "open":
            self.state.mark_connected()
            logger.info("Connection opened")
        elif connection == "connecting":
            self.state.mark_connecting()

        if isinstance(qr, str) and qr:
            self.state.mark_qr(qr)
            logger.info("QR code received and stored")
        return None

    def _handle_messages(self, payload: Dict[str, Any]) -> None:
        if payload.get("upsertType", "notify") != "notify" or self.on_message is None:
            return
        for raw in payload.get("messages") or []:
            try:
                message = parse_incoming_message(raw)
            except (AttributeError, TypeError, ValueError) as error:
                logger.warning("Skipping malformed bridge message: %s", error)
                continue
            task = asyncio.create_task(self.on_message(message))
            self._message_tasks.add(task)
            task.add_done_callback(self._message_tasks.discard)

"""
Message router: turns inbound chat messages into replies or downloads.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict

from config import BOT_NAME, BOT_VERSION, DOWNLOAD_COMMANDS
from managers import DownloadDispatcher
from models import IncomingMessage, Platform
from transport import ChatTransport
from utils import extract_command_and_url, sanitize_user_input

logger = logging.getLogger(__name__)

CommandHandler = Callable[[IncomingMessage], Awaitable[None]]


@dataclass(frozen=True)
class BangCommand:
    name: str
    description: str
    category: str
    handler: CommandHandler


class MessageRouter:
    """Routes each message to exactly one reply path."""

    def __init__(
        self,
        transport: ChatTransport,
        dispatcher: DownloadDispatcher,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.transport = transport
        self.dispatcher = dispatcher
        self.clock = clock
        self.commands: Dict[str, BangCommand] = {}
        self._register_commands()

    def _register_commands(self) -> None:
        self._add_command("help", "Show the command list", "general", self.handle_help)
        self._add_command("ping", "Check bot connection", "utility", self.handle_ping)
        self._add_command("time", "Show the current time", "utility", self.handle_time)
        self._add_command("about", "About this bot", "general", self.handle_about)

    def _add_command(self, name: str, description: str, category: str, handler: CommandHandler) -> None:
        self.commands[f"!{name}"] = BangCommand(name, description, category, handler)

    async def handle_message(self, message: IncomingMessage) -> None:
        """Entry point for every inbound event. Never raises."""
        try:
            if message.is_from_self or message.raw_text is None:
                return

            text = sanitize_user_input(message.raw_text)
            logger.info(
                "Received message chat=%s name=%s text=%.200r",
                message.chat_id,
                message.push_name,
                text,
            )

            download_command = extract_command_and_url(text)
            if download_command:
                await self.dispatcher.dispatch(message.chat_id, download_command)
                return

            if text.startswith("!"):
                await self.handle_command(message, text)
            else:
                await self.handle_greeting(message)
        except Exception:
            logger.exception("Error handling message from %s", message.chat_id)

    async def handle_command(self, message: IncomingMessage, text: str) -> None:
        name = text.split()[0].lower()
        command = self.commands.get(name)
        if command is None:
            await self._reply(
                message,
                f"❌ Unknown command: {name}\n\nType !help to see the available commands.",
            )
            return
        await command.handler(message)

    async def handle_greeting(self, message: IncomingMessage) -> None:
        name = message.push_name or "there"
        await self._reply(
            message,
            f"Hi {name}! The WhatsApp bot is active.\n\n"
            "Type !help to see the command list.\n\n"
            f"Or use a download command:\n{self._download_help()}",
        )

    async def handle_help(self, message: IncomingMessage) -> None:
        lines = [f"{name} - {command.description}" for name, command in self.commands.items()]
        await self._reply(
            message,
            "📋 *Bot Commands*\n\n" + "\n".join(lines) + f"\n\n*Downloads*\n{self._download_help()}",
        )

    async def handle_ping(self, message: IncomingMessage) -> None:
        await self._reply(message, "🏓 Pong! The bot is online and responding.")

    async def handle_time(self, message: IncomingMessage) -> None:
        now = self.clock()
        await self._reply(message, f"🕐 Current time: {now.strftime('%Y-%m-%d %H:%M:%S')}")

    async def handle_about(self, message: IncomingMessage) -> None:
        await self._reply(
            message,
            f"🤖 *{BOT_NAME}*\n\n"
            "Downloads media from TikTok, YouTube, Instagram, Twitter/X and Facebook.\n"
            f"Version: {BOT_VERSION}",
        )

    @staticmethod
    def _download_help() -> str:
        return "\n".join(
            f"• {prefix} <url> - {Platform(platform).display_name}"
            for prefix, platform in DOWNLOAD_COMMANDS.items()
        )

    async def _reply(self, message: IncomingMessage, text: str) -> None:
        await self.transport.send_message(message.chat_id, {"text": text})

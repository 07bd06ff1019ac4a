"""
Unit tests for message routing.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

from handlers import MessageRouter
from models import IncomingMessage, Platform


class _StubTransport:
    def __init__(self):
        self.send_message = AsyncMock()

    def texts(self):
        return [call.args[1]["text"] for call in self.send_message.await_args_list]


def _make_router():
    transport = _StubTransport()
    dispatcher = AsyncMock()
    router = MessageRouter(
        transport=transport,
        dispatcher=dispatcher,
        clock=lambda: datetime(2024, 5, 1, 12, 30, 45),
    )
    return router, transport, dispatcher


def _message(text, from_self=False, push_name="Alice"):
    return IncomingMessage(
        sender_id="111@s.whatsapp.net",
        chat_id="111@s.whatsapp.net",
        is_from_self=from_self,
        raw_text=text,
        push_name=push_name,
    )


def test_self_sent_messages_are_ignored():
    router, transport, dispatcher = _make_router()

    asyncio.run(router.handle_message(_message("!ping", from_self=True)))

    transport.send_message.assert_not_awaited()
    dispatcher.dispatch.assert_not_awaited()


def test_message_without_payload_is_ignored():
    router, transport, _ = _make_router()

    asyncio.run(router.handle_message(_message(None)))

    transport.send_message.assert_not_awaited()


def test_empty_text_gets_one_greeting():
    router, transport, _ = _make_router()

    asyncio.run(router.handle_message(_message("")))

    assert transport.send_message.await_count == 1
    assert transport.texts()[0].startswith("Hi Alice!")


def test_greeting_without_push_name():
    router, transport, _ = _make_router()

    asyncio.run(router.handle_message(_message("hello", push_name=None)))

    assert transport.send_message.await_count == 1
    assert transport.texts()[0].startswith("Hi there!")
    assert ".ytmp3 <url>" in transport.texts()[0]


def test_ping_replies_pong():
    router, transport, _ = _make_router()

    asyncio.run(router.handle_message(_message("!ping")))

    assert transport.send_message.await_count == 1
    jid, content = transport.send_message.await_args.args
    assert jid == "111@s.whatsapp.net"
    assert "Pong" in content["text"]


def test_commands_are_case_insensitive():
    router, transport, _ = _make_router()

    asyncio.run(router.handle_message(_message("!PING extra words")))

    assert "Pong" in transport.texts()[0]


def test_time_uses_clock():
    router, transport, _ = _make_router()

    asyncio.run(router.handle_message(_message("!time")))

    assert transport.texts() == ["🕐 Current time: 2024-05-01 12:30:45"]


def test_help_lists_every_command():
    router, transport, _ = _make_router()

    asyncio.run(router.handle_message(_message("!help")))

    text = transport.texts()[0]
    for name in ("!help", "!ping", "!time", "!about", ".tiktok", ".yt", ".ytmp3", ".ig", ".x", ".fb"):
        assert name in text


def test_about_mentions_version():
    router, transport, _ = _make_router()

    asyncio.run(router.handle_message(_message("!about")))

    assert "Version:" in transport.texts()[0]


def test_unknown_command():
    router, transport, _ = _make_router()

    asyncio.run(router.handle_message(_message("!foo")))

    assert transport.texts() == ["❌ Unknown command: !foo\n\nType !help to see the available commands."]


def test_download_command_goes_to_dispatcher():
    router, transport, dispatcher = _make_router()

    asyncio.run(router.handle_message(_message(".yt https://www.youtube.com/watch?v=dQw4w9WgXcQ")))

    dispatcher.dispatch.assert_awaited_once()
    chat_id, command = dispatcher.dispatch.await_args.args
    assert chat_id == "111@s.whatsapp.net"
    assert command.platform == Platform.YOUTUBE
    assert command.url == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
    transport.send_message.assert_not_awaited()


def test_invalid_download_url_falls_back_to_greeting():
    router, transport, dispatcher = _make_router()

    asyncio.run(router.handle_message(_message(".yt https://invalid-url.com")))

    dispatcher.dispatch.assert_not_awaited()
    assert transport.send_message.await_count == 1


def test_transport_failure_does_not_raise():
    router, transport, _ = _make_router()
    transport.send_message.side_effect = RuntimeError("socket closed")

    asyncio.run(router.handle_message(_message("!ping")))

    assert transport.send_message.await_count == 1

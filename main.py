"""
Entry point for the WhatsApp media downloader bot.
"""

import asyncio
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from auth_state import AuthStateStore  # noqa: E402
from config import AUTH_STATE_DIR, LOG_FORMAT, LOG_LEVEL, WA_BRIDGE_URL, require_dashboard_credentials  # noqa: E402
from errors import setup_logging  # noqa: E402
from handlers import MessageRouter  # noqa: E402
from managers import DownloadDispatcher  # noqa: E402
from server import StatusServer  # noqa: E402
from state import ConnectionState, TrafficStats  # noqa: E402
from supervisor import ConnectionSupervisor  # noqa: E402
from transport import BridgeTransport  # noqa: E402

shutdown_event = asyncio.Event()


async def main() -> None:
    logger = setup_logging(level=LOG_LEVEL, format_string=LOG_FORMAT)
    logger.info("Starting WhatsApp downloader bot")

    server = None
    supervisor = None
    try:
        credentials = require_dashboard_credentials()
        state = ConnectionState()
        traffic = TrafficStats()

        supervisor = ConnectionSupervisor(
            transport=BridgeTransport(WA_BRIDGE_URL),
            state=state,
            auth_store=AuthStateStore(AUTH_STATE_DIR),
        )
        dispatcher = DownloadDispatcher(transport=supervisor, traffic=traffic)
        router = MessageRouter(transport=supervisor, dispatcher=dispatcher)
        supervisor.set_message_handler(router.handle_message)

        server = StatusServer(state=state, traffic=traffic, credentials=credentials)
        await server.start()

        final_status = await supervisor.run()
        logger.error(
            "Connection supervisor stopped with status %s; dashboard stays up until shutdown",
            final_status.value,
        )
        await shutdown_event.wait()
    except Exception:
        logging.getLogger(__name__).exception("Fatal startup/runtime error")
        sys.exit(1)
    finally:
        shutdown_event.set()
        if supervisor is not None:
            await supervisor.stop()
        if server is not None:
            await server.stop()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()

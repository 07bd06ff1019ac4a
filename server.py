"""
Status server: login-gated dashboard, connection/QR status and an SSE feed.
"""

import asyncio
import functools
import hashlib
import hmac
import io
import json
import logging
import os
import resource
import shutil
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import qrcode
from aiohttp import web

from config import (
    AUTH_COOKIE_MAX_AGE,
    AUTH_COOKIE_NAME,
    BOT_NAME,
    BOT_VERSION,
    FRONTEND_DIR,
    HOST,
    PORT,
    SSE_POLL_INTERVAL_SECONDS,
    TEMP_DIR,
    DashboardCredentials,
)
from state import ConnectionState, TrafficStats
from utils import format_duration, format_file_size

logger = logging.getLogger(__name__)

Handler = Callable[["StatusServer", web.Request], Awaitable[web.StreamResponse]]


def require_auth(handler: Handler) -> Handler:
    """Reject unauthenticated API calls with 401."""

    @functools.wraps(handler)
    async def wrapper(self: "StatusServer", request: web.Request) -> web.StreamResponse:
        if not self.is_authenticated(request):
            return web.json_response({"success": False, "message": "Unauthorized"}, status=401)
        return await handler(self, request)

    return wrapper


def system_snapshot(temp_dir: Path = TEMP_DIR) -> Dict[str, Any]:
    """Memory, CPU and disk figures for the current process."""
    usage = resource.getrusage(resource.RUSAGE_SELF)
    max_rss_bytes = usage.ru_maxrss * 1024
    load_average = os.getloadavg() if hasattr(os, "getloadavg") else (0.0, 0.0, 0.0)

    disk_path = temp_dir if Path(temp_dir).exists() else Path.cwd()
    total, _, free = shutil.disk_usage(disk_path)

    return {
        "memory": {"max_rss_bytes": max_rss_bytes, "max_rss": format_file_size(max_rss_bytes)},
        "cpu": {
            "user_seconds": round(usage.ru_utime, 3),
            "system_seconds": round(usage.ru_stime, 3),
            "load_average": [round(value, 2) for value in load_average],
            "count": os.cpu_count(),
        },
        "disk": {"free_bytes": free, "total_bytes": total, "free": format_file_size(free)},
    }


def render_qr_png(payload: str) -> bytes:
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=10, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer)
    return buffer.getvalue()


class StatusServer:
    """HTTP layer over ConnectionState and TrafficStats; holds no session store."""

    def __init__(
        self,
        state: ConnectionState,
        traffic: TrafficStats,
        credentials: DashboardCredentials,
        host: str = HOST,
        port: int = PORT,
        frontend_dir: Path = FRONTEND_DIR,
        poll_interval: float = SSE_POLL_INTERVAL_SECONDS,
        temp_dir: Path = TEMP_DIR,
    ):
        self.state = state
        self.traffic = traffic
        self.credentials = credentials
        self.host = host
        self.port = port
        self.frontend_dir = Path(frontend_dir)
        self.poll_interval = poll_interval
        self.temp_dir = Path(temp_dir)
        self._auth_token = self._make_auth_token(credentials)
        self._runner: Optional[web.AppRunner] = None

        self.app = web.Application()
        self._register_routes()

    def _register_routes(self) -> None:
        router = self.app.router
        router.add_get("/", self.handle_index)
        router.add_get("/dashboard", self.handle_dashboard)
        router.add_post("/api/login", self.handle_login)
        router.add_post("/api/logout", self.handle_logout)
        router.add_get("/api/status", self.handle_status)
        router.add_get("/api/qr", self.handle_qr)
        router.add_get("/api/qr/image", self.handle_qr_image)
        router.add_get("/api/events", self.handle_events)

    @staticmethod
    def _make_auth_token(credentials: DashboardCredentials) -> str:
        return hmac.new(
            credentials.password.encode("utf-8"),
            f"dashboard:{credentials.username}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def is_authenticated(self, request: web.Request) -> bool:
        token = request.cookies.get(AUTH_COOKIE_NAME, "")
        return hmac.compare_digest(token.encode("utf-8"), self._auth_token.encode("utf-8"))

    def check_credentials(self, username: str, password: str) -> bool:
        user_ok = hmac.compare_digest(username.encode("utf-8"), self.credentials.username.encode("utf-8"))
        pass_ok = hmac.compare_digest(password.encode("utf-8"), self.credentials.password.encode("utf-8"))
        return user_ok and pass_ok

    async def handle_index(self, request: web.Request) -> web.StreamResponse:
        if self.is_authenticated(request):
            raise web.HTTPFound("/dashboard")
        return web.FileResponse(self.frontend_dir / "login.html")

    async def handle_dashboard(self, request: web.Request) -> web.StreamResponse:
        if not self.is_authenticated(request):
            raise web.HTTPFound("/")
        return web.FileResponse(self.frontend_dir / "dashboard.html")

    async def handle_login(self, request: web.Request) -> web.Response:
        if request.content_type == "application/json":
            try:
                data = await request.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                return web.json_response({"success": False, "message": "Malformed JSON"}, status=400)
        else:
            data = await request.post()

        if not hasattr(data, "get"):
            return web.json_response({"success": False, "message": "Invalid request body"}, status=400)

        username = str(data.get("username") or "")
        password = str(data.get("password") or "")
        if not self.check_credentials(username, password):
            logger.warning("Failed dashboard login from %s", request.remote)
            return web.json_response(
                {"success": False, "message": "Invalid username or password"},
                status=401,
            )

        response = web.json_response({"success": True, "message": "Login successful"})
        response.set_cookie(
            AUTH_COOKIE_NAME,
            self._auth_token,
            max_age=AUTH_COOKIE_MAX_AGE,
            httponly=True,
            samesite="Lax",
        )
        logger.info("Dashboard login from %s", request.remote)
        return response

    async def handle_logout(self, request: web.Request) -> web.Response:
        response = web.json_response({"success": True, "message": "Logout successful"})
        response.del_cookie(AUTH_COOKIE_NAME)
        return response

    @require_auth
    async def handle_status(self, request: web.Request) -> web.Response:
        uptime = time.time() - self.state.started_at
        payload: Dict[str, Any] = {
            "status": "online",
            "bot": BOT_NAME,
            "version": BOT_VERSION,
            "port": self.port,
            "uptime_seconds": round(uptime, 1),
            "uptime": format_duration(uptime),
            "connection": self.state.snapshot().to_dict(),
            "traffic": self.traffic.to_dict(),
        }
        payload.update(system_snapshot(self.temp_dir))
        return web.json_response(payload)

    @require_auth
    async def handle_qr(self, request: web.Request) -> web.Response:
        snapshot = self.state.snapshot()
        return web.json_response({"status": snapshot.status.value, "qr": snapshot.qr})

    @require_auth
    async def handle_qr_image(self, request: web.Request) -> web.Response:
        qr = self.state.qr
        if not qr:
            return web.json_response({"success": False, "message": "No QR code available"}, status=404)
        return web.Response(
            body=render_qr_png(qr),
            content_type="image/png",
            headers={"Cache-Control": "no-store"},
        )

    @require_auth
    async def handle_events(self, request: web.Request) -> web.StreamResponse:
        response = web.StreamResponse(
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            }
        )
        await response.prepare(request)
        try:
            while True:
                payload = json.dumps(self.state.snapshot().to_dict())
                await response.write(f"data: {payload}\n\n".encode("utf-8"))
                await asyncio.sleep(self.poll_interval)
        except ConnectionResetError:
            logger.debug("SSE client disconnected")
        return response

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, host=self.host, port=self.port)
        await site.start()
        logger.info("Status server started on http://%s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

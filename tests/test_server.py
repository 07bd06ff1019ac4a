"""
Unit tests for the status server routes.
"""

import asyncio
import json

from aiohttp import test_utils

from config import AUTH_COOKIE_NAME, DashboardCredentials
from server import StatusServer
from state import ConnectionState, TrafficStats


def _make_server(tmp_path):
    state = ConnectionState()
    traffic = TrafficStats()
    server = StatusServer(
        state=state,
        traffic=traffic,
        credentials=DashboardCredentials(username="admin", password="s3cret"),
        port=9091,
        poll_interval=0.01,
        temp_dir=tmp_path,
    )
    return server, state, traffic


def _run(server, scenario):
    async def runner():
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            return await scenario(client)

    return asyncio.run(runner())


async def _login(client, username="admin", password="s3cret"):
    return await client.post("/api/login", json={"username": username, "password": password})


def test_api_requires_login(tmp_path):
    server, _, _ = _make_server(tmp_path)

    async def scenario(client):
        codes = []
        for path in ("/api/status", "/api/qr", "/api/qr/image", "/api/events"):
            response = await client.get(path)
            codes.append(response.status)
        response = await client.get("/api/status")
        return codes, await response.json()

    codes, body = _run(server, scenario)

    assert codes == [401, 401, 401, 401]
    assert body == {"success": False, "message": "Unauthorized"}


def test_forged_cookie_is_rejected(tmp_path):
    server, _, _ = _make_server(tmp_path)

    async def scenario(client):
        response = await client.get("/api/status", cookies={AUTH_COOKIE_NAME: "true"})
        return response.status

    assert _run(server, scenario) == 401


def test_login_with_wrong_password(tmp_path):
    server, _, _ = _make_server(tmp_path)

    async def scenario(client):
        response = await _login(client, password="wrong")
        return response.status, await response.json(), response.cookies

    status, body, cookies = _run(server, scenario)

    assert status == 401
    assert body["success"] is False
    assert AUTH_COOKIE_NAME not in cookies


def test_login_with_malformed_json(tmp_path):
    server, _, _ = _make_server(tmp_path)

    async def scenario(client):
        response = await client.post(
            "/api/login",
            data="{not json",
            headers={"Content-Type": "application/json"},
        )
        return response.status

    assert _run(server, scenario) == 400


def test_login_sets_http_only_cookie_and_unlocks_status(tmp_path):
    server, state, traffic = _make_server(tmp_path)
    traffic.record_outcome(True)

    async def scenario(client):
        login = await _login(client)
        cookie = login.cookies[AUTH_COOKIE_NAME]
        status = await client.get("/api/status")
        return login.status, await login.json(), cookie, status.status, await status.json()

    login_status, login_body, cookie, status_code, body = _run(server, scenario)

    assert login_status == 200
    assert login_body == {"success": True, "message": "Login successful"}
    assert cookie.value != "true"
    assert cookie["httponly"]
    assert status_code == 200
    assert body["status"] == "online"
    assert body["port"] == 9091
    assert body["connection"]["status"] == "connecting"
    assert body["traffic"]["downloads_completed"] == 1
    assert set(body) >= {"uptime_seconds", "uptime", "memory", "cpu", "disk", "version"}


def test_form_login_is_accepted(tmp_path):
    server, _, _ = _make_server(tmp_path)

    async def scenario(client):
        response = await client.post("/api/login", data={"username": "admin", "password": "s3cret"})
        return response.status

    assert _run(server, scenario) == 200


def test_logout_clears_cookie(tmp_path):
    server, _, _ = _make_server(tmp_path)

    async def scenario(client):
        await _login(client)
        logout = await client.post("/api/logout")
        status = await client.get("/api/status")
        return logout.status, status.status

    assert _run(server, scenario) == (200, 401)


def test_qr_routes(tmp_path):
    server, state, _ = _make_server(tmp_path)

    async def scenario(client):
        await _login(client)
        empty_json = await (await client.get("/api/qr")).json()
        missing = await client.get("/api/qr/image")

        state.mark_qr("2@qr-payload")
        qr_json = await (await client.get("/api/qr")).json()
        image = await client.get("/api/qr/image")
        return empty_json, missing.status, qr_json, image.status, image.content_type, await image.read()

    empty_json, missing_status, qr_json, image_status, content_type, png = _run(server, scenario)

    assert empty_json == {"status": "connecting", "qr": None}
    assert missing_status == 404
    assert qr_json == {"status": "qr-ready", "qr": "2@qr-payload"}
    assert image_status == 200
    assert content_type == "image/png"
    assert png.startswith(b"\x89PNG")


async def _read_frames(response, count):
    frames = []
    while len(frames) < count:
        line = await response.content.readline()
        assert line, "event stream closed early"
        if line.startswith(b"data: "):
            frames.append(json.loads(line[len(b"data: "):]))
    return frames


def test_events_stream_pushes_snapshots_until_disconnect(tmp_path):
    server, state, _ = _make_server(tmp_path)
    state.mark_qr("qr-payload")

    async def scenario(client):
        await _login(client)
        response = await client.get("/api/events")
        content_type = response.headers["Content-Type"]
        first = await asyncio.wait_for(_read_frames(response, 1), timeout=5)

        state.mark_connected()
        frames = first
        while frames[-1]["status"] != "connected":
            frames += await asyncio.wait_for(_read_frames(response, 1), timeout=5)
        response.close()

        status = await client.get("/api/status")
        return content_type, frames, status.status

    content_type, frames, status_after_disconnect = _run(server, scenario)

    assert content_type.startswith("text/event-stream")
    assert len(frames) >= 2
    assert frames[0]["status"] == "qr-ready"
    assert frames[0]["qr"] == "qr-payload"
    assert frames[-1]["status"] == "connected"
    assert frames[-1]["qr"] is None
    assert status_after_disconnect == 200


def test_pages_redirect_by_login_state(tmp_path):
    server, _, _ = _make_server(tmp_path)

    async def scenario(client):
        dashboard = await client.get("/dashboard", allow_redirects=False)
        index = await client.get("/")
        await _login(client)
        index_logged_in = await client.get("/", allow_redirects=False)
        return dashboard.status, dashboard.headers["Location"], index.status, index_logged_in.headers["Location"]

    assert _run(server, scenario) == (302, "/", 200, "/dashboard")


def test_login_with_non_utf8_body(tmp_path):
    server, _, _ = _make_server(tmp_path)

    async def scenario(client):
        response = await client.post(
            "/api/login",
            data=b"\xff\xfe{\"username\": 1}",
            headers={"Content-Type": "application/json"},
        )
        return response.status, await response.json()

    status, body = _run(server, scenario)

    assert status == 400
    assert body["success"] is False

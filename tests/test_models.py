"""
Unit tests for data models and shared state.
"""

from models import ConnectionSnapshot, ConnectionStatus, DownloadResult, MediaType, Platform
from state import ConnectionState, TrafficStats


def test_platform_enum_values():
    assert Platform.TIKTOK.value == "tiktok"
    assert Platform.YOUTUBE_MP3.value == "youtube_mp3"
    assert Platform.TWITTER.display_name == "Twitter/X"
    assert Platform.YOUTUBE_MP3.display_name == "YouTube MP3"


def test_platform_url_pattern_key():
    assert Platform.YOUTUBE_MP3.url_pattern_key == "youtube"
    assert Platform.INSTAGRAM.url_pattern_key == "instagram"


def test_connection_status_values():
    assert ConnectionStatus.QR_READY.value == "qr-ready"
    assert ConnectionStatus.NEEDS_SCAN.value == "needs-scan"


def test_download_result_defaults():
    result = DownloadResult(
        success=True,
        media_type=MediaType.VIDEO,
        platform=Platform.TIKTOK,
        filename="tiktok_1.mp4",
    )
    assert result.source_url is None
    assert result.local_path is None


def test_snapshot_to_dict():
    snapshot = ConnectionSnapshot(status=ConnectionStatus.QR_READY, qr="abc", updated_at=1.0)
    assert snapshot.to_dict() == {
        "status": "qr-ready",
        "qr": "abc",
        "updated_at": 1.0,
        "last_disconnect_code": None,
        "reconnect_attempts": 0,
    }


def test_connection_state_transitions():
    state = ConnectionState()
    assert state.status is ConnectionStatus.CONNECTING
    assert state.qr is None

    state.mark_qr("qr-payload")
    assert state.status is ConnectionStatus.QR_READY
    assert state.qr == "qr-payload"

    state.mark_connected()
    assert state.status is ConnectionStatus.CONNECTED
    assert state.qr is None

    state.mark_disconnected(428, attempts=2)
    snapshot = state.snapshot()
    assert snapshot.status is ConnectionStatus.DISCONNECTED
    assert snapshot.last_disconnect_code == 428
    assert snapshot.reconnect_attempts == 2

    state.mark_connected()
    assert state.snapshot().reconnect_attempts == 0


def test_needs_scan_clears_qr():
    state = ConnectionState()
    state.mark_qr("qr-payload")
    state.mark_needs_scan(401)

    assert state.status is ConnectionStatus.NEEDS_SCAN
    assert state.qr is None
    assert state.snapshot().last_disconnect_code == 401


def test_snapshot_is_immutable_view():
    state = ConnectionState()
    before = state.snapshot()
    state.mark_qr("qr-payload")

    assert before.status is ConnectionStatus.CONNECTING
    assert before.qr is None


def test_traffic_stats():
    traffic = TrafficStats()
    traffic.record_download(100)
    traffic.record_download(-5)
    traffic.record_sent(40)
    traffic.record_outcome(True)
    traffic.record_outcome(False)

    assert traffic.to_dict() == {
        "bytes_downloaded": 100,
        "bytes_sent": 40,
        "downloads_completed": 1,
        "downloads_failed": 1,
    }

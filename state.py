"""
Process-wide state shared between the connection supervisor, the download
dispatcher and the status server.

Each object has exactly one writer; everything else reads via snapshots.
"""

import time
from dataclasses import asdict, dataclass, replace
from typing import Optional

from models import ConnectionSnapshot, ConnectionStatus


class ConnectionState:
    """Connection status and pending QR payload, written by the supervisor only."""

    def __init__(self) -> None:
        self.started_at = time.time()
        self._snapshot = ConnectionSnapshot(
            status=ConnectionStatus.CONNECTING,
            qr=None,
            updated_at=self.started_at,
        )

    def snapshot(self) -> ConnectionSnapshot:
        return self._snapshot

    @property
    def status(self) -> ConnectionStatus:
        return self._snapshot.status

    @property
    def qr(self) -> Optional[str]:
        return self._snapshot.qr

    def mark_connecting(self) -> None:
        self._update(status=ConnectionStatus.CONNECTING)

    def mark_qr(self, qr: str) -> None:
        self._update(status=ConnectionStatus.QR_READY, qr=qr)

    def mark_connected(self) -> None:
        self._update(status=ConnectionStatus.CONNECTED, qr=None, reconnect_attempts=0)

    def mark_disconnected(self, code: Optional[int] = None, attempts: int = 0) -> None:
        self._update(
            status=ConnectionStatus.DISCONNECTED,
            last_disconnect_code=code,
            reconnect_attempts=attempts,
        )

    def mark_needs_scan(self, code: Optional[int] = None) -> None:
        self._update(status=ConnectionStatus.NEEDS_SCAN, qr=None, last_disconnect_code=code)

    def _update(self, **changes) -> None:
        self._snapshot = replace(self._snapshot, updated_at=time.time(), **changes)


@dataclass
class TrafficStats:
    """Cumulative download counters, written by the download dispatcher only."""

    bytes_downloaded: int = 0
    bytes_sent: int = 0
    downloads_completed: int = 0
    downloads_failed: int = 0

    def record_download(self, size: int) -> None:
        self.bytes_downloaded += max(0, size)

    def record_sent(self, size: int) -> None:
        self.bytes_sent += max(0, size)

    def record_outcome(self, success: bool) -> None:
        if success:
            self.downloads_completed += 1
        else:
            self.downloads_failed += 1

    def to_dict(self) -> dict:
        return asdict(self)

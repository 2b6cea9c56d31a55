"""処理中タスク・処理済みリクエスト・拒否リクエストの台帳.

観測用の記録であり、タスクの結果判定には使わない。
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timezone

from amz_worker.config import LEDGER_HISTORY_LIMIT
from amz_worker.models import RejectedRequest


class RequestLedger:
    """1つのロックで3つの列を保護する台帳."""

    def __init__(self, history_limit: int = LEDGER_HISTORY_LIMIT):
        self._lock = threading.Lock()
        self._started: deque[str] = deque()
        self._handled: deque[str] = deque(maxlen=history_limit)
        self._rejected: deque[RejectedRequest] = deque(maxlen=history_limit)

    def mark_started(self, key: str) -> None:
        with self._lock:
            self._started.append(key)

    def mark_handled(self, key: str) -> None:
        with self._lock:
            self._handled.append(key)

    def mark_rejected(self, url: str, status_code: int, headers=None) -> RejectedRequest:
        """拒否されたレスポンスのスナップショットを記録する."""
        record = RejectedRequest(
            url=url,
            status_code=status_code,
            headers=dict(headers or {}),
            recorded_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._rejected.append(record)
        return record

    def pop_oldest_started(self) -> str | None:
        """処理中の先頭（最も古い）エントリを取り除く."""
        with self._lock:
            if self._started:
                return self._started.popleft()
            return None

    def finish(self, key: str) -> bool:
        """呼び出し元自身の処理中エントリを取り除く.

        Returns:
            取り除けたら True
        """
        with self._lock:
            try:
                self._started.remove(key)
            except ValueError:
                return False
            return True

    @property
    def started(self) -> list[str]:
        with self._lock:
            return list(self._started)

    @property
    def handled(self) -> list[str]:
        with self._lock:
            return list(self._handled)

    @property
    def rejected(self) -> list[RejectedRequest]:
        with self._lock:
            return list(self._rejected)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "started": list(self._started),
                "handled": list(self._handled),
                "rejected": list(self._rejected),
            }


# プロセス共通の台帳
ledger = RequestLedger()

"""永続ストアの可用性監視ラッパー"""

from __future__ import annotations

import threading
from typing import Any, Callable, Mapping, TypeVar

import structlog

from .kinds import DataKind
from .repeating_task import RepeatingTask
from .sorter import sort_all_collections
from .status import DataStoreStatus, DataStoreStatusProvider

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 0.5


class StoreAvailabilityWrapper:
    """永続ストアの全操作を中継し、例外を可用性ステータスの遷移に変換する。

    監視対象の操作が例外を送出すると unavailable に遷移し、復旧確認用の
    ポーラーを起動したうえで元の例外をそのまま再送出する。ポーラーの
    is_available() が True を返すか、操作が成功すると available に戻る。
    遷移ごとにステータスを 1 回だけ通知する。

    _lock は (_last_available, _poller) の組だけを保護し、ストア呼び出し中には
    保持しない。
    """

    def __init__(
        self,
        store: Any,
        status_provider: DataStoreStatusProvider,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.store = store
        self._status_provider = status_provider
        self._poll_interval = poll_interval
        self._monitoring_enabled = self.is_monitoring_enabled()

        self._lock = threading.Lock()
        self._last_available = True
        self._poller: RepeatingTask | None = None
        # 新しいポーラーを作るたびに進める。古いポーラーの結果は無視する。
        self._poller_token = 0

    def init(self, all_data: Mapping[DataKind, Mapping[str, Any]]) -> None:
        self._call(lambda: self.store.init(sort_all_collections(all_data)))

    def get(self, kind: DataKind, key: str) -> Any:
        return self._call(lambda: self.store.get(kind, key))

    def all(self, kind: DataKind) -> dict[str, Any]:
        return self._call(lambda: self.store.all(kind))

    def delete(self, kind: DataKind, key: str, version: int) -> None:
        self._call(lambda: self.store.delete(kind, key, version))

    def upsert(self, kind: DataKind, item: Any) -> None:
        self._call(lambda: self.store.upsert(kind, item))

    @property
    def initialized(self) -> bool:
        return self._call(lambda: bool(self.store.initialized))

    @property
    def available(self) -> bool:
        """直近に判定した可用性。"""
        with self._lock:
            return self._last_available

    def is_available(self) -> bool:
        return bool(self.store.is_available())

    def is_monitoring_enabled(self) -> bool:
        """ラップしたストアが監視に対応しているか。

        is_monitoring_enabled() が True を返し、かつ復旧判定に使う
        is_available() を持つ場合に限る。
        """
        if not hasattr(self.store, "is_available"):
            return False
        fn = getattr(self.store, "is_monitoring_enabled", None)
        if not callable(fn):
            return False
        return bool(fn())

    def close(self) -> None:
        """ポーラーを止め、ストアが close() を持っていれば呼ぶ。"""
        with self._lock:
            poller, self._poller = self._poller, None
            self._poller_token += 1
        if poller is not None:
            poller.stop()
        close = getattr(self.store, "close", None)
        if callable(close):
            close()

    def _call(self, fn: Callable[[], T]) -> T:
        try:
            result = fn()
        except Exception:
            if self._monitoring_enabled:
                self._update_availability(False)
            raise
        if self._monitoring_enabled:
            self._update_availability(True)
        return result

    def _update_availability(self, available: bool) -> None:
        poller: RepeatingTask | None
        with self._lock:
            if available == self._last_available:
                return
            self._last_available = available
            if available:
                poller, self._poller = self._poller, None
            else:
                self._poller_token += 1
                token = self._poller_token
                poller = RepeatingTask(
                    "flagstore.check-availability",
                    self._poll_interval,
                    0,
                    lambda: self._check_availability(token),
                )
                self._poller = poller

        if available:
            logger.warning("Persistent store is available again")
            self._status_provider.update_status(DataStoreStatus(True, True))
            if poller is not None:
                poller.stop()
            return

        logger.warning(
            "Detected persistent store unavailability; updates will be cached until it recovers"
        )
        self._status_provider.update_status(DataStoreStatus(False, True))
        if poller is not None:
            poller.start()

    def _check_availability(self, token: int) -> None:
        try:
            if not self.store.is_available():
                return
        except Exception as e:
            logger.error("unexpected error from data store status function", error=str(e))
            return
        with self._lock:
            if token != self._poller_token:
                return
        self._update_availability(True)

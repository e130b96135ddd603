"""リスナー登録と通知"""

from __future__ import annotations

import threading
from typing import Any, Callable

import structlog

logger = structlog.get_logger(__name__)

Listener = Callable[[Any], None]


class Listeners:
    """スレッドセーフなリスナー集合。

    通知は呼び出し元スレッドで同期的に行う。あるリスナーが例外を送出しても
    ログに記録して残りのリスナーへの通知を続ける。
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def has_listeners(self) -> bool:
        with self._lock:
            return len(self._listeners) > 0

    def add(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove(self, listener: Listener) -> None:
        """リスナーを削除する。未登録なら何もしない。"""
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def notify(self, value: Any) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(value)
            except Exception as e:
                logger.error("unexpected error in listener", error=str(e), exc_info=True)

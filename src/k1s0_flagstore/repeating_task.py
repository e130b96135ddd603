"""一定間隔で処理を繰り返すバックグラウンドタスク"""

from __future__ import annotations

import threading
import time
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)


class RepeatingTask:
    """デーモンスレッドで task を interval 秒ごとに実行する。

    task の例外はログに記録して実行を続ける。stop() は冪等で、タスク自身の
    スレッドから呼んでもよい。
    """

    def __init__(
        self,
        name: str,
        interval: float,
        initial_delay: float,
        task: Callable[[], None],
    ) -> None:
        self._name = name
        self._interval = interval
        self._initial_delay = initial_delay
        self._task = task
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join()

    def _run(self) -> None:
        if self._initial_delay > 0 and self._stop.wait(self._initial_delay):
            return
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                self._task()
            except Exception as e:
                logger.error("uncaught exception from repeating task", task=self._name, error=str(e))
            remaining = self._interval - (time.monotonic() - started)
            if remaining > 0 and self._stop.wait(remaining):
                return

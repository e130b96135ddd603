"""データストア・データソースのステータス管理"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

from .listeners import Listeners

S = TypeVar("S")


class StatusProvider(Generic[S]):
    """最新ステータスを保持し、変化したときだけリスナーへ通知する。

    ステータスは不変の値として扱う。比較は == （dataclass ならフィールド単位）。
    """

    def __init__(self, initial: S, listeners: Listeners | None = None) -> None:
        self._status = initial
        self._listeners = listeners if listeners is not None else Listeners()
        self._lock = threading.Lock()

    @property
    def status(self) -> S:
        with self._lock:
            return self._status

    @property
    def listeners(self) -> Listeners:
        return self._listeners

    def update_status(self, new_status: S) -> None:
        if new_status is None:
            return
        with self._lock:
            old_status, self._status = self._status, new_status
        if old_status != new_status:
            self._listeners.notify(new_status)

    def add_listener(self, listener: Callable[[S], None]) -> None:
        self._listeners.add(listener)

    def remove_listener(self, listener: Callable[[S], None]) -> None:
        self._listeners.remove(listener)


@dataclass(frozen=True)
class DataStoreStatus:
    """永続ストアの状態。

    stale が True のとき、ストアの内容が最新でない可能性がある（停止中の更新を
    取りこぼした直後など）。
    """

    available: bool
    stale: bool


class DataStoreStatusProvider(StatusProvider[DataStoreStatus]):
    """永続ストアのステータスプロバイダー。"""

    def __init__(self, store: Any = None, listeners: Listeners | None = None) -> None:
        super().__init__(DataStoreStatus(True, False), listeners)
        self._store = store

    def set_store(self, store: Any) -> None:
        self._store = store

    def is_monitoring_enabled(self) -> bool:
        """ストアが可用性監視に対応していれば True。"""
        fn = getattr(self._store, "is_monitoring_enabled", None)
        if not callable(fn):
            return False
        return bool(fn())


class DataSourceState(str, Enum):
    """データソースの接続状態。"""

    INITIALIZING = "INITIALIZING"
    VALID = "VALID"
    INTERRUPTED = "INTERRUPTED"
    OFF = "OFF"


class DataSourceErrorKind(str, Enum):
    UNKNOWN = "UNKNOWN"
    NETWORK_ERROR = "NETWORK_ERROR"
    ERROR_RESPONSE = "ERROR_RESPONSE"
    INVALID_DATA = "INVALID_DATA"
    STORE_ERROR = "STORE_ERROR"


@dataclass(frozen=True)
class DataSourceErrorInfo:
    """データソースの直近のエラー。status_code は ERROR_RESPONSE のときのみ意味を持つ。"""

    kind: DataSourceErrorKind
    status_code: int = 0
    message: str = ""
    time: float = field(default_factory=time.time)


@dataclass(frozen=True)
class DataSourceStatus:
    state: DataSourceState
    since: float
    error: DataSourceErrorInfo | None = None


class DataSourceStatusProvider(StatusProvider[DataSourceStatus]):
    """データソースのステータスプロバイダー。

    update_state() は次の規則で状態を遷移させる。

    - INITIALIZING 中の INTERRUPTED は INITIALIZING のまま
    - 一度ほかの状態になったら INITIALIZING には戻らない
    - 同じ状態でエラーもなければ通知しない
    - エラー未指定なら直前のエラーを引き継ぎ、状態が変わったときだけ since を更新する
    """

    def __init__(self, listeners: Listeners | None = None) -> None:
        super().__init__(
            DataSourceStatus(DataSourceState.INITIALIZING, time.time()), listeners
        )

    def update_state(
        self, new_state: DataSourceState, new_error: DataSourceErrorInfo | None = None
    ) -> None:
        with self._lock:
            old = self._status
            if (
                new_state is DataSourceState.INTERRUPTED
                and old.state is DataSourceState.INITIALIZING
            ):
                new_state = DataSourceState.INITIALIZING
            if new_state is DataSourceState.INITIALIZING:
                new_state = old.state

            if new_state is old.state and new_error is None:
                return

            self._status = DataSourceStatus(
                state=new_state,
                since=old.since if new_state is old.state else time.time(),
                error=new_error if new_error is not None else old.error,
            )
            to_broadcast = self._status
        self._listeners.notify(to_broadcast)

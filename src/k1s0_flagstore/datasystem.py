"""データソースとストアを結びつけるデータシステム"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

import structlog

from .caching import CachingStoreWrapper
from .config import DataStoreMode, DataSystemConfig, parse_config
from .flag_tracker import FlagTracker
from .interfaces import Initializer, Synchronizer
from .listeners import Listeners
from .status import (
    DataSourceErrorInfo,
    DataSourceErrorKind,
    DataSourceState,
    DataSourceStatusProvider,
    DataStoreStatus,
    DataStoreStatusProvider,
)
from .store import Store
from .wrapper import StoreAvailabilityWrapper

logger = structlog.get_logger(__name__)

THREAD_JOIN_TIMEOUT = 5.0


class DataAvailability(str, Enum):
    """評価に使えるデータの鮮度。"""

    DEFAULTS = "defaults"
    CACHED = "cached"
    REFRESHED = "refreshed"


class DataSystem:
    """Initializer で初期データを得て、Synchronizer で最新状態を保つ。

    Initializer は成功するまで順に試す。Synchronizer は先頭から使い、OFF に
    なるか例外が出たら次へ移る。残りがなくなるとデータソースは OFF になる。

    persistent_store には FeatureStore か PersistentStoreCore を渡せる。
    PersistentStoreCore（get_internal を持つもの）は CachingStoreWrapper で包む。
    """

    def __init__(
        self,
        config: DataSystemConfig | Mapping[str, Any] | None = None,
        initializers: Sequence[Initializer] = (),
        synchronizers: Sequence[Synchronizer] = (),
        persistent_store: Any = None,
    ) -> None:
        self._config = parse_config(config)
        self._initializers = list(initializers)
        self._synchronizers = list(synchronizers)

        self._flag_change_listeners = Listeners()
        self._change_set_listeners = Listeners()
        self._data_store_listeners = Listeners()
        self._data_store_listeners.add(self._persistent_store_outage_recovery)

        self._store = Store(self._flag_change_listeners, self._change_set_listeners)
        self._data_source_status_provider = DataSourceStatusProvider()
        self._data_store_status_provider = DataStoreStatusProvider(None, self._data_store_listeners)
        self._wrapper: StoreAvailabilityWrapper | None = None

        if persistent_store is not None:
            persistence = self._config.persistence
            if hasattr(persistent_store, "get_internal"):
                persistent_store = CachingStoreWrapper(
                    persistent_store,
                    ttl=persistence.cache_ttl,
                    capacity=persistence.cache_capacity,
                )
            self._wrapper = StoreAvailabilityWrapper(
                persistent_store,
                self._data_store_status_provider,
                poll_interval=persistence.availability_poll_interval,
            )
            self._data_store_status_provider.set_store(self._wrapper)
            self._store.with_persistence(
                self._wrapper,
                persistence.mode is DataStoreMode.READ_WRITE,
                self._data_store_status_provider,
            )

        self._flag_tracker = FlagTracker(self._flag_change_listeners, lambda key, context: None)

        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._active_synchronizer: Synchronizer | None = None
        self._threads: list[threading.Thread] = []
        self._configured_with_data_sources = bool(self._initializers or self._synchronizers)

    def start(self, ready: threading.Event) -> None:
        """バックグラウンドで開始する。初期データが揃うか失敗したら ready をセットする。"""
        if self._config.offline:
            logger.warning("data system is offline; evaluations will use default values")
            ready.set()
            return

        self._stop_event.clear()
        thread = threading.Thread(
            target=self._run_main_loop, args=(ready,), name="flagstore-datasystem", daemon=True
        )
        thread.start()
        self._threads.append(thread)

    def stop(self) -> None:
        """稼働中の Synchronizer を止め、スレッドを待ち合わせてストアを閉じる。"""
        self._stop_event.set()
        with self._lock:
            active = self._active_synchronizer
        if active is not None:
            try:
                active.stop()
            except Exception as e:
                logger.error("error stopping active data source", error=str(e))

        for thread in self._threads:
            if thread.is_alive():
                thread.join(timeout=THREAD_JOIN_TIMEOUT)
                if thread.is_alive():
                    logger.warning("thread did not terminate in time", thread=thread.name)
        self._threads.clear()

        err = self._store.close()
        if err is not None:
            logger.error("failed to close data store", error=str(err))

    @property
    def config(self) -> DataSystemConfig:
        return self._config

    @property
    def store(self) -> Any:
        """評価に使う現在のストア。"""
        return self._store.get_active_store()

    @property
    def selector_store(self) -> Store:
        return self._store

    @property
    def flag_tracker(self) -> FlagTracker:
        return self._flag_tracker

    @property
    def data_source_status_provider(self) -> DataSourceStatusProvider:
        return self._data_source_status_provider

    @property
    def data_store_status_provider(self) -> DataStoreStatusProvider:
        return self._data_store_status_provider

    @property
    def change_set_listeners(self) -> Listeners:
        return self._change_set_listeners

    def set_flag_value_eval_fn(self, eval_fn: Callable[[str, Any], Any]) -> None:
        """FlagTracker が値の変化判定に使う評価関数を設定する。"""
        self._flag_tracker.set_eval_fn(eval_fn)

    @property
    def data_availability(self) -> DataAvailability:
        if self._store.selector().is_defined():
            return DataAvailability.REFRESHED
        if not self._configured_with_data_sources or self._store.is_initialized():
            return DataAvailability.CACHED
        return DataAvailability.DEFAULTS

    @property
    def target_availability(self) -> DataAvailability:
        if self._configured_with_data_sources:
            return DataAvailability.REFRESHED
        return DataAvailability.CACHED

    def _run_main_loop(self, ready: threading.Event) -> None:
        try:
            self._data_source_status_provider.update_state(DataSourceState.INITIALIZING)
            self._run_initializers(ready)
            self._run_synchronizers(ready)
        except Exception as e:
            logger.error("error in data system main loop", error=str(e), exc_info=True)
        finally:
            ready.set()

    def _run_initializers(self, ready: threading.Event) -> None:
        for initializer in self._initializers:
            if self._stop_event.is_set():
                return
            try:
                logger.info("attempting to initialize", source=initializer.name)
                result = initializer.fetch(self._store)
                if not result.is_success or result.value is None:
                    logger.warning("initializer failed", source=initializer.name, error=result.error)
                    continue
                basis = result.value
                self._store.apply(basis.change_set, basis.persist)
                logger.info("initialized", source=initializer.name)
                ready.set()
                return
            except Exception as e:
                logger.error("initializer failed with exception", source=initializer.name, error=str(e))

    def _run_synchronizers(self, ready: threading.Event) -> None:
        if not self._synchronizers:
            ready.set()
            return

        for synchronizer in self._synchronizers:
            if self._stop_event.is_set():
                return
            with self._lock:
                self._active_synchronizer = synchronizer
            logger.info("synchronizer is starting", source=synchronizer.name)
            try:
                self._consume_synchronizer_results(synchronizer, ready)
            finally:
                with self._lock:
                    self._active_synchronizer = None

        if not self._stop_event.is_set():
            logger.warning("no more synchronizers available")
            self._data_source_status_provider.update_state(DataSourceState.OFF)

    def _consume_synchronizer_results(
        self, synchronizer: Synchronizer, ready: threading.Event
    ) -> None:
        try:
            for update in synchronizer.sync(self._store):
                if self._stop_event.is_set():
                    return
                if update.change_set is not None:
                    self._store.apply(update.change_set, True)
                if update.state is DataSourceState.VALID:
                    ready.set()
                self._data_source_status_provider.update_state(update.state, update.error)
                if update.state is DataSourceState.OFF:
                    return
        except Exception as e:
            logger.error("error consuming synchronizer results", source=synchronizer.name, error=str(e))
            self._data_source_status_provider.update_state(
                DataSourceState.INTERRUPTED,
                DataSourceErrorInfo(DataSourceErrorKind.UNKNOWN, 0, str(e)),
            )
        finally:
            synchronizer.stop()

    def _persistent_store_outage_recovery(self, status: DataStoreStatus) -> None:
        """永続ストアが復旧したら、取りこぼした可能性のある更新を書き戻す。"""
        if not status.available or not status.stale:
            return
        err = self._store.commit()
        if err is not None:
            logger.error("failed to reinitialize data store", error=str(err))

"""メモリ/永続の 2 モードを持つストア本体

評価エンジンの読み取りは get_active_store() が返すストアに対して行う。永続ストアが
設定されていればデータ到着までは永続ストアを直接読み、メモリストアにデータが
入った時点でメモリストアに切り替える。
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Iterable

import structlog

from .changeset import Change, ChangeSet, ChangeType, IntentCode, Selector
from .dependency_tracker import DependencyTracker
from .flag_tracker import FlagChange
from .kinds import ALL_KINDS, DataKind, KindAndKey
from .listeners import Listeners
from .memory import InMemoryFeatureStore
from .models import make_tombstone
from .rwlock import ReadWriteLock
from .serialization import StoreItem
from .status import DataStoreStatusProvider

logger = structlog.get_logger(__name__)

# 受信したままの raw data（dict・JSON 文字列）。デコードはメモリストアが行う。
RawCollections = dict[DataKind, dict[str, Any]]
Collections = dict[DataKind, dict[str, StoreItem]]


class ActiveStore(str, Enum):
    MEMORY = "memory"
    PERSISTENT = "persistent"


class Store:
    """変更セットを適用し、フラグ変更を通知するストア。

    apply() はメモリストアの更新、依存グラフの更新、永続ストアへの書き込み、
    リスナー通知の順に、すべて書き込みロックを保持したまま行う。フラグ変更
    リスナーはこのロックの内側で同期的に呼ばれる。ロックは同一スレッドからの
    再入を許すので、リスナーからストアを読んだり commit() を呼んだりできる。
    """

    def __init__(
        self,
        flag_change_listeners: Listeners | None = None,
        change_set_listeners: Listeners | None = None,
    ) -> None:
        self._persistent_store: Any = None
        self._persistent_store_status_provider: DataStoreStatusProvider | None = None
        self._persistent_store_writable = False

        self._memory_store = InMemoryFeatureStore()
        self._dependency_tracker = DependencyTracker()

        self._flag_change_listeners = flag_change_listeners or Listeners()
        self._change_set_listeners = change_set_listeners or Listeners()

        # 現在のデータを永続ストアへ書き込んでよいか
        self._persist = False
        self._active = ActiveStore.MEMORY
        self._selector = Selector.no_selector()
        self._lock = ReadWriteLock()

    @property
    def flag_change_listeners(self) -> Listeners:
        return self._flag_change_listeners

    @property
    def change_set_listeners(self) -> Listeners:
        return self._change_set_listeners

    def with_persistence(
        self,
        persistent_store: Any,
        writable: bool,
        status_provider: DataStoreStatusProvider | None = None,
    ) -> Store:
        """永続ストアを設定する。メモリストアにデータが入るまでは永続ストアを読む。"""
        with self._lock.write():
            self._persistent_store = persistent_store
            self._persistent_store_writable = writable
            self._persistent_store_status_provider = status_provider
            if not self._memory_store.initialized:
                self._active = ActiveStore.PERSISTENT
        return self

    def selector(self) -> Selector:
        with self._lock.read():
            return self._selector

    def close(self) -> Exception | None:
        """永続ストアを閉じる。失敗した場合は例外を返す。"""
        with self._lock.read():
            store = self._persistent_store
        if store is None:
            return None
        close = getattr(store, "close", None)
        if not callable(close):
            return None
        try:
            close()
        except Exception as e:
            return e
        return None

    def apply(self, change_set: ChangeSet, persist: bool) -> None:
        """変更セットを適用する。

        失敗してもログに記録するだけで例外は送出しない。それまでに適用済みの
        状態は壊れない。
        """
        if change_set.intent_code is IntentCode.TRANSFER_NONE:
            return

        with self._lock.write():
            try:
                collections = self._changes_to_store_data(change_set.changes)
                if change_set.intent_code is IntentCode.TRANSFER_FULL:
                    ok = self._set_basis(collections, change_set.selector, persist)
                else:
                    ok = self._apply_delta(collections, change_set.selector, persist)
            except Exception as e:
                logger.error(
                    "couldn't apply changeset",
                    intent=change_set.intent_code.value,
                    error=str(e),
                    exc_info=True,
                )
                return

        if ok:
            self._change_set_listeners.notify(change_set)

    def commit(self) -> Exception | None:
        """メモリストアの全内容を永続ストアへ書き込む。失敗した場合は例外を返す。"""
        with self._lock.write():
            if not self._should_persist():
                return None
            try:
                all_data = {kind: self._memory_store.snapshot(kind) for kind in ALL_KINDS}
                self._persistent_store.init(all_data)
            except Exception as e:
                return e
        return None

    def get_active_store(self) -> Any:
        with self._lock.read():
            if self._active is ActiveStore.PERSISTENT and self._persistent_store is not None:
                return self._persistent_store
            return self._memory_store

    @property
    def active(self) -> ActiveStore:
        with self._lock.read():
            return self._active

    def is_initialized(self) -> bool:
        return bool(self.get_active_store().initialized)

    def get_data_store_status_provider(self) -> DataStoreStatusProvider | None:
        with self._lock.read():
            return self._persistent_store_status_provider

    def _set_basis(self, collections: RawCollections, selector: Selector, persist: bool) -> bool:
        old_data: Collections | None = None
        if self._flag_change_listeners.has_listeners():
            old_data = {kind: self._memory_store.all(kind) for kind in ALL_KINDS}

        if not self._memory_store.set_basis(collections):
            return False
        applied = {kind: self._memory_store.snapshot(kind) for kind in ALL_KINDS}

        self._reset_dependency_tracker(applied)
        self._persist = persist
        self._selector = selector
        self._active = ActiveStore.MEMORY

        if self._should_persist():
            self._persist_safely(lambda: self._persistent_store.init(applied))

        if old_data is not None:
            self._send_change_events(
                self._compute_changed_items_for_full_data_set(old_data, applied)
            )
        return True

    def _apply_delta(
        self, collections: RawCollections, selector: Selector, persist: bool
    ) -> bool:
        if not self._memory_store.apply_delta(collections):
            return False
        applied = self._applied_items(collections)

        has_listeners = self._flag_change_listeners.has_listeners()
        affected: set[KindAndKey] = set()
        for kind, items in applied.items():
            for key, item in items.items():
                self._dependency_tracker.update_dependencies_from(kind, key, item)
                if has_listeners:
                    self._dependency_tracker.add_affected_items(affected, KindAndKey(kind, key))

        self._persist = persist
        self._selector = selector

        if self._should_persist():
            for kind, items in applied.items():
                for item in items.values():
                    self._persist_safely(
                        lambda kind=kind, item=item: self._persistent_store.upsert(kind, item)
                    )

        self._send_change_events(affected)
        return True

    def _should_persist(self) -> bool:
        return (
            self._persist
            and self._persistent_store is not None
            and self._persistent_store_writable
        )

    def _persist_safely(self, fn: Callable[[], None]) -> None:
        # 永続ストアの失敗はメモリストアへの適用を取り消さない
        try:
            fn()
        except Exception as e:
            logger.error("failed to write to persistent store", error=str(e))

    @staticmethod
    def _changes_to_store_data(changes: Iterable[Change]) -> RawCollections:
        all_data: RawCollections = {kind: {} for kind in ALL_KINDS}
        for change in changes:
            kind = DataKind.for_object_kind(change.kind)
            if change.action is ChangeType.PUT and change.object is not None:
                all_data[kind][change.key] = change.object
            elif change.action is ChangeType.DELETE:
                all_data[kind][change.key] = make_tombstone(change.key, change.version)
        return all_data

    def _applied_items(self, collections: RawCollections) -> Collections:
        """メモリストアがデコードして保存したアイテムを読み戻す。"""
        applied: Collections = {}
        for kind, items in collections.items():
            decoded: dict[str, StoreItem] = {}
            for key in items:
                item = self._memory_store.lookup(kind, key)
                if item is not None:
                    decoded[key] = item
            applied[kind] = decoded
        return applied

    def _reset_dependency_tracker(self, all_data: Collections) -> None:
        self._dependency_tracker.reset()
        for kind, items in all_data.items():
            for key, item in items.items():
                self._dependency_tracker.update_dependencies_from(kind, key, item)

    def _send_change_events(self, affected: set[KindAndKey]) -> None:
        for item in sorted(affected):
            if item.kind is DataKind.FEATURES:
                self._flag_change_listeners.notify(FlagChange(item.key))

    def _compute_changed_items_for_full_data_set(
        self, old_data: Collections, new_data: Collections
    ) -> set[KindAndKey]:
        """どちらか一方にしかない、またはバージョンが異なるアイテムとその依存元を返す。"""
        affected: set[KindAndKey] = set()
        for kind in ALL_KINDS:
            old_items = old_data.get(kind, {})
            new_items = {
                k: v for k, v in new_data.get(kind, {}).items() if not v.deleted
            }
            for key in old_items.keys() | new_items.keys():
                old_item = old_items.get(key)
                new_item = new_items.get(key)
                if old_item is None or new_item is None or old_item.version != new_item.version:
                    self._dependency_tracker.add_affected_items(affected, KindAndKey(kind, key))
        return affected

"""PersistentStoreCore 向けのキャッシュ付きストア"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Hashable, Mapping

from .interfaces import PersistentStoreCore
from .kinds import DataKind
from .models import make_tombstone
from .serialization import StoreItem, deserialize, serialize

DEFAULT_CACHE_TTL = 15.0
DEFAULT_CACHE_CAPACITY = 1000

_INITED_KEY = ("$inited",)


class _CacheEntry:
    __slots__ = ("value", "expires_at")

    def __init__(self, value: Any, ttl: float) -> None:
        self.value = value
        self.expires_at = time.monotonic() + ttl

    def is_expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class _ExpiringCache:
    """容量上限付きの TTL キャッシュ。容量を超えたら最も古く使われたものから捨てる。"""

    def __init__(self, ttl: float, capacity: int) -> None:
        self._ttl = ttl
        self._capacity = capacity
        self._entries: OrderedDict[Hashable, _CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            if entry.is_expired():
                del self._entries[key]
                return False, None
            self._entries.move_to_end(key)
            return True, entry.value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = _CacheEntry(value, self._ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class CachingStoreWrapper:
    """PersistentStoreCore を FeatureStore として使えるようにするラッパー。

    アイテムは (kind, key) ごとに raw data の JSON 文字列で保存する。削除は
    {key, version, deleted: true} の tombstone の書き込みで表す。ttl が 0 なら
    キャッシュしない。
    """

    def __init__(
        self,
        core: PersistentStoreCore,
        ttl: float = DEFAULT_CACHE_TTL,
        capacity: int = DEFAULT_CACHE_CAPACITY,
    ) -> None:
        self._core = core
        self._cache = _ExpiringCache(ttl, capacity) if ttl > 0 else None
        self._inited = False

    def init(self, all_data: Mapping[DataKind, Mapping[str, Any]]) -> None:
        serialized = {
            DataKind(kind): {key: serialize(DataKind(kind), item) for key, item in items.items()}
            for kind, items in all_data.items()
        }
        self._core.init_internal(serialized)
        if self._cache is not None:
            self._cache.clear()
            for kind, items in all_data.items():
                kind = DataKind(kind)
                decoded = {key: deserialize(kind, item) for key, item in items.items()}
                for key, item in decoded.items():
                    self._cache.set(("item", kind, key), item)
                self._cache.set(("all", kind), _live_items(decoded))
        self._inited = True

    def get(self, kind: DataKind, key: str) -> StoreItem | None:
        item = self._get_item(kind, key)
        if item is None or item.deleted:
            return None
        return item

    def all(self, kind: DataKind) -> dict[str, StoreItem]:
        if self._cache is not None:
            hit, value = self._cache.get(("all", kind))
            if hit:
                return dict(value)
        raw = self._core.get_all_internal(kind)
        items = _live_items({key: deserialize(kind, value) for key, value in raw.items()})
        if self._cache is not None:
            self._cache.set(("all", kind), items)
        return dict(items)

    def upsert(self, kind: DataKind, item: Any) -> None:
        decoded = deserialize(kind, item)
        if decoded is None:
            return
        stored = self._core.upsert_internal(
            kind, decoded.key, decoded.version, serialize(kind, decoded)
        )
        if self._cache is not None:
            self._cache.set(("item", kind, decoded.key), deserialize(kind, stored))
            self._cache.delete(("all", kind))

    def delete(self, kind: DataKind, key: str, version: int) -> None:
        self.upsert(kind, make_tombstone(key, version))

    @property
    def initialized(self) -> bool:
        if self._inited:
            return True
        if self._cache is not None:
            hit, value = self._cache.get(_INITED_KEY)
            if hit:
                return bool(value)
        result = bool(self._core.initialized_internal())
        if result:
            self._inited = True
        elif self._cache is not None:
            self._cache.set(_INITED_KEY, False)
        return result

    def is_monitoring_enabled(self) -> bool:
        return callable(getattr(self._core, "is_available", None))

    def is_available(self) -> bool:
        return bool(self._core.is_available())  # type: ignore[attr-defined]

    def close(self) -> None:
        close = getattr(self._core, "close", None)
        if callable(close):
            close()

    def _get_item(self, kind: DataKind, key: str) -> StoreItem | None:
        cache_key = ("item", kind, key)
        if self._cache is not None:
            hit, value = self._cache.get(cache_key)
            if hit:
                return value
        item = deserialize(kind, self._core.get_internal(kind, key))
        if self._cache is not None:
            self._cache.set(cache_key, item)
        return item


def _live_items(items: Mapping[str, StoreItem | None]) -> dict[str, StoreItem]:
    return {k: v for k, v in items.items() if v is not None and not v.deleted}

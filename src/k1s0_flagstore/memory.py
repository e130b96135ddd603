"""InMemoryFeatureStore 実装"""

from __future__ import annotations

from typing import Any, Mapping

import structlog

from .kinds import ALL_KINDS, DataKind
from .rwlock import ReadWriteLock
from .serialization import StoreItem, deserialize

logger = structlog.get_logger(__name__)

Collections = Mapping[DataKind, Mapping[str, Any]]


class InMemoryFeatureStore:
    """全フラグ・セグメントをメモリ上に保持するストア。

    読み取り同士は並行に実行でき、書き込みとは排他になる。入力のデコードに
    1 件でも失敗した場合、その操作は何も反映せず False を返す。
    """

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._initialized = False
        self._items: dict[DataKind, dict[str, StoreItem]] = {kind: {} for kind in ALL_KINDS}

    def get(self, kind: DataKind, key: str) -> StoreItem | None:
        """アイテムを返す。存在しないか削除済みなら None。"""
        with self._lock.read():
            item = self._items[kind].get(key)
        if item is None:
            logger.debug("attempted to get missing key", key=key, kind=kind.namespace)
            return None
        if item.deleted:
            logger.debug("attempted to get deleted key", key=key, kind=kind.namespace)
            return None
        return item

    def all(self, kind: DataKind) -> dict[str, StoreItem]:
        """削除済みを除いた全アイテムを返す。"""
        with self._lock.read():
            return {k: v for k, v in self._items[kind].items() if not v.deleted}

    def snapshot(self, kind: DataKind) -> dict[str, StoreItem]:
        """削除済み（tombstone）を含めた全アイテムを返す。"""
        with self._lock.read():
            return dict(self._items[kind])

    def lookup(self, kind: DataKind, key: str) -> StoreItem | None:
        """削除済み（tombstone）も含めてアイテムを返す。"""
        with self._lock.read():
            return self._items[kind].get(key)

    def set_basis(self, collections: Collections) -> bool:
        """全データを置き換える。成功すると initialized になる。"""
        decoded = _decode_all(collections)
        if decoded is None:
            return False
        with self._lock.write():
            self._items = {kind: decoded.get(kind, {}) for kind in ALL_KINDS}
            self._initialized = True
        return True

    def apply_delta(self, collections: Collections) -> bool:
        """アイテムを (kind, key) 単位で無条件に上書きする。バージョンは比較しない。"""
        decoded = _decode_all(collections)
        if decoded is None:
            return False
        with self._lock.write():
            for kind, items in decoded.items():
                for key, item in items.items():
                    self._items[kind][key] = item
                    logger.debug(
                        "updated item", key=key, kind=kind.namespace, version=item.version
                    )
        return True

    @property
    def initialized(self) -> bool:
        with self._lock.read():
            return self._initialized


def _decode_all(collections: Collections) -> dict[DataKind, dict[str, StoreItem]] | None:
    decoded: dict[DataKind, dict[str, StoreItem]] = {}
    try:
        for kind, items in collections.items():
            kind = DataKind(kind)
            decoded_items: dict[str, StoreItem] = {}
            for key, value in items.items():
                item = deserialize(kind, value)
                if item is not None:
                    decoded_items[key] = item
            decoded[kind] = decoded_items
    except Exception as e:
        logger.error("failed to decode data set", error=str(e))
        return None
    return decoded

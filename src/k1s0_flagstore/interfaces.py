"""ストア・データソースのプロトコル定義"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Iterator, Mapping, Protocol, TypeVar, runtime_checkable

from .changeset import Basis, Selector, Update
from .kinds import DataKind

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """成功値またはエラーを保持する結果型。"""

    value: T | None = None
    error: str | None = None
    exception: Exception | None = None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def fail(cls, error: str, exception: Exception | None = None) -> Result[T]:
        return cls(error=error, exception=exception)

    @property
    def is_success(self) -> bool:
        return self.error is None


@runtime_checkable
class ReadOnlyStore(Protocol):
    """評価エンジンが読み取りに使うストア。"""

    def get(self, kind: DataKind, key: str) -> Any: ...

    def all(self, kind: DataKind) -> dict[str, Any]: ...

    @property
    def initialized(self) -> bool: ...


@runtime_checkable
class FeatureStore(ReadOnlyStore, Protocol):
    """書き込み可能な永続ストア。

    可用性監視に対応するストアは is_monitoring_enabled() と is_available() も実装する。
    """

    def init(self, all_data: Mapping[DataKind, Mapping[str, Any]]) -> None: ...

    def upsert(self, kind: DataKind, item: Any) -> None: ...

    def delete(self, kind: DataKind, key: str, version: int) -> None: ...


class PersistentStoreCore(Protocol):
    """シリアライズ済み JSON 文字列を (kind, key) で保存する低レベルストア。

    任意で is_available() と close() を実装できる。
    """

    def init_internal(self, all_data: Mapping[DataKind, Mapping[str, str]]) -> None: ...

    def get_internal(self, kind: DataKind, key: str) -> str | None: ...

    def get_all_internal(self, kind: DataKind) -> dict[str, str]: ...

    def upsert_internal(self, kind: DataKind, key: str, version: int, item: str) -> str:
        """新しい方のバージョンを保存し、保存後の値を返す。"""
        ...

    def initialized_internal(self) -> bool: ...


class SelectorStore(Protocol):
    def selector(self) -> Selector: ...


class Initializer(Protocol):
    """一度だけ全データを取得するデータソース。"""

    @property
    def name(self) -> str: ...

    def fetch(self, selector_store: SelectorStore) -> Result[Basis]: ...


class Synchronizer(Protocol):
    """継続的に更新を返すデータソース。stop() で sync() の反復が終わる。"""

    @property
    def name(self) -> str: ...

    def sync(self, selector_store: SelectorStore) -> Iterator[Update]: ...

    def stop(self) -> None: ...

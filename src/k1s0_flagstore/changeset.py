"""変更セット・セレクタ・Basis の型定義"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import FlagStoreError, FlagStoreErrorCodes
from .kinds import ObjectKind

if TYPE_CHECKING:
    from .status import DataSourceErrorInfo, DataSourceState


class IntentCode(str, Enum):
    """変更セットの適用方法。"""

    TRANSFER_FULL = "xfer-full"
    TRANSFER_CHANGES = "xfer-changes"
    TRANSFER_NONE = "none"


class ChangeType(str, Enum):
    PUT = "put"
    DELETE = "delete"


@dataclass(frozen=True)
class Selector:
    """同期再開用のカーソル。state は不透明なトークン。"""

    state: str = ""
    version: int = 0

    @classmethod
    def no_selector(cls) -> Selector:
        return _NO_SELECTOR

    @classmethod
    def new_selector(cls, state: str, version: int) -> Selector:
        return cls(state=state, version=version)

    def is_defined(self) -> bool:
        return self != _NO_SELECTOR

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state, "version": self.version}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Selector:
        """dict から Selector を復元する。state / version が無ければ INVALID_SELECTOR。"""
        state = data.get("state")
        version = data.get("version")
        if state is None or version is None:
            raise FlagStoreError(
                FlagStoreErrorCodes.INVALID_SELECTOR,
                "Selector の必須フィールドがありません",
            )
        return cls(state=state, version=version)


_NO_SELECTOR = Selector()


@dataclass(frozen=True)
class Change:
    """1 アイテム分の変更。DELETE の場合 object は None。"""

    action: ChangeType
    kind: ObjectKind
    key: str
    version: int
    object: Any = None


@dataclass(frozen=True)
class ChangeSet:
    """意図コード付きの変更の並び。"""

    intent_code: IntentCode
    changes: tuple[Change, ...] = ()
    selector: Selector = field(default_factory=Selector.no_selector)


@dataclass(frozen=True)
class Basis:
    """Initializer が返す初期状態。"""

    change_set: ChangeSet
    persist: bool
    environment_id: str | None = None


@dataclass(frozen=True)
class Update:
    """Synchronizer が順次返す更新。"""

    state: DataSourceState
    change_set: ChangeSet | None = None
    error: DataSourceErrorInfo | None = None
    environment_id: str | None = None


class ChangeSetBuilder:
    """受信イベントから ChangeSet を組み立てるビルダー。

    start() で意図を確定し、add_put() / add_delete() で変更を積み、finish() で
    ChangeSet を取り出す。全件転送の finish 後は以降を差分として扱う。
    """

    def __init__(self) -> None:
        self.intent: IntentCode | None = None
        self.changes: list[Change] = []

    @staticmethod
    def no_changes() -> ChangeSet:
        return ChangeSet(IntentCode.TRANSFER_NONE, (), Selector.no_selector())

    @staticmethod
    def empty(selector: Selector) -> ChangeSet:
        """空の全件転送。既存データをすべて消す。"""
        return ChangeSet(IntentCode.TRANSFER_FULL, (), selector)

    def start(self, intent: IntentCode) -> None:
        self.intent = intent
        self.changes = []

    def expect_changes(self) -> None:
        """変更なしの意図を受けた後に変更が届いた場合、差分扱いに切り替える。"""
        if self.intent is None:
            raise FlagStoreError(
                FlagStoreErrorCodes.INVALID_CHANGESET,
                "changeset: cannot expect changes without a server-intent",
            )
        if self.intent is IntentCode.TRANSFER_NONE:
            self.intent = IntentCode.TRANSFER_CHANGES

    def reset(self) -> None:
        self.changes = []

    def finish(self, selector: Selector) -> ChangeSet:
        if self.intent is None:
            raise FlagStoreError(
                FlagStoreErrorCodes.INVALID_CHANGESET,
                "changeset: cannot complete without a server-intent",
            )
        change_set = ChangeSet(self.intent, tuple(self.changes), selector)
        self.changes = []
        if self.intent is IntentCode.TRANSFER_FULL:
            self.intent = IntentCode.TRANSFER_CHANGES
        return change_set

    def add_put(self, kind: ObjectKind, key: str, version: int, obj: Any) -> None:
        self.changes.append(Change(ChangeType.PUT, ObjectKind(kind), key, version, obj))

    def add_delete(self, kind: ObjectKind, key: str, version: int) -> None:
        self.changes.append(Change(ChangeType.DELETE, ObjectKind(kind), key, version))

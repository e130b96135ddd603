"""データ種別の定義"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple

DEFAULT_CONTEXT_KIND = "user"


class ObjectKind(str, Enum):
    """更新ソースが送ってくるオブジェクト種別。"""

    FLAG = "flag"
    SEGMENT = "segment"


class DataKind(str, Enum):
    """ストア内のデータ種別。フラグとセグメントの 2 種のみ。"""

    FEATURES = "features"
    SEGMENTS = "segments"

    @property
    def namespace(self) -> str:
        return self.value

    @property
    def priority(self) -> int:
        """永続ストアへ書き込む順序。小さい方が先（セグメントはフラグより先）。"""
        return 0 if self is DataKind.SEGMENTS else 1

    @classmethod
    def for_object_kind(cls, kind: ObjectKind | str) -> DataKind:
        """ObjectKind を対応する DataKind に変換する。"""
        return cls.FEATURES if ObjectKind(kind) is ObjectKind.FLAG else cls.SEGMENTS


ALL_KINDS: tuple[DataKind, ...] = (DataKind.FEATURES, DataKind.SEGMENTS)


class KindAndKey(NamedTuple):
    """依存グラフのノード。"""

    kind: DataKind
    key: str

"""フラグ・セグメントのシリアライズ"""

from __future__ import annotations

import json
from typing import Any, Union

from .exceptions import FlagStoreError, FlagStoreErrorCodes
from .kinds import DataKind
from .models import FeatureFlag, Segment

StoreItem = Union[FeatureFlag, Segment]


def deserialize(kind: DataKind, value: Any) -> StoreItem | None:
    """JSON 文字列または dict をモデルに変換する。

    すでにモデルのインスタンスであればそのまま返す。None は None を返す。
    """
    if value is None:
        return None
    if isinstance(value, (FeatureFlag, Segment)):
        return value
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise FlagStoreError(
                FlagStoreErrorCodes.INVALID_DATA,
                f"JSON を解析できません ({kind.value})",
                cause=e,
            ) from e
    if kind is DataKind.FEATURES:
        return FeatureFlag.from_dict(value)
    return Segment.from_dict(value)


def serialize(kind: DataKind, item: StoreItem | dict[str, Any]) -> str:
    """永続ストアに書き込む JSON 文字列を返す。"""
    if isinstance(item, dict):
        return json.dumps(item)
    return item.to_json()


def make_all_store_data(received: dict[str, Any]) -> dict[DataKind, dict[str, StoreItem]]:
    """{"flags": ..., "segments": ...} 形式のデータをストア形式に変換する。"""
    return {
        DataKind.FEATURES: {
            key: FeatureFlag.from_dict(data)
            for key, data in (received.get("flags") or {}).items()
        },
        DataKind.SEGMENTS: {
            key: Segment.from_dict(data)
            for key, data in (received.get("segments") or {}).items()
        },
    }

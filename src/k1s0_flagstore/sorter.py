"""永続ストアへの書き込み順の並べ替え"""

from __future__ import annotations

from typing import Any, Mapping

from .kinds import DataKind
from .models import FeatureFlag


def sort_all_collections(
    all_data: Mapping[DataKind, Mapping[str, Any]],
) -> dict[DataKind, dict[str, Any]]:
    """書き込み順に並べ替えたコピーを返す。

    外側は DataKind.priority の昇順（セグメントが先）。フラグは前提フラグが
    依存元より先に来るように並べる。途中で書き込みが失敗しても、参照先が
    存在しないフラグが残らないようにするための順序。
    """
    kinds = sorted(all_data.keys(), key=lambda k: DataKind(k).priority)
    return {DataKind(kind): sort_collection(DataKind(kind), all_data[kind]) for kind in kinds}


def sort_collection(kind: DataKind, items: Mapping[str, Any]) -> dict[str, Any]:
    if kind is not DataKind.FEATURES or not items:
        return dict(items)
    remaining = dict(items)
    out: dict[str, Any] = {}
    while remaining:
        key = next(iter(remaining))
        _add_with_dependencies_first(key, remaining, out)
    return out


def _add_with_dependencies_first(
    key: str, remaining: dict[str, Any], out: dict[str, Any]
) -> None:
    item = remaining.pop(key)
    for dep_key in _prerequisite_keys(item):
        if dep_key in remaining:
            _add_with_dependencies_first(dep_key, remaining, out)
    out[key] = item


def _prerequisite_keys(item: Any) -> list[str]:
    if isinstance(item, FeatureFlag):
        return [p.key for p in item.prerequisites]
    if isinstance(item, dict):
        return [p.get("key") for p in item.get("prerequisites") or [] if isinstance(p, dict)]
    return []

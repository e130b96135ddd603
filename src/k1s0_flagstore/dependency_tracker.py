"""アイテム間の依存関係グラフ"""

from __future__ import annotations

from typing import Iterable

from .kinds import DataKind, KindAndKey
from .models import Clause, FeatureFlag, Segment


class DependencyTracker:
    """「X は Y に依存する」という辺を保持し、変更の影響範囲を求める。

    フラグは前提フラグと、ルール内の segmentMatch 条件が参照するセグメントに
    依存する。セグメントは自身のルールが参照するセグメントに依存する。
    """

    def __init__(self) -> None:
        self._from: dict[KindAndKey, set[KindAndKey]] = {}
        self._to: dict[KindAndKey, set[KindAndKey]] = {}

    def update_dependencies_from(
        self, kind: DataKind, key: str, item: FeatureFlag | Segment | None
    ) -> None:
        """(kind, key) の依存辺を item から再計算して置き換える。"""
        source = KindAndKey(kind, key)
        updated = self.compute_dependencies_from(kind, item)

        for old_dep in self._from.get(source, ()):
            dependents = self._to.get(old_dep)
            if dependents is not None:
                dependents.discard(source)

        self._from[source] = updated
        for new_dep in updated:
            self._to.setdefault(new_dep, set()).add(source)

    def add_affected_items(self, items_out: set[KindAndKey], initial: KindAndKey) -> None:
        """initial と、それに直接・間接に依存するすべてのアイテムを items_out に追加する。

        逆辺をたどる。すでに items_out にあるノードは訪問済みとして扱うので、
        循環があっても終了する。
        """
        pending = [initial]
        while pending:
            node = pending.pop()
            if node in items_out:
                continue
            items_out.add(node)
            pending.extend(self._to.get(node, ()))

    def reset(self) -> None:
        self._from.clear()
        self._to.clear()

    @staticmethod
    def compute_dependencies_from(
        kind: DataKind, item: FeatureFlag | Segment | None
    ) -> set[KindAndKey]:
        if item is None or item.deleted:
            return set()
        if kind is DataKind.FEATURES and isinstance(item, FeatureFlag):
            deps = {KindAndKey(DataKind.FEATURES, p.key) for p in item.prerequisites}
            for rule in item.rules:
                deps.update(_segment_refs(rule.clauses))
            return deps
        if kind is DataKind.SEGMENTS and isinstance(item, Segment):
            deps = set()
            for seg_rule in item.rules:
                deps.update(_segment_refs(seg_rule.clauses))
            return deps
        return set()


def _segment_refs(clauses: Iterable[Clause]) -> set[KindAndKey]:
    return {
        KindAndKey(DataKind.SEGMENTS, key)
        for clause in clauses
        for key in clause.segment_keys()
    }

"""フラグ・セグメントのデータモデル

外部から受け取った JSON（dict）のコピーを raw data として保持しつつ、評価に
使いやすい不変の型へ変換する。

- 型としては正しいが値が不正なもの（範囲外のバリエーション番号、不正な属性
  参照など）は構築時に 1 件ずつログへ出力し、構築自体は継続する。
- dict でない payload のように構造そのものが壊れている場合は FlagStoreError を送出する。
- 事前計算した評価結果は FlagPrecomputed に分離して保持し、to_dict() / to_json()
  には含めない。
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any

import structlog

from .exceptions import FlagStoreError, FlagStoreErrorCodes
from .kinds import DEFAULT_CONTEXT_KIND
from .preprocessed import EMPTY_PRECOMPUTED, FlagPrecomputed, precompute_flag
from .reference import Reference

logger = structlog.get_logger(__name__)

SEGMENT_MATCH_OP = "segmentMatch"


def _require_dict(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise FlagStoreError(
            FlagStoreErrorCodes.INVALID_DATA,
            f"{what} は object である必要があります: {type(data).__name__}",
        )
    return data


def _list_of(data: dict[str, Any], name: str) -> list[Any]:
    value = data.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise FlagStoreError(
            FlagStoreErrorCodes.INVALID_DATA,
            f"{name} は配列である必要があります: {type(value).__name__}",
        )
    return value


def _check_variation_range(
    variation_count: int | None,
    errors: list[str] | None,
    variation: Any,
    description: str,
) -> None:
    if variation_count is None or errors is None or variation is None:
        return
    if not isinstance(variation, int) or variation < 0 or variation >= variation_count:
        errors.append(f"{description} has invalid variation index")


@dataclass(frozen=True)
class Clause:
    """ルール条件。フラグとセグメントの両方で使う。"""

    op: str
    context_kind: str | None = None
    attribute: Reference | None = None
    values: tuple[Any, ...] = ()
    negate: bool = False

    @classmethod
    def from_dict(cls, data: Any, errors: list[str] | None = None) -> Clause:
        data = _require_dict(data, "clause")
        context_kind = data.get("contextKind")
        op = str(data.get("op", ""))
        attribute: Reference | None = None
        if op != SEGMENT_MATCH_OP:
            # contextKind がない旧形式ではスラッシュを含めて属性名そのものとして扱う
            if not context_kind:
                attribute = Reference.create_literal(data.get("attribute"))
            else:
                attribute = Reference.create(data.get("attribute"))
            if errors is not None and attribute.error is not None:
                errors.append(f"clause has invalid attribute: {attribute.error}")
        return cls(
            op=op,
            context_kind=context_kind,
            attribute=attribute,
            values=tuple(_list_of(data, "values")),
            negate=bool(data.get("negate", False)),
        )

    def segment_keys(self) -> tuple[str, ...]:
        """segmentMatch 条件なら参照しているセグメントキーを返す。"""
        if self.op != SEGMENT_MATCH_OP:
            return ()
        return tuple(v for v in self.values if isinstance(v, str))


@dataclass(frozen=True)
class WeightedVariation:
    """ロールアウト内の重み付きバリエーション。"""

    variation: int | None
    weight: int = 0
    untracked: bool = False


@dataclass(frozen=True)
class Rollout:
    """パーセンテージロールアウト。"""

    variations: tuple[WeightedVariation, ...] = ()
    context_kind: str | None = None
    bucket_by: str | None = None
    kind: str | None = None
    seed: int | None = None

    @property
    def is_experiment(self) -> bool:
        return self.kind == "experiment"

    @classmethod
    def from_dict(
        cls,
        data: Any,
        variation_count: int | None = None,
        errors: list[str] | None = None,
        description: str = "rollout",
    ) -> Rollout:
        data = _require_dict(data, "rollout")
        weighted: list[WeightedVariation] = []
        for item in _list_of(data, "variations"):
            item = _require_dict(item, "weighted variation")
            variation = item.get("variation")
            _check_variation_range(variation_count, errors, variation, description)
            weighted.append(
                WeightedVariation(
                    variation=variation,
                    weight=item.get("weight", 0),
                    untracked=bool(item.get("untracked", False)),
                )
            )
        return cls(
            variations=tuple(weighted),
            context_kind=data.get("contextKind"),
            bucket_by=data.get("bucketBy"),
            kind=data.get("kind"),
            seed=data.get("seed"),
        )


@dataclass(frozen=True)
class VariationOrRollout:
    """固定バリエーションまたはロールアウト。"""

    variation: int | None = None
    rollout: Rollout | None = None

    @classmethod
    def build(
        cls,
        variation: Any,
        rollout_data: Any,
        variation_count: int | None = None,
        errors: list[str] | None = None,
        description: str = "",
    ) -> VariationOrRollout:
        _check_variation_range(variation_count, errors, variation, description)
        rollout = None
        if rollout_data is not None:
            rollout = Rollout.from_dict(rollout_data, variation_count, errors, description)
        return cls(variation=variation, rollout=rollout)


@dataclass(frozen=True)
class Prerequisite:
    """前提フラグ。key のフラグが variation を返すことを要求する。"""

    key: str
    variation: int | None


@dataclass(frozen=True)
class Target:
    """個別ターゲット。values に含まれるコンテキストキーに variation を返す。"""

    variation: int | None
    values: frozenset[str] = frozenset()
    context_kind: str = DEFAULT_CONTEXT_KIND


@dataclass(frozen=True)
class FlagRule:
    """フラグのターゲティングルール。"""

    clauses: tuple[Clause, ...]
    variation_or_rollout: VariationOrRollout
    id: str | None = None
    track_events: bool = False


def _parse_target(
    data: Any, variation_count: int, errors: list[str], description: str
) -> Target:
    data = _require_dict(data, "target")
    variation = data.get("variation")
    _check_variation_range(variation_count, errors, variation, description)
    return Target(
        variation=variation,
        values=frozenset(_list_of(data, "values")),
        context_kind=data.get("contextKind") or DEFAULT_CONTEXT_KIND,
    )


@dataclass(frozen=True, eq=False)
class FeatureFlag:
    """フィーチャーフラグ。

    等価性は raw data（data）で判定する。precomputed は data から導出される
    値であり、比較にもシリアライズにも含まれない。
    """

    key: str
    version: int
    data: dict[str, Any] = field(repr=False)
    deleted: bool = False
    on: bool = False
    variations: tuple[Any, ...] = ()
    off_variation: int | None = None
    fallthrough: VariationOrRollout = field(default_factory=VariationOrRollout)
    prerequisites: tuple[Prerequisite, ...] = ()
    targets: tuple[Target, ...] = ()
    context_targets: tuple[Target, ...] = ()
    rules: tuple[FlagRule, ...] = ()
    salt: str | None = None
    track_events: bool = False
    track_events_fallthrough: bool = False
    client_side: bool = False
    debug_events_until_date: int | None = None
    precomputed: FlagPrecomputed = field(default=EMPTY_PRECOMPUTED, repr=False)

    @classmethod
    def from_dict(cls, data: Any) -> FeatureFlag:
        """dict からフラグを構築する。不整合は flag_key 付きでログ出力する。"""
        data = copy.deepcopy(_require_dict(data, "feature flag"))
        key = data.get("key", "")
        version = data.get("version") or 0
        if data.get("deleted"):
            return cls(key=key, version=version, data=data, deleted=True)

        errors: list[str] = []
        variations = tuple(_list_of(data, "variations"))
        count = len(variations)

        off_variation = data.get("offVariation")
        _check_variation_range(count, errors, off_variation, "off variation")

        fallthrough_data = data.get("fallthrough") or {}
        fallthrough_data = _require_dict(fallthrough_data, "fallthrough")
        fallthrough = VariationOrRollout.build(
            fallthrough_data.get("variation"),
            fallthrough_data.get("rollout"),
            count,
            errors,
            "fallthrough",
        )

        prerequisites: list[Prerequisite] = []
        for item in _list_of(data, "prerequisites"):
            item = _require_dict(item, "prerequisite")
            variation = item.get("variation")
            _check_variation_range(count, errors, variation, "prerequisite")
            prerequisites.append(Prerequisite(key=item.get("key", ""), variation=variation))

        targets = tuple(
            _parse_target(t, count, errors, "target") for t in _list_of(data, "targets")
        )
        context_targets = tuple(
            _parse_target(t, count, errors, "target")
            for t in _list_of(data, "contextTargets")
        )

        rules: list[FlagRule] = []
        for item in _list_of(data, "rules"):
            item = _require_dict(item, "rule")
            clauses = tuple(Clause.from_dict(c, errors) for c in _list_of(item, "clauses"))
            rules.append(
                FlagRule(
                    clauses=clauses,
                    variation_or_rollout=VariationOrRollout.build(
                        item.get("variation"), item.get("rollout"), count, errors, "rule"
                    ),
                    id=item.get("id"),
                    track_events=bool(item.get("trackEvents", False)),
                )
            )

        precomputed = precompute_flag(
            variations,
            off_variation,
            [p.key for p in prerequisites],
            [t.variation for t in targets],
            [t.variation for t in context_targets],
            [r.id for r in rules],
        )

        for message in errors:
            logger.error("data inconsistency in feature flag", flag_key=key, detail=message)

        return cls(
            key=key,
            version=version,
            data=data,
            on=bool(data.get("on", False)),
            variations=variations,
            off_variation=off_variation,
            fallthrough=fallthrough,
            prerequisites=tuple(prerequisites),
            targets=targets,
            context_targets=context_targets,
            rules=tuple(rules),
            salt=data.get("salt"),
            track_events=bool(data.get("trackEvents", False)),
            track_events_fallthrough=bool(data.get("trackEventsFallthrough", False)),
            client_side=bool(data.get("clientSide", False)),
            debug_events_until_date=data.get("debugEventsUntilDate"),
            precomputed=precomputed,
        )

    def to_dict(self) -> dict[str, Any]:
        """raw data のコピーを返す。事前計算結果は含まない。"""
        return copy.deepcopy(self.data)

    def to_json(self) -> str:
        return json.dumps(self.data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeatureFlag):
            return NotImplemented
        return self.data == other.data

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True)
class SegmentTarget:
    """コンテキスト種別ごとの包含/除外リスト。"""

    context_kind: str | None
    values: frozenset[str] = frozenset()


@dataclass(frozen=True)
class SegmentRule:
    """セグメントのルール。weight があればその割合だけ一致させる。"""

    clauses: tuple[Clause, ...]
    weight: int | None = None
    bucket_by: str | None = None
    rollout_context_kind: str | None = None


@dataclass(frozen=True, eq=False)
class Segment:
    """ユーザーセグメント。等価性は raw data で判定する。"""

    key: str
    version: int
    data: dict[str, Any] = field(repr=False)
    deleted: bool = False
    included: frozenset[str] = frozenset()
    excluded: frozenset[str] = frozenset()
    included_contexts: tuple[SegmentTarget, ...] = ()
    excluded_contexts: tuple[SegmentTarget, ...] = ()
    rules: tuple[SegmentRule, ...] = ()
    unbounded: bool = False
    unbounded_context_kind: str = DEFAULT_CONTEXT_KIND
    generation: int | None = None
    salt: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Segment:
        """dict からセグメントを構築する。不整合は segment_key 付きでログ出力する。"""
        data = copy.deepcopy(_require_dict(data, "segment"))
        key = data.get("key", "")
        version = data.get("version") or 0
        if data.get("deleted"):
            return cls(key=key, version=version, data=data, deleted=True)

        errors: list[str] = []
        rules: list[SegmentRule] = []
        for item in _list_of(data, "rules"):
            item = _require_dict(item, "segment rule")
            rules.append(
                SegmentRule(
                    clauses=tuple(
                        Clause.from_dict(c, errors) for c in _list_of(item, "clauses")
                    ),
                    weight=item.get("weight"),
                    bucket_by=item.get("bucketBy"),
                    rollout_context_kind=item.get("rolloutContextKind"),
                )
            )

        for message in errors:
            logger.error("data inconsistency in segment", segment_key=key, detail=message)

        return cls(
            key=key,
            version=version,
            data=data,
            included=frozenset(_list_of(data, "included")),
            excluded=frozenset(_list_of(data, "excluded")),
            included_contexts=tuple(
                _parse_segment_target(t) for t in _list_of(data, "includedContexts")
            ),
            excluded_contexts=tuple(
                _parse_segment_target(t) for t in _list_of(data, "excludedContexts")
            ),
            rules=tuple(rules),
            unbounded=bool(data.get("unbounded", False)),
            unbounded_context_kind=data.get("unboundedContextKind") or DEFAULT_CONTEXT_KIND,
            generation=data.get("generation"),
            salt=data.get("salt"),
        )

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self.data)

    def to_json(self) -> str:
        return json.dumps(self.data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Segment):
            return NotImplemented
        return self.data == other.data

    __hash__ = None  # type: ignore[assignment]


def _parse_segment_target(data: Any) -> SegmentTarget:
    data = _require_dict(data, "segment target")
    return SegmentTarget(
        context_kind=data.get("contextKind"),
        values=frozenset(_list_of(data, "values")),
    )


def make_tombstone(key: str, version: int) -> dict[str, Any]:
    """削除済みアイテムの永続化表現。"""
    return {"key": key, "version": version, "deleted": True}

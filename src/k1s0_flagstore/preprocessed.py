"""フラグ評価結果の事前計算

評価理由の組み立てはリクエストごとに同じ形の繰り返しになるため、フラグの
バージョンごとに一度だけ計算して保持する。ここで作る型はすべて不変で、
元データのシリアライズ経路には含まれない。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from .evaluation import MALFORMED_FLAG_DETAIL, EvaluationDetail, EvaluationReason


@dataclass(frozen=True)
class EvalResultsForSingleVariation:
    """1 つのバリエーションに対する通常結果と実験中結果の組。"""

    regular_result: EvaluationDetail
    in_experiment_result: EvaluationDetail

    def get_result(self, in_experiment: bool = False) -> EvaluationDetail:
        return self.in_experiment_result if in_experiment else self.regular_result


@dataclass(frozen=True)
class EvalResultFactoryMultiVariations:
    """全バリエーション分の事前計算結果。"""

    factories: tuple[EvalResultsForSingleVariation, ...] = ()

    def for_variation(self, index: int, in_experiment: bool = False) -> EvaluationDetail:
        """index のバリエーションの結果を返す。範囲外なら MALFORMED_FLAG エラー。"""
        if index < 0 or index >= len(self.factories):
            return MALFORMED_FLAG_DETAIL
        return self.factories[index].get_result(in_experiment)


@dataclass(frozen=True)
class FlagPrecomputed:
    """FeatureFlag 1 件分の事前計算結果。

    prerequisite_failed_results / target_match_results / context_target_match_results /
    rule_match_results はフラグ側の各リストと同じ並び順。
    """

    off_result: EvaluationDetail
    fallthrough_results: EvalResultFactoryMultiVariations
    rule_match_results: tuple[EvalResultFactoryMultiVariations, ...] = ()
    prerequisite_failed_results: tuple[EvaluationDetail, ...] = ()
    target_match_results: tuple[EvaluationDetail, ...] = ()
    context_target_match_results: tuple[EvaluationDetail, ...] = ()

    def rule_match(
        self, rule_index: int, variation: int, in_experiment: bool = False
    ) -> EvaluationDetail:
        if rule_index < 0 or rule_index >= len(self.rule_match_results):
            return MALFORMED_FLAG_DETAIL
        return self.rule_match_results[rule_index].for_variation(variation, in_experiment)


def detail_for_variation(
    variations: Sequence[Any], index: int | None, reason: EvaluationReason
) -> EvaluationDetail:
    """index のバリエーション値で評価結果を作る。

    範囲外の index は MALFORMED_FLAG エラーになる。このケースはフラグの
    読み込み時にすでにログ出力されている。
    """
    if index is None or not isinstance(index, int) or index < 0 or index >= len(variations):
        return MALFORMED_FLAG_DETAIL
    return EvaluationDetail(variations[index], index, reason)


def detail_for_off_variation(
    variations: Sequence[Any], off_variation: int | None, reason: EvaluationReason
) -> EvaluationDetail:
    """オフ時の評価結果。offVariation 未設定なら値なし（既定値）になる。"""
    if off_variation is None:
        return EvaluationDetail(None, None, reason)
    return detail_for_variation(variations, off_variation, reason)


def precompute_multi_variation_results(
    variations: Sequence[Any],
    regular_reason: EvaluationReason,
    in_experiment_reason: EvaluationReason,
) -> EvalResultFactoryMultiVariations:
    return EvalResultFactoryMultiVariations(
        tuple(
            EvalResultsForSingleVariation(
                EvaluationDetail(value, index, regular_reason),
                EvaluationDetail(value, index, in_experiment_reason),
            )
            for index, value in enumerate(variations)
        )
    )


def precompute_flag(
    variations: Sequence[Any],
    off_variation: int | None,
    prerequisite_keys: Sequence[str],
    target_variations: Sequence[int | None],
    context_target_variations: Sequence[int | None],
    rule_ids: Sequence[str | None],
) -> FlagPrecomputed:
    """フラグの構成要素から FlagPrecomputed を組み立てる。"""
    off_result = detail_for_off_variation(variations, off_variation, EvaluationReason.off())
    return FlagPrecomputed(
        off_result=off_result,
        fallthrough_results=precompute_multi_variation_results(
            variations,
            EvaluationReason.fallthrough(False),
            EvaluationReason.fallthrough(True),
        ),
        rule_match_results=tuple(
            precompute_multi_variation_results(
                variations,
                EvaluationReason.rule_match(index, rule_id),
                EvaluationReason.rule_match(index, rule_id, True),
            )
            for index, rule_id in enumerate(rule_ids)
        ),
        prerequisite_failed_results=tuple(
            detail_for_off_variation(
                variations, off_variation, EvaluationReason.prerequisite_failed(key)
            )
            for key in prerequisite_keys
        ),
        target_match_results=tuple(
            detail_for_variation(variations, v, EvaluationReason.target_match())
            for v in target_variations
        ),
        context_target_match_results=tuple(
            detail_for_variation(variations, v, EvaluationReason.target_match())
            for v in context_target_variations
        ),
    )


EMPTY_PRECOMPUTED = FlagPrecomputed(
    off_result=EvaluationDetail(None, None, EvaluationReason.off()),
    fallthrough_results=EvalResultFactoryMultiVariations(),
)

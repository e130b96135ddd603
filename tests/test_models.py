"""データモデルのユニットテスト"""

import json
from typing import Any

import pytest
from structlog.testing import capture_logs

from k1s0_flagstore import FeatureFlag, FlagStoreError, FlagStoreErrorCodes, Segment
from k1s0_flagstore.evaluation import (
    MALFORMED_FLAG_DETAIL,
    EvaluationDetail,
    EvaluationReason,
    ReasonKind,
)
from k1s0_flagstore.kinds import DEFAULT_CONTEXT_KIND


def make_flag_data(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "key": "flag-a",
        "version": 3,
        "on": True,
        "variations": ["a", "b", "c"],
        "offVariation": 0,
        "fallthrough": {"variation": 1},
        "prerequisites": [{"key": "flag-p", "variation": 2}],
        "targets": [{"variation": 2, "values": ["user-1"]}],
        "contextTargets": [{"contextKind": "org", "variation": 1, "values": ["org-1"]}],
        "rules": [
            {
                "id": "rule-0",
                "clauses": [
                    {"contextKind": "user", "attribute": "email", "op": "in", "values": ["x@y"]}
                ],
                "variation": 2,
            },
            {
                "id": "rule-1",
                "clauses": [{"op": "segmentMatch", "values": ["seg-1"]}],
                "rollout": {
                    "kind": "experiment",
                    "variations": [
                        {"variation": 0, "weight": 50000},
                        {"variation": 1, "weight": 50000, "untracked": True},
                    ],
                },
            },
        ],
        "salt": "abc",
    }
    data.update(overrides)
    return data


def inconsistency_logs(logs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [e for e in logs if e["event"].startswith("data inconsistency")]


def test_flag_fields_are_parsed() -> None:
    """フラグの各フィールドが読み込まれること。"""
    flag = FeatureFlag.from_dict(make_flag_data())
    assert flag.key == "flag-a"
    assert flag.version == 3
    assert flag.on is True
    assert flag.deleted is False
    assert flag.variations == ("a", "b", "c")
    assert flag.fallthrough.variation == 1
    assert flag.prerequisites[0].key == "flag-p"
    assert flag.targets[0].values == frozenset({"user-1"})
    assert flag.targets[0].context_kind == DEFAULT_CONTEXT_KIND
    assert flag.context_targets[0].context_kind == "org"
    assert flag.rules[1].clauses[0].segment_keys() == ("seg-1",)
    assert flag.rules[1].variation_or_rollout.rollout is not None
    assert flag.rules[1].variation_or_rollout.rollout.is_experiment is True
    assert flag.rules[1].variation_or_rollout.rollout.variations[1].untracked is True
    assert flag.salt == "abc"


def test_valid_flag_logs_nothing() -> None:
    """不整合のないフラグはログを出さないこと。"""
    with capture_logs() as logs:
        FeatureFlag.from_dict(make_flag_data())
    assert inconsistency_logs(logs) == []


def test_off_variation_out_of_range_logs_once() -> None:
    """offVariation が範囲外なら flag_key 付きのログが 1 件だけ出て、例外にならないこと。"""
    with capture_logs() as logs:
        flag = FeatureFlag.from_dict(make_flag_data(offVariation=7, prerequisites=[]))
    errors = inconsistency_logs(logs)
    assert len(errors) == 1
    assert errors[0]["flag_key"] == "flag-a"
    assert errors[0]["log_level"] == "error"
    assert "off variation" in errors[0]["detail"]
    assert flag.precomputed.off_result == MALFORMED_FLAG_DETAIL


def test_each_bad_variation_reference_is_logged() -> None:
    """範囲外のバリエーション参照がそれぞれログに出ること。"""
    data = make_flag_data(
        fallthrough={"variation": -1},
        targets=[{"variation": 9, "values": ["u"]}],
    )
    with capture_logs() as logs:
        flag = FeatureFlag.from_dict(data)
    details = [e["detail"] for e in inconsistency_logs(logs)]
    assert details == [
        "fallthrough has invalid variation index",
        "target has invalid variation index",
    ]
    assert flag.precomputed.target_match_results[0] == MALFORMED_FLAG_DETAIL


def test_invalid_clause_attribute_is_logged() -> None:
    """不正な属性参照はログに出るがフラグは構築されること。"""
    data = make_flag_data(
        rules=[
            {
                "clauses": [{"contextKind": "user", "attribute": "/a//b", "op": "in", "values": []}],
                "variation": 0,
            }
        ]
    )
    with capture_logs() as logs:
        flag = FeatureFlag.from_dict(data)
    errors = inconsistency_logs(logs)
    assert len(errors) == 1
    assert errors[0]["detail"] == "clause has invalid attribute: double or trailing slash"
    assert flag.rules[0].clauses[0].attribute is not None


def test_clause_without_context_kind_uses_literal_attribute() -> None:
    """contextKind のない条件は属性名をそのまま使うこと。"""
    data = make_flag_data(
        rules=[{"clauses": [{"attribute": "/odd", "op": "in", "values": []}], "variation": 0}]
    )
    flag = FeatureFlag.from_dict(data)
    attribute = flag.rules[0].clauses[0].attribute
    assert attribute is not None
    assert attribute.component(0) == "/odd"


def test_non_dict_payload_raises() -> None:
    """dict でない payload は INVALID_DATA。"""
    with pytest.raises(FlagStoreError) as exc_info:
        FeatureFlag.from_dict(["not", "a", "flag"])
    assert exc_info.value.code == FlagStoreErrorCodes.INVALID_DATA


def test_non_list_rules_raises() -> None:
    with pytest.raises(FlagStoreError) as exc_info:
        FeatureFlag.from_dict(make_flag_data(rules="oops"))
    assert exc_info.value.code == FlagStoreErrorCodes.INVALID_DATA


def test_deleted_flag_is_tombstone() -> None:
    """deleted の場合は key と version だけを持つこと。"""
    flag = FeatureFlag.from_dict({"key": "gone", "version": 4, "deleted": True})
    assert flag.deleted is True
    assert flag.version == 4
    assert flag.rules == ()
    assert flag.to_dict() == {"key": "gone", "version": 4, "deleted": True}


def test_precomputed_results() -> None:
    """事前計算結果がバリエーション・理由ごとに作られること。"""
    flag = FeatureFlag.from_dict(make_flag_data())
    pre = flag.precomputed
    assert pre.off_result == EvaluationDetail("a", 0, EvaluationReason.off())
    assert pre.fallthrough_results.for_variation(1) == EvaluationDetail(
        "b", 1, EvaluationReason.fallthrough()
    )
    in_experiment = pre.fallthrough_results.for_variation(1, in_experiment=True)
    assert in_experiment.reason.in_experiment is True
    assert pre.fallthrough_results.for_variation(5) == MALFORMED_FLAG_DETAIL

    rule_result = pre.rule_match(1, 0, in_experiment=True)
    assert rule_result.value == "a"
    assert rule_result.reason.kind is ReasonKind.RULE_MATCH
    assert rule_result.reason.rule_index == 1
    assert rule_result.reason.rule_id == "rule-1"
    assert rule_result.reason.in_experiment is True
    assert pre.rule_match(9, 0) == MALFORMED_FLAG_DETAIL

    prereq = pre.prerequisite_failed_results[0]
    assert prereq.value == "a"
    assert prereq.reason == EvaluationReason.prerequisite_failed("flag-p")

    assert pre.target_match_results[0] == EvaluationDetail(
        "c", 2, EvaluationReason.target_match()
    )
    assert pre.context_target_match_results[0].value == "b"


def test_off_result_without_off_variation_is_default() -> None:
    """offVariation 未設定ならオフ時は既定値になること。"""
    flag = FeatureFlag.from_dict(make_flag_data(offVariation=None))
    assert flag.precomputed.off_result.is_default_value()
    assert flag.precomputed.off_result.reason.kind is ReasonKind.OFF


def test_round_trip_excludes_precomputed() -> None:
    """JSON を経由しても raw data が一致し、事前計算結果が再生成されること。"""
    original = FeatureFlag.from_dict(make_flag_data())
    serialized = original.to_json()
    assert "precomputed" not in json.loads(serialized)
    restored = FeatureFlag.from_dict(json.loads(serialized))
    assert restored == original
    assert restored.to_dict() == make_flag_data()
    assert restored.precomputed == original.precomputed


def test_flag_equality_uses_raw_data() -> None:
    assert FeatureFlag.from_dict(make_flag_data()) == FeatureFlag.from_dict(make_flag_data())
    assert FeatureFlag.from_dict(make_flag_data()) != FeatureFlag.from_dict(
        make_flag_data(version=4)
    )


def test_flag_keeps_its_own_copy_of_raw_data() -> None:
    """入力 dict や to_dict() の戻り値を変更してもフラグは変わらないこと。"""
    data = make_flag_data()
    flag = FeatureFlag.from_dict(data)

    data["on"] = False
    data["variations"].append("d")
    assert flag.to_dict() == make_flag_data()

    out = flag.to_dict()
    out["rules"].clear()
    assert flag.on is True
    assert flag.to_dict() == make_flag_data()
    assert json.loads(flag.to_json()) == make_flag_data()


def test_segment_keeps_its_own_copy_of_raw_data() -> None:
    data = {"key": "seg-1", "version": 1, "included": ["u1"]}
    segment = Segment.from_dict(data)
    data["included"].append("u2")
    segment.to_dict()["included"].append("u3")
    assert segment.to_dict() == {"key": "seg-1", "version": 1, "included": ["u1"]}


def test_segment_fields_are_parsed() -> None:
    """セグメントの各フィールドが読み込まれること。"""
    data = {
        "key": "seg-1",
        "version": 2,
        "included": ["u1"],
        "excluded": ["u2"],
        "includedContexts": [{"contextKind": "org", "values": ["o1"]}],
        "rules": [
            {
                "clauses": [{"op": "segmentMatch", "values": ["seg-2"]}],
                "weight": 10000,
                "bucketBy": "key",
                "rolloutContextKind": "org",
            }
        ],
        "unbounded": True,
        "generation": 5,
        "salt": "s",
    }
    segment = Segment.from_dict(data)
    assert segment.included == frozenset({"u1"})
    assert segment.excluded == frozenset({"u2"})
    assert segment.included_contexts[0].context_kind == "org"
    assert segment.rules[0].weight == 10000
    assert segment.rules[0].rollout_context_kind == "org"
    assert segment.unbounded is True
    assert segment.unbounded_context_kind == DEFAULT_CONTEXT_KIND
    assert segment.generation == 5
    assert segment.to_dict() == data


def test_segment_invalid_attribute_is_logged_with_key() -> None:
    data = {
        "key": "seg-bad",
        "version": 1,
        "rules": [{"clauses": [{"contextKind": "user", "attribute": "", "op": "in"}]}],
    }
    with capture_logs() as logs:
        Segment.from_dict(data)
    errors = inconsistency_logs(logs)
    assert len(errors) == 1
    assert errors[0]["segment_key"] == "seg-bad"

"""評価結果・評価理由の型定義"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ReasonKind(str, Enum):
    """評価理由の種別。"""

    OFF = "OFF"
    FALLTHROUGH = "FALLTHROUGH"
    TARGET_MATCH = "TARGET_MATCH"
    RULE_MATCH = "RULE_MATCH"
    PREREQUISITE_FAILED = "PREREQUISITE_FAILED"
    ERROR = "ERROR"


class EvalErrorKind(str, Enum):
    """ERROR 理由のエラー種別。"""

    CLIENT_NOT_READY = "CLIENT_NOT_READY"
    FLAG_NOT_FOUND = "FLAG_NOT_FOUND"
    MALFORMED_FLAG = "MALFORMED_FLAG"
    USER_NOT_SPECIFIED = "USER_NOT_SPECIFIED"
    EXCEPTION = "EXCEPTION"


@dataclass(frozen=True)
class EvaluationReason:
    """フラグがその値になった理由。"""

    kind: ReasonKind
    rule_index: int | None = None
    rule_id: str | None = None
    prerequisite_key: str | None = None
    error_kind: EvalErrorKind | None = None
    in_experiment: bool = False

    @classmethod
    def off(cls) -> EvaluationReason:
        return _OFF

    @classmethod
    def fallthrough(cls, in_experiment: bool = False) -> EvaluationReason:
        return _FALLTHROUGH_IN_EXPERIMENT if in_experiment else _FALLTHROUGH

    @classmethod
    def target_match(cls) -> EvaluationReason:
        return _TARGET_MATCH

    @classmethod
    def rule_match(
        cls, rule_index: int, rule_id: str | None, in_experiment: bool = False
    ) -> EvaluationReason:
        return cls(
            ReasonKind.RULE_MATCH,
            rule_index=rule_index,
            rule_id=rule_id,
            in_experiment=in_experiment,
        )

    @classmethod
    def prerequisite_failed(cls, prerequisite_key: str) -> EvaluationReason:
        return cls(ReasonKind.PREREQUISITE_FAILED, prerequisite_key=prerequisite_key)

    @classmethod
    def error(cls, error_kind: EvalErrorKind) -> EvaluationReason:
        return cls(ReasonKind.ERROR, error_kind=error_kind)

    def to_dict(self) -> dict[str, Any]:
        """JSON 表現を返す。"""
        out: dict[str, Any] = {"kind": self.kind.value}
        if self.kind is ReasonKind.RULE_MATCH:
            out["ruleIndex"] = self.rule_index
            out["ruleId"] = self.rule_id
        elif self.kind is ReasonKind.PREREQUISITE_FAILED:
            out["prerequisiteKey"] = self.prerequisite_key
        elif self.kind is ReasonKind.ERROR and self.error_kind is not None:
            out["errorKind"] = self.error_kind.value
        if self.in_experiment:
            out["inExperiment"] = True
        return out


_OFF = EvaluationReason(ReasonKind.OFF)
_FALLTHROUGH = EvaluationReason(ReasonKind.FALLTHROUGH)
_FALLTHROUGH_IN_EXPERIMENT = EvaluationReason(ReasonKind.FALLTHROUGH, in_experiment=True)
_TARGET_MATCH = EvaluationReason(ReasonKind.TARGET_MATCH)


@dataclass(frozen=True)
class EvaluationDetail:
    """評価結果。値・バリエーション番号・理由の組。"""

    value: Any
    variation_index: int | None
    reason: EvaluationReason

    def is_default_value(self) -> bool:
        """バリエーションが選ばれず既定値になったかどうか。"""
        return self.variation_index is None


MALFORMED_FLAG_DETAIL = EvaluationDetail(
    None, None, EvaluationReason.error(EvalErrorKind.MALFORMED_FLAG)
)

"""フラグ変更の購読"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable

from .listeners import Listeners


@dataclass(frozen=True)
class FlagChange:
    """フラグ key の評価結果が変わった可能性があることを示す。"""

    key: str


@dataclass(frozen=True)
class FlagValueChange:
    key: str
    old_value: Any
    new_value: Any


EvalFn = Callable[[str, Any], Any]


class FlagValueChangeAdapter:
    """FlagChange を受けて再評価し、値が変わったときだけ FlagValueChange を通知する。"""

    def __init__(
        self,
        flag_key: str,
        context: Any,
        listener: Callable[[FlagValueChange], None],
        eval_fn: EvalFn,
    ) -> None:
        self._flag_key = flag_key
        self._context = context
        self._listener = listener
        self._eval_fn = eval_fn
        self._lock = threading.Lock()
        self._value = eval_fn(flag_key, context)

    def __call__(self, change: FlagChange) -> None:
        if change.key != self._flag_key:
            return
        new_value = self._eval_fn(self._flag_key, self._context)
        with self._lock:
            old_value, self._value = self._value, new_value
        if new_value == old_value:
            return
        self._listener(FlagValueChange(self._flag_key, old_value, new_value))


class FlagTracker:
    """フラグ変更リスナーの登録窓口。"""

    def __init__(self, listeners: Listeners, eval_fn: EvalFn) -> None:
        self._listeners = listeners
        self._eval_fn = eval_fn

    def set_eval_fn(self, eval_fn: EvalFn) -> None:
        """以後に登録する値変化リスナーが使う評価関数を差し替える。

        登録済みのリスナーは登録時の評価関数を使い続ける。
        """
        self._eval_fn = eval_fn

    def add_listener(self, listener: Callable[[FlagChange], None]) -> None:
        self._listeners.add(listener)

    def remove_listener(self, listener: Callable[[FlagChange], None]) -> None:
        self._listeners.remove(listener)

    def add_flag_value_change_listener(
        self,
        key: str,
        context: Any,
        listener: Callable[[FlagValueChange], None],
    ) -> FlagValueChangeAdapter:
        """key の context に対する評価値の変化を購読する。

        登録時に一度評価して初期値とする。戻り値を remove_listener() に渡すと
        購読を解除できる。
        """
        adapter = FlagValueChangeAdapter(key, context, listener, self._eval_fn)
        self.add_listener(adapter)
        return adapter

"""flagstore ライブラリの例外型定義"""

from __future__ import annotations


class FlagStoreError(Exception):
    """flagstore ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class FlagStoreErrorCodes:
    """エラーコード定数。"""

    INVALID_DATA: str = "INVALID_DATA"
    INVALID_SELECTOR: str = "INVALID_SELECTOR"
    INVALID_CHANGESET: str = "INVALID_CHANGESET"
    CONFIG_VALIDATION_ERROR: str = "CONFIG_VALIDATION_ERROR"

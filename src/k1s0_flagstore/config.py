"""データシステム設定（pydantic BaseModel）"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, Field, ValidationError

from .exceptions import FlagStoreError, FlagStoreErrorCodes


class DataStoreMode(str, Enum):
    """永続ストアの利用モード。"""

    READ_ONLY = "read_only"
    READ_WRITE = "read_write"


class PersistenceSection(BaseModel):
    """永続ストア設定。"""

    mode: DataStoreMode = DataStoreMode.READ_ONLY
    cache_ttl: float = Field(default=15.0, ge=0)  # 0 でキャッシュ無効
    cache_capacity: int = Field(default=1000, ge=1)
    availability_poll_interval: float = Field(default=0.5, gt=0)


class DataSystemConfig(BaseModel):
    """データシステム全体の設定。"""

    offline: bool = False
    persistence: PersistenceSection = Field(default_factory=PersistenceSection)


def parse_config(data: DataSystemConfig | Mapping[str, Any] | None) -> DataSystemConfig:
    """dict 形式の設定を検証して DataSystemConfig を返す。

    None なら既定値、DataSystemConfig はそのまま返す。
    """
    if data is None:
        return DataSystemConfig()
    if isinstance(data, DataSystemConfig):
        return data
    try:
        return DataSystemConfig.model_validate(dict(data))
    except ValidationError as e:
        raise FlagStoreError(
            code=FlagStoreErrorCodes.CONFIG_VALIDATION_ERROR,
            message=f"Config validation failed: {e}",
            cause=e,
        ) from e

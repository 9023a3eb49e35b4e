"""Runtime configuration loaded from ZKPOOL_* environment variables or .env."""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from zkpool.core.ledger import AssetKind
from zkpool.crypto.hasher import DEFAULT_HASH_FUNCTION, MAX_TREE_HEIGHT, get_compressor
from zkpool.utils.encoding import ZERO_ADDRESS, normalize_address
from zkpool.exceptions import UnknownHashFunctionError


class PoolSettings(BaseSettings):
    """Settings for one pool deployment."""

    model_config = SettingsConfigDict(
        env_prefix="ZKPOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    merkle_tree_height: int = Field(default=20, ge=1, le=MAX_TREE_HEIGHT)
    root_history_size: int = Field(default=100, ge=1)
    denomination: int = Field(default=10**18, gt=0)
    asset_kind: AssetKind = AssetKind.NATIVE
    hash_function: str = DEFAULT_HASH_FUNCTION
    administrator: str = ZERO_ADDRESS
    privilege_root: Optional[str] = None

    database_url: str = "sqlite:///zkpool.db"

    secret_key: str = "change-me-in-production"
    token_algorithm: str = "HS256"
    token_expire_hours: int = Field(default=24, ge=1)

    log_level: str = "INFO"

    @field_validator("administrator")
    @classmethod
    def _normalize_administrator(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("hash_function")
    @classmethod
    def _known_hash_function(cls, value: str) -> str:
        try:
            get_compressor(value)
        except UnknownHashFunctionError as e:
            raise ValueError(str(e))
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()


@lru_cache()
def get_settings() -> PoolSettings:
    """Get the process-wide settings instance."""
    return PoolSettings()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment (for testing)."""
    get_settings.cache_clear()

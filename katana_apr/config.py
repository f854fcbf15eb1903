from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Runtime
    ENV: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Chain
    KATANA_CHAIN_ID: int = Field(default=747474)
    KATANA_RPC_URL: str = Field(default="https://rpc.katana.network")

    # External APIs
    YDAEMON_BASE_URL: str = Field(default="https://ydaemon.yearn.fi")
    MERKL_API_BASE: str = Field(default="https://api.merkl.xyz/v4")
    HTTP_TIMEOUT_SECONDS: float = Field(default=15.0)

    # Reward math
    REWARD_TOKEN_ADDRESS: str  # required: only campaigns paying this token count
    ASSUMED_FDV: float = Field(default=1_000_000_000)
    STRICT_CALCULATORS: bool = Field(default=True)

    # Datastores
    CACHE_FILE_PATH: str = Field(default="vault-apr-data.json")
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    REDIS_CACHE_KEY: str = Field(default="katana:vault-apr")
    ENABLE_REDIS: bool = Field(default=False)

    # Observability
    LOKI_URL: str | None = None

    # Refresh
    REFRESH_INTERVAL_SECONDS: int = Field(default=300)

    @field_validator("REWARD_TOKEN_ADDRESS")
    @classmethod
    def _reward_token_set(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("REWARD_TOKEN_ADDRESS must be set to the target reward token")
        return v.strip()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

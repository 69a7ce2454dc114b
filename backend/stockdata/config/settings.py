from __future__ import annotations

from typing import Dict

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_MASTER_HOST = "https://new.real.download.dws.co.kr/common/master"


class KisSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STOCKDATA_KIS_",
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )
    app_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("KIS_APP_KEY", "STOCKDATA_KIS_APP_KEY"),
    )
    app_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("KIS_APP_SECRET", "STOCKDATA_KIS_APP_SECRET"),
    )
    base_url: str = Field(
        default="https://openapi.koreainvestment.com:9443",
        validation_alias=AliasChoices("KIS_BASE_URL", "STOCKDATA_KIS_BASE_URL"),
    )
    token_path: str = "/oauth2/tokenP"
    http_timeout_seconds: float = 10.0


class TokenSettings(BaseModel):
    expiry_buffer_seconds: int = 600
    lock_ttl_seconds: int = 30
    lock_max_wait_seconds: float = 10.0
    lock_poll_interval_seconds: float = 0.5
    # When the remote tier is down, acquire() reports success.
    lock_fail_open: bool = True
    rate_limit_cooldown_seconds: int = 60


class DomesticLayout(BaseModel):
    code_start: int = 0
    code_length: int = 6
    name_start: int = 21
    name_length: int = 40
    min_line_length: int = 30


class MasterSettings(BaseModel):
    domestic_urls: Dict[str, str] = Field(
        default_factory=lambda: {
            "KOSPI": f"{_MASTER_HOST}/kospi_code.mst.zip",
            "KOSDAQ": f"{_MASTER_HOST}/kosdaq_code.mst.zip",
        }
    )
    foreign_urls: Dict[str, str] = Field(
        default_factory=lambda: {
            "NASDAQ": f"{_MASTER_HOST}/nasmst.cod.zip",
            "NYSE": f"{_MASTER_HOST}/nysmst.cod.zip",
            "AMEX": f"{_MASTER_HOST}/amsmst.cod.zip",
        }
    )
    encoding: str = "euc-kr"
    ttl_seconds: int = 24 * 60 * 60
    http_timeout_seconds: float = 30.0
    max_workers: int = 5
    foreign_field_map: str = "v2"
    domestic_layout: DomesticLayout = Field(default_factory=DomesticLayout)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STOCKDATA_",
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    redis_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "REDIS_URL", "UPSTASH_REDIS_URL", "STOCKDATA_REDIS_URL"
        ),
    )
    redis_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "REDIS_TOKEN", "UPSTASH_REDIS_TOKEN", "STOCKDATA_REDIS_TOKEN"
        ),
    )
    redis_socket_timeout_seconds: float = 3.0
    cache_dir: str = Field(
        default=".cache/stockdata",
        validation_alias=AliasChoices("CACHE_DIR", "STOCKDATA_CACHE_DIR"),
    )
    refresh_queue_name: str = Field(
        default="master-refresh",
        validation_alias=AliasChoices(
            "REFRESH_QUEUE_NAME", "STOCKDATA_REFRESH_QUEUE_NAME"
        ),
    )

    kis: KisSettings = Field(default_factory=KisSettings)
    token: TokenSettings = Field(default_factory=TokenSettings)
    master: MasterSettings = Field(default_factory=MasterSettings)

    @property
    def remote_cache_configured(self) -> bool:
        return bool(self.redis_url and self.redis_token)


settings = Settings()

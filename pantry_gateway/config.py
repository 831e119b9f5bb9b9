from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import Dict, List


class Settings(BaseSettings):
    # Core
    app_name: str = Field(default="pantry-gateway")
    environment: str = Field(default="dev")  # dev|staging|prod
    log_json: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    # Inbound auth (static bearer gate)
    gateway_bearer_token: str | None = Field(default=None)

    # Upstream inventory backend
    upstream_base: str | None = Field(default=None)
    grocy_api_key: str | None = Field(default=None)
    cf_access_client_id: str | None = Field(default=None)
    cf_access_client_secret: str | None = Field(default=None)
    backend_timeout_seconds: float = Field(default=10.0, gt=0)
    passthrough_timeout_seconds: float = Field(default=8.0, gt=0, le=60)

    # Cache
    redis_url: str | None = Field(default=None)
    cache_version: str = Field(default="v1.1")
    cache_duration: int = Field(default=21600, ge=1)
    stock_detail_cache_seconds: int = Field(default=3600, ge=1)

    # Product creation defaults
    default_location_name: str = Field(default="Fridge")
    default_stock_unit: str = Field(default="Piece")
    default_purchase_unit: str = Field(default="Piece")
    default_consume_unit: str = Field(default="Piece")
    default_price_unit: str = Field(default="Piece")
    image_max_bytes: int = Field(default=5_000_000, ge=1)

    # Safety caps
    list_item_cap: int = Field(default=50, ge=1)
    stock_row_cap: int = Field(default=25, ge=1)
    bulk_max_items: int = Field(default=25, ge=1)

    # API
    cors_allowed_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Observability
    sentry_dsn: str | None = Field(default=None)
    sentry_traces_sample_rate: float = Field(default=0.0)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def _csv_to_list(cls, v):
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @property
    def upstream_root(self) -> str:
        return (self.upstream_base or "").rstrip("/")

    @property
    def default_units(self) -> Dict[str, str]:
        return {
            "stock": self.default_stock_unit,
            "purchase": self.default_purchase_unit,
            "consume": self.default_consume_unit,
            "price": self.default_price_unit,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()

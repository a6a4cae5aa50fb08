from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from splitledger.utils.money import quantum_for


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    storage_backend: Literal["memory", "postgres"] = Field("memory", alias="STORAGE_BACKEND")
    database_url: Optional[str] = Field(None, alias="DATABASE_URL")
    currency_decimals: int = Field(2, alias="CURRENCY_DECIMALS", ge=0, le=6)
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @model_validator(mode="after")
    def _require_database_url(self) -> "Settings":
        if self.storage_backend == "postgres" and not self.database_url:
            raise ValueError("DATABASE_URL is required for the postgres storage backend")
        return self

    @property
    def quantum(self) -> Decimal:
        return quantum_for(self.currency_decimals)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]

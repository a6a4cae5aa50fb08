from decimal import Decimal

import pytest
from pydantic import ValidationError

from splitledger.config import Settings


def test_defaults(monkeypatch):
    for name in ("STORAGE_BACKEND", "DATABASE_URL", "CURRENCY_DECIMALS", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.storage_backend == "memory"
    assert settings.quantum == Decimal("0.01")


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CURRENCY_DECIMALS", "0")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings(_env_file=None)

    assert settings.quantum == Decimal("1")
    assert settings.log_level == "debug"


def test_postgres_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(ValidationError):
        Settings(_env_file=None, STORAGE_BACKEND="postgres")

# backend/stockpos/config.py
from __future__ import annotations
import os
from decimal import Decimal


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stockpos.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sale totals. TAX_RATE is a fraction (0.2 = 20%).
    TAX_RATE = Decimal(os.environ.get("TAX_RATE", "0"))
    PRICES_INCLUDE_TAX = _env_bool("PRICES_INCLUDE_TAX")

    # Points earned per whole currency unit spent
    LOYALTY_POINTS_PER_UNIT = int(os.environ.get("LOYALTY_POINTS_PER_UNIT", "1"))

    HISTORY_PAGE_SIZE = int(os.environ.get("HISTORY_PAGE_SIZE", "50"))
    HISTORY_MAX_PAGE_SIZE = 200


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    TAX_RATE = Decimal("0")
    PRICES_INCLUDE_TAX = False
    LOG_LEVEL = "WARNING"

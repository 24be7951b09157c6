# backend/stockroom/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockroom.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///stockroom.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Sales tax in basis points (500 = 5%)
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "500"))

    # Keep stock movements of deleted products for audit
    RETAIN_ORPHANED_LEDGERS = _env_bool("RETAIN_ORPHANED_LEDGERS", True)

    # Upper bound on waiting for per-product / per-sale locks
    LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))

    LOW_STOCK_REPORT_LIMIT = 50

# salesdesk/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in instance/salesdesk.sqlite3 unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///salesdesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("SALESDESK_LOG_LEVEL", "INFO")

    # Dashboard origins allowed to call the API from the browser
    CORS_ORIGINS = [
        o.strip()
        for o in os.environ.get(
            "SALESDESK_CORS_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000",
        ).split(",")
        if o.strip()
    ]

    # Retry policy for lock contention / optimistic-lock conflicts
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "5"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.05"))

    # Deleting a SOLD/RETURNED allocation reverses its settlement (stock and totalSales).
    # Set to false to fall back to plain record removal.
    ALLOCATION_DELETE_REVERSES_SETTLEMENT = _env_bool("ALLOCATION_DELETE_REVERSES_SETTLEMENT", True)

    FUTURE_DATE_TOLERANCE_MINUTES = int(os.environ.get("FUTURE_DATE_TOLERANCE_MINUTES", "2"))

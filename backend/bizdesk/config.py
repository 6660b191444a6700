# backend/bizdesk/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


class Config:
    # Signs nothing user-facing yet; sessions are bearer tokens stored hashed
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Relative SQLite paths resolve against the Flask instance folder
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///bizdesk.sqlite3")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Writers wait on the SQLite file lock instead of failing at once
    SQLALCHEMY_ENGINE_OPTIONS = (
        {"connect_args": {"timeout": 30}}
        if SQLALCHEMY_DATABASE_URI.startswith("sqlite")
        else {}
    )

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sale and stock units of work retried on version or lock conflicts
    SALE_RETRY_ATTEMPTS = _env_int("SALE_RETRY_ATTEMPTS", 3)
    SALE_RETRY_BACKOFF = float(os.environ.get("SALE_RETRY_BACKOFF", "0.1"))

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "NGN")

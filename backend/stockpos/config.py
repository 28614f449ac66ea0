# backend/stockpos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Optimistic concurrency retry for stock lot writes.
    # Delay before retry n (0-based) is BACKOFF_BASE * MULTIPLIER ** n, capped at MAX_BACKOFF.
    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCK_RETRY_ATTEMPTS", "3"))
    STOCK_RETRY_BACKOFF_BASE = float(os.environ.get("STOCK_RETRY_BACKOFF_BASE", "0.1"))
    STOCK_RETRY_MULTIPLIER = float(os.environ.get("STOCK_RETRY_MULTIPLIER", "2.0"))
    STOCK_RETRY_MAX_BACKOFF = float(os.environ.get("STOCK_RETRY_MAX_BACKOFF", "1.0"))

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "EUR")

# backend/retail/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///retail.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Retry policy for lock contention / stale version conflicts
    TX_RETRY_ATTEMPTS = int(os.environ.get("TX_RETRY_ATTEMPTS", "3"))
    TX_RETRY_BACKOFF = float(os.environ.get("TX_RETRY_BACKOFF", "0.1"))

    # Subscription usage at or above this percentage produces warnings
    USAGE_WARNING_PERCENT = int(os.environ.get("USAGE_WARNING_PERCENT", "80"))

    DEFAULT_PAGE_SIZE = 50
    MAX_PAGE_SIZE = 200

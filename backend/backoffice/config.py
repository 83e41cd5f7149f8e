# backend/backoffice/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/backoffice.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///backoffice.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("BACKOFFICE_LOG_LEVEL", "INFO")

    # Whole unit-of-work retries on lock errors, stale versions and number collisions
    RETRY_ATTEMPTS = int(os.environ.get("BACKOFFICE_RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_BASE = float(os.environ.get("BACKOFFICE_RETRY_BACKOFF", "0.05"))

    # Compare-and-swap attempts for a single stock write inside one unit of work
    STOCK_CAS_ATTEMPTS = int(os.environ.get("BACKOFFICE_STOCK_CAS_ATTEMPTS", "5"))

# backend/tindahan/config.py
from __future__ import annotations
import os


def _origins(raw: str) -> list[str]:
    return [o.strip() for o in raw.split(",") if o.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tindahan.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tindahan.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Writers wait on SQLite's database lock instead of failing immediately
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}} if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}

    # Near-expiration alert horizon, in days
    EXPIRATION_ALERT_DAYS = int(os.environ.get("EXPIRATION_ALERT_DAYS", "7"))

    DEFAULT_MIN_STOCK = int(os.environ.get("DEFAULT_MIN_STOCK", "5"))
    BESTSELLER_LIMIT = int(os.environ.get("BESTSELLER_LIMIT", "10"))

    # Business-day timezone for daily reports and expiration dates
    STORE_TIMEZONE = os.environ.get("STORE_TIMEZONE", "Asia/Manila")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ORIGINS = _origins(os.environ.get(
        "CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    ))

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH)


def _normalise_prefix(raw_prefix: str) -> str:
    raw_prefix = raw_prefix.strip()
    if not raw_prefix or raw_prefix == "/":
        return ""
    if not raw_prefix.startswith("/"):
        raw_prefix = f"/{raw_prefix}"
    return raw_prefix.rstrip("/")


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _optional_int_env(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return int(raw)


class Config:
    """Application configuration loaded from environment variables."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    URL_PREFIX = _normalise_prefix(os.environ.get("FLASK_URL_PREFIX", ""))

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///kairos.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = os.environ.get("DB_ECHO", "false").lower() == "true"

    API_TITLE = os.environ.get("API_TITLE", "Kairos API")
    API_VERSION = os.environ.get("API_VERSION", "0.1.0")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    RESTX_ERROR_404_HELP = False
    # Callable returning the current local time; None means datetime.now.
    SESSION_CLOCK = None

    # Session policy
    SESSION_MIN_DURATION_MINUTES = _int_env("SESSION_MIN_DURATION_MINUTES", 30)
    SESSION_LONG_DURATION_WARNING_MINUTES = _int_env(
        "SESSION_LONG_DURATION_WARNING_MINUTES", 240
    )
    SESSION_EARLY_START_MINUTES = _int_env("SESSION_EARLY_START_MINUTES", 30)
    SESSION_LATE_START_WARNING_MINUTES = _int_env("SESSION_LATE_START_WARNING_MINUTES", 15)
    SESSION_CHANGE_CUTOFF_MINUTES = _int_env("SESSION_CHANGE_CUTOFF_MINUTES", 120)
    # Optional per-operation overrides of SESSION_CHANGE_CUTOFF_MINUTES.
    SESSION_POSTPONE_CUTOFF_MINUTES = _optional_int_env("SESSION_POSTPONE_CUTOFF_MINUTES")
    SESSION_MODE_CHANGE_CUTOFF_MINUTES = _optional_int_env(
        "SESSION_MODE_CHANGE_CUTOFF_MINUTES"
    )
    SESSION_MIN_REASON_LENGTH = _int_env("SESSION_MIN_REASON_LENGTH", 10)
    SESSION_GENERATION_MAX_DAYS = _int_env("SESSION_GENERATION_MAX_DAYS", 366)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    LOG_LEVEL = "DEBUG"

"""
Settings for the study exchange, one class per deployment environment.

Values come from the process environment (a local .env is loaded first).
.env.example lists every variable with its default.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent
DEV_SECRET_KEY = "dev-key-change-in-production"

load_dotenv(BASE_DIR / ".env")


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default)


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


class BaseConfig:
    SECRET_KEY = _env("SECRET_KEY", DEV_SECRET_KEY)

    # SQLite file and how long a writer waits for the write lock (seconds)
    DATABASE = _env("DATABASE_PATH", str(BASE_DIR / "study_exchange.db"))
    DB_BUSY_TIMEOUT = _env_float("DB_BUSY_TIMEOUT", 10)

    # Cookie sessions from Flask-Login
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    PERMANENT_SESSION_LIFETIME = 7 * 24 * 3600

    # Accounts must use a school address
    INSTITUTIONAL_EMAIL_SUFFIX = _env("INSTITUTIONAL_EMAIL_SUFFIX", ".edu")

    # Shared resources
    UPLOAD_FOLDER = _env("UPLOAD_FOLDER", str(BASE_DIR / "uploads"))
    MAX_UPLOAD_FILES = _env_int("MAX_UPLOAD_FILES", 10)
    MAX_UPLOAD_FILE_BYTES = _env_int("MAX_UPLOAD_FILE_BYTES", 10 * 1024 * 1024)
    MAX_FLASHCARDS_PER_SET = _env_int("MAX_FLASHCARDS_PER_SET", 500)
    # Whole request body: every attachment plus form overhead
    MAX_CONTENT_LENGTH = MAX_UPLOAD_FILES * MAX_UPLOAD_FILE_BYTES + 1024 * 1024

    # Generation through an OpenAI-compatible endpoint
    GROQ_API_KEY = _env("GROQ_API_KEY")
    GROQ_BASE_URL = _env("GROQ_BASE_URL", "https://api.groq.com/openai/v1")
    GROQ_MODEL = _env("GROQ_MODEL", "llama-3.3-70b-versatile")
    GENERATION_TIMEOUT_SECONDS = _env_float("GENERATION_TIMEOUT_SECONDS", 60)

    LOG_FORMAT = _env("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = _env("LOG_LEVEL", "INFO")

    # Verification mail: "log" writes it to the log, "smtp" sends it
    EMAIL_BACKEND = _env("EMAIL_BACKEND", "log")
    MAIL_SERVER = _env("MAIL_SERVER", "localhost")
    MAIL_PORT = _env_int("MAIL_PORT", 587)
    MAIL_USERNAME = _env("MAIL_USERNAME")
    MAIL_PASSWORD = _env("MAIL_PASSWORD")
    MAIL_FROM = _env("MAIL_FROM", "noreply@example.edu")
    BASE_URL = _env("BASE_URL", "http://localhost:5001")

    RATELIMIT_STORAGE_URI = _env("RATELIMIT_STORAGE_URI") or "memory://"


class DevelopmentConfig(BaseConfig):
    DEBUG = True


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = _env("LOG_FORMAT", "json")
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True

    @classmethod
    def validate(cls):
        """Refuse to boot with settings that are unsafe in production."""
        problems: list[str] = []
        if cls.SECRET_KEY in (DEV_SECRET_KEY, ""):
            problems.append("SECRET_KEY is unset or still the development default.")
        if not cls.INSTITUTIONAL_EMAIL_SUFFIX.startswith("."):
            problems.append("INSTITUTIONAL_EMAIL_SUFFIX must start with a dot, e.g. '.edu'.")
        if cls.EMAIL_BACKEND == "smtp" and not cls.MAIL_SERVER:
            problems.append("EMAIL_BACKEND is smtp but MAIL_SERVER is empty.")
        if not cls.GROQ_API_KEY:
            warnings.warn("GROQ_API_KEY is not set; generation endpoints will answer 503.")
        if problems:
            raise RuntimeError("Refusing to start:\n" + "\n".join(f"  - {p}" for p in problems))


class TestingConfig(BaseConfig):
    TESTING = True
    GROQ_API_KEY = ""
    EMAIL_BACKEND = "log"


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}

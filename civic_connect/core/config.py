# ⚙️ Application Settings
# Environment-driven configuration, built once at startup and passed to services

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_MONGO_URI = "mongodb://localhost:27017/civic_connect"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid integer for {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid number for {name}={raw!r}, using {default}")
        return default


@dataclass
class Settings:
    mongo_uri: str = DEFAULT_MONGO_URI
    db_name: str = "civic_connect"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    secret_key: str = "change-me-in-env-file"
    access_token_expire_minutes: int = 60 * 24 * 7
    public_base_url: str = "http://localhost:8000"
    nearby_threshold_km: float = 10.0
    ai_max_concurrency: int = 4
    ai_timeout_seconds: float = 20.0
    geolocation_timeout_seconds: float = 10.0
    list_timeout_ms: int = 5000
    slow_request_ms: int = 2500
    nominatim_url: str = "https://nominatim.openstreetmap.org/reverse"
    geocode_timeout_seconds: float = 8.0
    default_language: str = "en"

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        """
        Load settings from the process environment.
        Priority for the database URI: MONGO_URI > MONGODB_URL > MONGODB_URI > local default
        """
        load_dotenv(dotenv_path=env_file or Path.cwd() / ".env")

        mongo_uri = (
            os.getenv("MONGO_URI")
            or os.getenv("MONGODB_URL")
            or os.getenv("MONGODB_URI")
            or DEFAULT_MONGO_URI
        )

        settings = cls(
            mongo_uri=mongo_uri,
            db_name=os.getenv("MONGODB_NAME", cls.db_name),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", cls.gemini_model),
            secret_key=os.getenv("SECRET_KEY", cls.secret_key),
            access_token_expire_minutes=_env_int("ACCESS_TOKEN_EXPIRE_MINUTES", cls.access_token_expire_minutes),
            public_base_url=os.getenv("PUBLIC_BASE_URL", cls.public_base_url).rstrip("/"),
            nearby_threshold_km=_env_float("NEARBY_THRESHOLD_KM", cls.nearby_threshold_km),
            ai_max_concurrency=max(1, _env_int("AI_MAX_CONCURRENCY", cls.ai_max_concurrency)),
            ai_timeout_seconds=_env_float("AI_TIMEOUT_SECONDS", cls.ai_timeout_seconds),
            geolocation_timeout_seconds=_env_float("GEOLOCATION_TIMEOUT_SECONDS", cls.geolocation_timeout_seconds),
            list_timeout_ms=_env_int("LIST_TIMEOUT_MS", cls.list_timeout_ms),
            slow_request_ms=_env_int("SLOW_REQUEST_MS", cls.slow_request_ms),
            nominatim_url=os.getenv("NOMINATIM_URL", cls.nominatim_url),
            geocode_timeout_seconds=_env_float("GEOCODE_TIMEOUT_SECONDS", cls.geocode_timeout_seconds),
            default_language=os.getenv("DEFAULT_LANGUAGE", cls.default_language),
        )

        if not settings.gemini_api_key:
            logger.warning("GEMINI_API_KEY is not set; AI summaries will use the fallback text.")
        if settings.secret_key == cls.secret_key:
            logger.warning("⚠️ SECRET_KEY is not set - using the development default")

        return settings

from __future__ import annotations

import logging
import os
from dataclasses import dataclass


def _env(name: str, default: str | None = None) -> str | None:
    val = os.environ.get(name)
    if val is None or val.strip() == "":
        return default
    return val


def _env_int(name: str, default: int) -> int:
    return int(_env(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(_env(name, str(default)))


@dataclass(frozen=True)
class Settings:
    google_api_key: str | None = None
    google_cloud_project: str | None = None
    google_cloud_location: str = "us-central1"
    lesson_model: str = "gemini-2.5-flash"
    tutor_model: str = "gemini-2.5-pro"

    wiki_timeout: float = 20.0
    wiki_search_limit: int = 10

    # Character budgets are a rough proxy for the model's input limits.
    snippet_chars: int = 1500
    context_chars: int = 2000

    session_ttl_seconds: int = 60 * 60
    session_max: int = 10_000

    log_level: str = "INFO"
    port: int = 8080

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            google_api_key=_env("GOOGLE_API_KEY"),
            google_cloud_project=_env("GOOGLE_CLOUD_PROJECT"),
            google_cloud_location=_env("GOOGLE_CLOUD_LOCATION", "us-central1"),
            lesson_model=_env("GEMINI_LESSON_MODEL", "gemini-2.5-flash"),
            tutor_model=_env("GEMINI_TUTOR_MODEL", "gemini-2.5-pro"),
            wiki_timeout=_env_float("WIKI_TIMEOUT", 20.0),
            wiki_search_limit=_env_int("WIKI_SEARCH_LIMIT", 10),
            snippet_chars=_env_int("SNIPPET_CHARS", 1500),
            context_chars=_env_int("CONTEXT_CHARS", 2000),
            session_ttl_seconds=_env_int("SESSION_TTL_SECONDS", 60 * 60),
            session_max=_env_int("SESSION_MAX", 10_000),
            log_level=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
            port=_env_int("PORT", 8080),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

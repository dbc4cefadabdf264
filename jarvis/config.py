"""Configuration management for API keys and settings."""

import os
from typing import Optional
from pathlib import Path

from dotenv import load_dotenv

from jarvis.models import ProviderId, parse_language

# config.py is in jarvis/, .env is in project root
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


class Config:
    """Application configuration from environment variables."""

    # Provider API keys
    GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    DEEPSEEK_API_KEY: Optional[str] = os.getenv("DEEPSEEK_API_KEY")

    # Model overrides
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    DEEPSEEK_MODEL: str = os.getenv("DEEPSEEK_MODEL", "deepseek-chat")

    # Active provider and recognition/synthesis language
    PROVIDER: str = os.getenv("JARVIS_PROVIDER", "gemini")
    LANGUAGE: str = os.getenv("JARVIS_LANGUAGE", "en-US")

    # Outbound requests
    MIN_REQUEST_INTERVAL_MS: float = _env_float("JARVIS_MIN_REQUEST_INTERVAL_MS", 3000)
    REQUEST_TIMEOUT_SECONDS: float = _env_float("JARVIS_REQUEST_TIMEOUT_SECONDS", 30)

    # Listening policy (0 disables the auto-stop timer)
    AUTO_STOP_SECONDS: float = _env_float("JARVIS_AUTO_STOP_SECONDS", 10)
    AUTO_STOP_ON_START: bool = _env_bool("JARVIS_AUTO_STOP_ON_START", True)
    AUTO_STOP_ON_RESTART: bool = _env_bool("JARVIS_AUTO_STOP_ON_RESTART", True)
    LISTEN_AFTER_REPLY: bool = _env_bool("JARVIS_LISTEN_AFTER_REPLY", False)
    ENGINE_READY_TIMEOUT_SECONDS: float = _env_float("JARVIS_ENGINE_READY_TIMEOUT_SECONDS", 5)

    # Persistence
    DB_PATH: str = os.getenv("JARVIS_DB_PATH", "jarvis.db")

    # Local UI bridge
    HOST: str = os.getenv("JARVIS_HOST", "127.0.0.1")
    PORT: int = int(_env_float("JARVIS_PORT", 8010))
    LOG_LEVEL: str = os.getenv("JARVIS_LOG_LEVEL", "INFO")

    @classmethod
    def credential_for(cls, provider: ProviderId) -> Optional[str]:
        """API key for a provider from the environment, or None."""
        key = {
            ProviderId.GEMINI: cls.GEMINI_API_KEY,
            ProviderId.OPENAI: cls.OPENAI_API_KEY,
            ProviderId.DEEPSEEK: cls.DEEPSEEK_API_KEY,
        }[provider]
        return (key or "").strip().strip("\"'") or None

    @classmethod
    def validate(cls) -> list[str]:
        """Validate configuration and return list of missing required settings."""
        missing = []

        try:
            ProviderId.parse(cls.PROVIDER)
        except ValueError as e:
            missing.append(f"JARVIS_PROVIDER ({e})")

        try:
            parse_language(cls.LANGUAGE)
        except ValueError as e:
            missing.append(f"JARVIS_LANGUAGE ({e})")

        if not any(cls.credential_for(p) for p in ProviderId):
            missing.append("GEMINI_API_KEY, OPENAI_API_KEY or DEEPSEEK_API_KEY (at least one)")

        return missing


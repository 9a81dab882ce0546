"""Configuration management for API keys and settings."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# config.py is in talkback/, .env is in project root
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration from environment variables."""

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = _int_env("PORT", 8080)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    STATIC_DIR: str = os.getenv("STATIC_DIR", "static")

    # Provider selection
    TRANSCRIPTION_PROVIDER: str = os.getenv("TRANSCRIPTION_PROVIDER", "openai").strip().lower()  # "openai" or "deepgram"
    COMPLETION_PROVIDER: str = os.getenv("COMPLETION_PROVIDER", "openai").strip().lower()  # "openai", "ollama" or "gemini"

    # OpenAI settings
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    OPENAI_TRANSCRIPTION_MODEL: str = os.getenv("OPENAI_TRANSCRIPTION_MODEL", "whisper-1")
    OPENAI_COMPLETION_MODEL: str = os.getenv("OPENAI_COMPLETION_MODEL", "gpt-4o-mini")

    # Deepgram settings
    DEEPGRAM_API_KEY: Optional[str] = os.getenv("DEEPGRAM_API_KEY")
    DEEPGRAM_MODEL: str = os.getenv("DEEPGRAM_MODEL", "nova-2")

    # Ollama settings (no API key needed, it's local)
    OLLAMA_URL: str = os.getenv("OLLAMA_URL", "http://localhost:11434")
    OLLAMA_MODEL: str = os.getenv("OLLAMA_MODEL", "gemma3:4b")

    # Gemini settings
    GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
    GEMINI_BASE_URL: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

    TRANSCRIPTION_LANGUAGE: str = os.getenv("TRANSCRIPTION_LANGUAGE", "")
    SYSTEM_PROMPT: Optional[str] = os.getenv("SYSTEM_PROMPT")

    # Provider call policy
    PROVIDER_TIMEOUT_SECONDS: float = _float_env("PROVIDER_TIMEOUT_SECONDS", 90.0)
    PROVIDER_MAX_RETRIES: int = _int_env("PROVIDER_MAX_RETRIES", 2)
    PROVIDER_RETRY_BACKOFF_SECONDS: float = _float_env("PROVIDER_RETRY_BACKOFF_SECONDS", 0.5)

    # Audio capture
    AUDIO_DIR: str = os.getenv("AUDIO_DIR", "recordings")
    AUDIO_SAMPLE_RATE: int = _int_env("AUDIO_SAMPLE_RATE", 16000)
    AUDIO_CHANNELS: int = _int_env("AUDIO_CHANNELS", 1)
    AUDIO_DEVICE: Optional[str] = os.getenv("AUDIO_DEVICE") or None
    MAX_RECORDING_SECONDS: float = _float_env("MAX_RECORDING_SECONDS", 300.0)
    KEEP_AUDIO: bool = _bool_env("KEEP_AUDIO", True)

    # Conversation log and live viewers
    CONVERSATION_LOG_PATH: str = os.getenv("CONVERSATION_LOG_PATH", "conversation_log.jsonl")
    SUBSCRIBER_QUEUE_SIZE: int = _int_env("SUBSCRIBER_QUEUE_SIZE", 256)
    SSE_HEARTBEAT_SECONDS: float = _float_env("SSE_HEARTBEAT_SECONDS", 15.0)

    @classmethod
    def validate(cls) -> list[str]:
        """Validate configuration and return list of missing required settings."""
        missing = []

        if cls.TRANSCRIPTION_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            missing.append("OPENAI_API_KEY (required when TRANSCRIPTION_PROVIDER=openai)")
        elif cls.TRANSCRIPTION_PROVIDER == "deepgram" and not cls.DEEPGRAM_API_KEY:
            missing.append("DEEPGRAM_API_KEY (required when TRANSCRIPTION_PROVIDER=deepgram)")
        elif cls.TRANSCRIPTION_PROVIDER not in ("openai", "deepgram"):
            missing.append(f"TRANSCRIPTION_PROVIDER (unsupported value '{cls.TRANSCRIPTION_PROVIDER}')")

        if cls.COMPLETION_PROVIDER == "openai":
            # Already reported above when transcription also uses OpenAI
            if not cls.OPENAI_API_KEY and cls.TRANSCRIPTION_PROVIDER != "openai":
                missing.append("OPENAI_API_KEY (required when COMPLETION_PROVIDER=openai)")
        elif cls.COMPLETION_PROVIDER == "gemini" and not cls.GEMINI_API_KEY:
            missing.append("GEMINI_API_KEY (required when COMPLETION_PROVIDER=gemini)")
        elif cls.COMPLETION_PROVIDER not in ("openai", "ollama", "gemini"):
            missing.append(f"COMPLETION_PROVIDER (unsupported value '{cls.COMPLETION_PROVIDER}')")

        return missing


_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the process."""
    level_name = (level or Config.LOG_LEVEL or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

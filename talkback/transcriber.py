"""Transcriber abstraction for audio-to-text conversion."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import httpx

from talkback.errors import ConfigurationError, TranscriptionError, provider_error_from_exception
from talkback.models import AudioArtifact

logger = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "https://api.deepgram.com/v1/listen"


class Transcriber(ABC):
    """Abstract interface for transcription providers.

    Implementations make one attempt per call; retries are the caller's job.
    """

    name = "transcriber"

    def __init__(
        self,
        timeout: float = 90.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @abstractmethod
    async def _request(self, audio: bytes, artifact: AudioArtifact) -> str:
        """Send the WAV bytes to the provider and return the transcript."""
        pass

    async def transcribe(self, artifact: AudioArtifact) -> str:
        """Transcribe a recorded clip.

        Raises:
            TranscriptionError: on any failure, with ``retryable`` set for
                network errors, timeouts, 429 and 5xx responses.
        """
        try:
            audio = await asyncio.to_thread(Path(artifact.path).read_bytes)
        except OSError as e:
            raise TranscriptionError(f"Cannot read audio artifact {artifact.path}: {e}") from e

        try:
            text = await self._request(audio, artifact)
        except TranscriptionError:
            raise
        except Exception as e:
            raise provider_error_from_exception(e, TranscriptionError, self.name) from e

        logger.info("%s transcript (%d chars): %s", self.name, len(text), text[:80])
        return text

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAITranscriber(Transcriber):
    """OpenAI-compatible /audio/transcriptions endpoint (Whisper)."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        language: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        from talkback.config import Config

        self.api_key = api_key or Config.OPENAI_API_KEY
        self.model = model or Config.OPENAI_TRANSCRIPTION_MODEL
        self.base_url = (base_url or Config.OPENAI_BASE_URL).rstrip("/")
        self.language = language if language is not None else Config.TRANSCRIPTION_LANGUAGE
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for OpenAI transcription.")

    async def _request(self, audio: bytes, artifact: AudioArtifact) -> str:
        data = {"model": self.model, "response_format": "json"}
        if self.language:
            data["language"] = self.language
        files = {"file": (Path(artifact.path).name, audio, "audio/wav")}

        r = await self._client.post(
            f"{self.base_url}/audio/transcriptions",
            data=data,
            files=files,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        r.raise_for_status()
        payload = r.json()
        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise TranscriptionError(f"{self.name}: response has no 'text' field")
        return text.strip()


class DeepgramTranscriber(Transcriber):
    """Deepgram pre-recorded transcription."""

    name = "deepgram"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        language: Optional[str] = None,
        url: str = DEEPGRAM_LISTEN_URL,
        **kwargs,
    ):
        super().__init__(**kwargs)
        from talkback.config import Config

        self.api_key = api_key or Config.DEEPGRAM_API_KEY
        self.model = model or Config.DEEPGRAM_MODEL
        self.language = language if language is not None else Config.TRANSCRIPTION_LANGUAGE
        self.url = url
        if not self.api_key:
            raise ConfigurationError("DEEPGRAM_API_KEY is required for Deepgram transcription.")

    async def _request(self, audio: bytes, artifact: AudioArtifact) -> str:
        params = {"model": self.model, "smart_format": "true", "punctuate": "true"}
        if self.language:
            params["language"] = self.language

        r = await self._client.post(
            self.url,
            params=params,
            content=audio,
            headers={
                "Authorization": f"Token {self.api_key}",
                "Content-Type": "audio/wav",
            },
        )
        r.raise_for_status()
        data = r.json()
        try:
            alt0 = data["results"]["channels"][0]["alternatives"][0]
            return str(alt0.get("transcript", "")).strip()
        except (KeyError, IndexError, TypeError) as e:
            raise TranscriptionError(f"{self.name}: unexpected response shape") from e


def create_transcriber(name: str = "openai", **kwargs) -> Transcriber:
    """Factory function to create a transcriber by provider name.

    Raises:
        ConfigurationError: If the provider is not supported
    """
    name = (name or "").strip().lower()
    if name == "openai":
        return OpenAITranscriber(**kwargs)
    elif name == "deepgram":
        return DeepgramTranscriber(**kwargs)
    raise ConfigurationError(
        f"Unsupported transcription provider: '{name}'. "
        f"Supported providers are: 'openai', 'deepgram'"
    )

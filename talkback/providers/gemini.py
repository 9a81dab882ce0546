from __future__ import annotations

from typing import Optional

from talkback.errors import CompletionError, ConfigurationError
from talkback.providers.base import CompletionStreamer, iter_sse_data, load_chunk


class GeminiStreamer(CompletionStreamer):
    """Gemini Developer API streamGenerateContent over SSE."""

    name = "gemini"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 base_url: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        from talkback.config import Config

        self.api_key = api_key or Config.GEMINI_API_KEY
        self.model = model or Config.GEMINI_MODEL
        self.base_url = (base_url or Config.GEMINI_BASE_URL).rstrip("/")
        if not self.api_key:
            raise ConfigurationError(
                "GEMINI_API_KEY is required. Please set it in your .env file or environment variables."
            )

    def _build_request(self, text, system_prompt):
        # Gemini REST: POST /v1beta/models/{model}:streamGenerateContent
        url = f"{self.base_url}/v1beta/models/{self.model}:streamGenerateContent?alt=sse"
        body = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [
                {"role": "user", "parts": [{"text": (text or "").strip() or "[No speech detected]"}]}
            ],
        }
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }
        return url, body, headers

    async def _parse_stream(self, response):
        done = False
        async for raw in iter_sse_data(response):
            chunk = load_chunk(raw, self.name)
            for cand in chunk.get("candidates") or []:
                if cand.get("finishReason"):
                    done = True
                parts = (cand.get("content") or {}).get("parts") or []
                text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
                if text:
                    yield text
        if not done:
            raise CompletionError(f"{self.name}: stream ended without a finishReason", retryable=True)

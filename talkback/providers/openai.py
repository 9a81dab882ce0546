"""OpenAI-compatible chat completions with ``stream: true``."""

from __future__ import annotations

from typing import Optional

from talkback.errors import CompletionError, ConfigurationError
from talkback.prompt import build_messages
from talkback.providers.base import CompletionStreamer, iter_sse_data, load_chunk


class OpenAIStreamer(CompletionStreamer):
    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 base_url: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        from talkback.config import Config

        self.api_key = api_key or Config.OPENAI_API_KEY
        self.model = model or Config.OPENAI_COMPLETION_MODEL
        self.base_url = (base_url or Config.OPENAI_BASE_URL).rstrip("/")
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for OpenAI completions.")

    def _build_request(self, text, system_prompt):
        body = {
            "model": self.model,
            "messages": build_messages(text, system_prompt),
            "stream": True,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "text/event-stream",
        }
        return f"{self.base_url}/chat/completions", body, headers

    async def _parse_stream(self, response):
        done = False
        async for raw in iter_sse_data(response):
            if raw == "[DONE]":
                done = True
                break
            chunk = load_chunk(raw, self.name)
            for choice in chunk.get("choices") or []:
                delta = choice.get("delta") or {}
                content = delta.get("content")
                if content:
                    yield content
        if not done:
            raise CompletionError(f"{self.name}: stream ended before [DONE]", retryable=True)

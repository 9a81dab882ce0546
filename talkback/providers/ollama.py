from __future__ import annotations

from typing import Optional

from talkback.errors import CompletionError
from talkback.prompt import build_messages
from talkback.providers.base import CompletionStreamer, load_chunk


class OllamaStreamer(CompletionStreamer):
    """Local Ollama server, POST /api/chat with NDJSON streaming."""

    name = "ollama"

    def __init__(self, ollama_url: Optional[str] = None, model: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        from talkback.config import Config

        self.ollama_url = (ollama_url or Config.OLLAMA_URL).rstrip("/")
        self.model = model or Config.OLLAMA_MODEL

    def _build_request(self, text, system_prompt):
        body = {
            "model": self.model,
            "messages": build_messages(text, system_prompt),
            "stream": True,
        }
        return f"{self.ollama_url}/api/chat", body, {}

    async def _parse_stream(self, response):
        done = False
        async for line in response.aiter_lines():
            line = line.strip()
            if not line:
                continue
            chunk = load_chunk(line, self.name)
            content = (chunk.get("message") or {}).get("content", "")
            if content:
                yield content
            if chunk.get("done"):
                done = True
                break
        if not done:
            raise CompletionError(f"{self.name}: stream ended before completion", retryable=True)

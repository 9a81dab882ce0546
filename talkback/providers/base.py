"""Abstract base class for streaming completion providers."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx

from talkback.errors import CompletionError, provider_error_from_exception

logger = logging.getLogger(__name__)


class CompletionStreamer(ABC):
    """Turns a transcript into a lazy, ordered sequence of text fragments.

    One attempt per call; retry policy lives in the session controller.
    """

    name = "completion"

    def __init__(
        self,
        timeout: float = 90.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @abstractmethod
    def _build_request(self, text: str, system_prompt: str) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        """Return (url, json body, headers) for a streaming request."""
        pass

    @abstractmethod
    def _parse_stream(self, response: httpx.Response) -> AsyncIterator[str]:
        """Yield text fragments from the provider's streamed response body."""
        pass

    async def stream_completion(self, text: str, system_prompt: str) -> AsyncIterator[str]:
        """Stream the model's reply to ``text``.

        Yields non-empty fragments in generation order. Raises
        CompletionError if the request fails or the stream breaks off.
        """
        url, body, headers = self._build_request(text, system_prompt)
        try:
            async with self._client.stream("POST", url, json=body, headers=headers) as r:
                if r.status_code >= 400:
                    await r.aread()
                    logger.error("%s completion error %s: %s", self.name, r.status_code, r.text[:300])
                    r.raise_for_status()
                async for piece in self._parse_stream(r):
                    if piece:
                        yield piece
        except CompletionError:
            raise
        except Exception as e:
            raise provider_error_from_exception(e, CompletionError, self.name) from e

    async def aclose(self) -> None:
        await self._client.aclose()


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Payloads of the ``data:`` lines of a Server-Sent Events body."""
    async for line in response.aiter_lines():
        line = line.strip()
        if line.startswith("data:"):
            yield line[5:].strip()


def load_chunk(raw: str, provider: str) -> Dict[str, Any]:
    try:
        chunk = json.loads(raw)
    except ValueError as e:
        raise CompletionError(f"{provider}: malformed stream chunk") from e
    if not isinstance(chunk, dict):
        raise CompletionError(f"{provider}: malformed stream chunk")
    if chunk.get("error"):
        err = chunk["error"]
        message = err.get("message") if isinstance(err, dict) else str(err)
        raise CompletionError(f"{provider}: {message}", retryable=False)
    return chunk

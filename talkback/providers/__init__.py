"""Streaming completion providers."""

from talkback.errors import ConfigurationError
from talkback.providers.base import CompletionStreamer


def create_streamer(provider: str = "openai", **kwargs) -> CompletionStreamer:
    """Factory function to create a completion streamer based on provider name.

    Args:
        provider: "openai", "ollama" or "gemini"
        **kwargs: Passed to the streamer constructor (credentials, model, timeout, transport)

    Returns:
        CompletionStreamer instance

    Raises:
        ConfigurationError: If the provider is not supported
    """
    provider = (provider or "").strip().lower()

    if provider == "openai":
        from talkback.providers.openai import OpenAIStreamer
        return OpenAIStreamer(**kwargs)
    elif provider == "ollama":
        from talkback.providers.ollama import OllamaStreamer
        return OllamaStreamer(**kwargs)
    elif provider == "gemini":
        from talkback.providers.gemini import GeminiStreamer
        return GeminiStreamer(**kwargs)
    else:
        raise ConfigurationError(
            f"Unsupported completion provider: '{provider}'. "
            f"Supported providers are: 'openai', 'ollama', 'gemini'"
        )


__all__ = ["create_streamer", "CompletionStreamer"]

"""Talkback: record a clip, transcribe it, and stream an LLM annotation to the browser."""

__version__ = "0.1.0"

"""Exception hierarchy for Talkback."""

from __future__ import annotations

from typing import Optional

import httpx


class TalkbackError(Exception):
    """Base exception class for Talkback errors."""

    pass


class ConfigurationError(TalkbackError):
    """Raised when required settings are missing or invalid."""

    pass


class StateConflict(TalkbackError):
    """Raised on an invalid recording lifecycle transition."""

    pass


class AlreadyActive(StateConflict):
    pass


class NotRecording(StateConflict):
    pass


class AlreadyProcessing(StateConflict):
    pass


class DeviceError(TalkbackError):
    """Raised when the microphone cannot be used."""

    pass


class DeviceUnavailable(DeviceError):
    pass


class NoActiveCapture(DeviceError):
    pass


class AlreadyCapturing(DeviceError):
    pass


class ProviderError(TalkbackError):
    """Raised when a remote transcription or completion provider fails."""

    def __init__(self, message: str, *, retryable: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class TranscriptionError(ProviderError):
    pass


class CompletionError(ProviderError):
    pass


class StorageError(TalkbackError):
    """Raised when the conversation log cannot be written or read."""

    pass


class LogNotFound(StorageError):
    pass


def provider_error_from_exception(exc: Exception, error_cls: type = ProviderError, provider: str = "provider") -> ProviderError:
    """Collapse an httpx (or other) exception into a ProviderError.

    Transport failures, timeouts, 429 and 5xx responses are retryable;
    other 4xx responses (auth, bad request, unknown model) are not.
    """
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        retryable = status == 429 or status >= 500
        if status in (401, 403):
            message = f"{provider}: authentication failed (HTTP {status})"
        elif status == 404:
            message = f"{provider}: endpoint or model not found (HTTP {status})"
        elif status == 429:
            message = f"{provider}: rate limit exceeded (HTTP 429)"
        else:
            message = f"{provider}: HTTP {status}"
        return error_cls(message, retryable=retryable, status_code=status)
    if isinstance(exc, httpx.TimeoutException):
        return error_cls(f"{provider}: request timed out", retryable=True)
    if isinstance(exc, httpx.TransportError):
        return error_cls(f"{provider}: network error: {exc}", retryable=True)
    return error_cls(f"{provider}: {type(exc).__name__}: {exc}", retryable=False)

"""Test doubles shared by the session and gateway tests."""

import asyncio
import time
from pathlib import Path

from talkback.errors import CompletionError, DeviceUnavailable, NoActiveCapture, TranscriptionError
from talkback.models import AudioArtifact


class FakeInputStream:
    """Stands in for sounddevice.InputStream; tests push blocks through feed()."""

    instances = []

    def __init__(self, device=None, samplerate=None, channels=None, dtype=None, callback=None):
        self.kwargs = {"device": device, "samplerate": samplerate, "channels": channels, "dtype": dtype}
        self.callback = callback
        self.started = False
        self.closed = False
        FakeInputStream.instances.append(self)

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True

    def feed(self, block):
        self.callback(block, len(block), None, None)


class FakeCapture:
    def __init__(self, output_dir, open_delay=0.0, fail_open=False):
        self.output_dir = Path(output_dir)
        self.open_delay = open_delay
        self.fail_open = fail_open
        self.capturing = False
        self.begin_calls = 0
        self.aborted = False

    @property
    def is_capturing(self):
        return self.capturing

    def begin_capture(self):
        self.begin_calls += 1
        if self.fail_open:
            raise DeviceUnavailable("no microphone")
        if self.open_delay:
            time.sleep(self.open_delay)
        self.capturing = True

    def abort(self):
        self.aborted = True
        self.capturing = False

    def end_capture(self):
        if not self.capturing:
            raise NoActiveCapture("No capture in progress")
        self.capturing = False
        path = self.output_dir / f"clip-{time.time_ns()}.wav"
        path.write_bytes(b"RIFF0000WAVE")
        return AudioArtifact(path=str(path), sample_rate=16000, channels=1, num_frames=16000)


class FakeTranscriber:
    """Returns ``text`` after raising each exception in ``failures`` once."""

    def __init__(self, text="", failures=()):
        self.text = text
        self.failures = list(failures)
        self.calls = 0
        self.closed = False

    async def transcribe(self, artifact):
        self.calls += 1
        await asyncio.sleep(0)
        if self.failures:
            raise self.failures.pop(0)
        return self.text

    async def aclose(self):
        self.closed = True


class FakeStreamer:
    """Yields ``fragments``; raises ``fail_with`` after them when set.

    If ``gate`` is an asyncio.Event the stream waits on it after
    ``pause_after`` fragments.
    """

    def __init__(self, fragments=(), fail_with=None, gate=None, pause_after=0, failures=()):
        self.fragments = list(fragments)
        self.fail_with = fail_with
        self.gate = gate
        self.pause_after = pause_after
        self.failures = list(failures)
        self.calls = 0
        self.prompts = []

    async def stream_completion(self, text, system_prompt):
        self.calls += 1
        self.prompts.append((text, system_prompt))
        if self.failures:
            raise self.failures.pop(0)
        for i, piece in enumerate(self.fragments):
            if self.gate is not None and i == self.pause_after:
                await self.gate.wait()
            await asyncio.sleep(0)
            yield piece
        if self.fail_with is not None:
            raise self.fail_with

    async def aclose(self):
        pass


def transcription_error(retryable=False):
    return TranscriptionError("openai: HTTP 503" if retryable else "openai: authentication failed", retryable=retryable)


def completion_error(retryable=False):
    return CompletionError("openai: network error: reset", retryable=retryable)

"""Recording lifecycle state machine and the transcribe -> complete -> log pipeline."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from talkback.audio_capture import AudioCapture
from talkback.conversation_log import ConversationLog
from talkback.errors import (
    AlreadyActive,
    AlreadyProcessing,
    CompletionError,
    NotRecording,
    ProviderError,
    StorageError,
    TranscriptionError,
)
from talkback.event_bus import EventBus
from talkback.models import AudioArtifact, ErrorEvent, Fragment, Session, SessionState, Turn, TurnCommitted
from talkback.providers.base import CompletionStreamer
from talkback.transcriber import Transcriber

logger = logging.getLogger(__name__)


def console_echo(text: str) -> None:
    print(text, end="", flush=True)


class SessionController:
    """Owns the single Session and serializes every transition through one gate.

    start() and stop() never wait on provider I/O: stop() hands the artifact
    to a background task and returns. Calls that arrive in the wrong state are
    rejected with a StateConflict, never queued.
    """

    def __init__(
        self,
        capture: AudioCapture,
        transcriber: Transcriber,
        streamer: CompletionStreamer,
        bus: EventBus,
        log: ConversationLog,
        system_prompt: str,
        *,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        keep_audio: bool = True,
        echo: Optional[Callable[[str], None]] = console_echo,
    ):
        self.capture = capture
        self.transcriber = transcriber
        self.streamer = streamer
        self.bus = bus
        self.log = log
        self.system_prompt = system_prompt
        self.max_retries = max(0, int(max_retries))
        self.retry_backoff = max(0.0, float(retry_backoff))
        self.keep_audio = keep_audio
        self.echo = echo

        self.session = Session()
        self._gate = threading.Lock()
        self._pipeline: Optional[asyncio.Task] = None
        self._last_turn: Optional[Turn] = log.last()

    # ------------------------------------------------------------------
    # Lifecycle entry points

    @property
    def state(self) -> SessionState:
        with self._gate:
            return self.session.state

    def start(self) -> float:
        """Open the microphone and enter RECORDING. Returns the start time."""
        with self._gate:
            if self.session.state == SessionState.RECORDING:
                raise AlreadyActive("A recording is already in progress")
            if self.session.state == SessionState.PROCESSING:
                raise AlreadyProcessing("The previous recording is still being processed")

            # DeviceUnavailable propagates with the session still IDLE
            self.capture.begin_capture()
            self.session.state = SessionState.RECORDING
            self.session.started_at = time.time()
            logger.info("Session -> recording")
            return self.session.started_at

    def stop(self) -> AudioArtifact:
        """Finish the recording and launch the pipeline in the background."""
        with self._gate:
            if self.session.state == SessionState.IDLE:
                raise NotRecording("No recording in progress")
            if self.session.state == SessionState.PROCESSING:
                raise AlreadyProcessing("The previous recording is still being processed")

            try:
                artifact = self.capture.end_capture()
            except Exception:
                self.session.reset()
                logger.exception("Failed to finalize recording; session -> idle")
                raise

            self.session.state = SessionState.PROCESSING
            self.session.current_audio = artifact
            self.session.draft = ""
            self._pipeline = asyncio.get_running_loop().create_task(self._run_pipeline(artifact))
            logger.info("Session -> processing (%.2fs of audio)", artifact.duration_s)
            return artifact

    def last_turn(self) -> Optional[Turn]:
        """Most recently committed turn, or None before the first one."""
        with self._gate:
            return self._last_turn

    def status(self) -> Dict[str, Any]:
        with self._gate:
            started_at = self.session.started_at
            state = self.session.state
        return {
            "state": state.value,
            "started_at": started_at,
            "elapsed_s": round(time.time() - started_at, 2) if started_at else None,
            "subscribers": self.bus.subscriber_count,
            "turns_logged": len(self.log),
        }

    async def wait_idle(self) -> None:
        """Wait for a running pipeline (if any) to finish."""
        task = self._pipeline
        if task is not None and not task.done():
            await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Pipeline

    async def _with_retries(self, stage: str, call: Callable[[], Awaitable[Any]]) -> Any:
        attempt = 0
        while True:
            try:
                return await call()
            except ProviderError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                delay = self.retry_backoff * (2 ** attempt)
                attempt += 1
                logger.warning("%s failed (%s); retry %d/%d in %.2fs",
                               stage, e, attempt, self.max_retries, delay)
                await asyncio.sleep(delay)

    async def _stream_reply(self, transcript: str, fragments: List[str]) -> None:
        """Publish each fragment as it arrives; ``fragments`` collects them in order."""
        async for text in self.streamer.stream_completion(transcript, self.system_prompt):
            if not text:
                continue
            fragments.append(text)
            with self._gate:
                self.session.draft += text
            if self.echo:
                self.echo(text)
            self.bus.publish(Fragment(text=text, sequence=len(fragments)))

    async def _complete(self, transcript: str, fragments: List[str]) -> None:
        # A stream that already produced output is not retried, or viewers
        # would see the same fragments twice.
        attempt = 0
        while True:
            try:
                await self._stream_reply(transcript, fragments)
                return
            except CompletionError as e:
                if fragments or not e.retryable or attempt >= self.max_retries:
                    raise
                delay = self.retry_backoff * (2 ** attempt)
                attempt += 1
                logger.warning("completion failed (%s); retry %d/%d in %.2fs",
                               e, attempt, self.max_retries, delay)
                await asyncio.sleep(delay)

    async def _run_pipeline(self, artifact: AudioArtifact) -> None:
        try:
            try:
                transcript = await self._with_retries(
                    "transcription", lambda: self.transcriber.transcribe(artifact)
                )
            except TranscriptionError as e:
                logger.error("Transcription failed: %s", e)
                self.bus.publish(ErrorEvent(str(e), "transcription", e.retryable))
                return

            if self.echo:
                self.echo(f"[USER] {transcript}\n[ASSISTANT] ")

            fragments: List[str] = []
            complete = True
            try:
                await self._complete(transcript, fragments)
            except CompletionError as e:
                complete = False
                logger.error("Completion failed after %d fragments: %s", len(fragments), e)
                self.bus.publish(ErrorEvent(str(e), "completion", e.retryable))
            finally:
                if self.echo:
                    self.echo("\n")

            turn = Turn(transcript=transcript, response="".join(fragments), complete=complete)
            try:
                await asyncio.to_thread(self.log.append, turn)
            except StorageError as e:
                logger.error("Could not persist turn: %s", e)
                self.bus.publish(ErrorEvent(str(e), "storage"))
                return

            with self._gate:
                self._last_turn = turn
            self.bus.publish(TurnCommitted(turn))
            logger.info("Turn committed (%d chars, complete=%s)", len(turn.response), complete)
        except Exception as e:
            logger.exception("Pipeline crashed")
            self.bus.publish(ErrorEvent(f"{type(e).__name__}: {e}", "pipeline"))
        finally:
            self._discard_audio(artifact)
            with self._gate:
                self.session.reset()
            logger.info("Session -> idle")

    def _discard_audio(self, artifact: AudioArtifact) -> None:
        if self.keep_audio:
            return
        try:
            os.remove(artifact.path)
        except OSError as e:
            logger.warning("Could not remove %s: %s", artifact.path, e)

    async def aclose(self) -> None:
        with self._gate:
            if self.session.state == SessionState.RECORDING:
                self.capture.abort()
                self.session.reset()
                logger.info("Recording discarded at shutdown; session -> idle")
        await self.wait_idle()
        await self.transcriber.aclose()
        await self.streamer.aclose()

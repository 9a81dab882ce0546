"""FastAPI gateway for Talkback."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from talkback.audio_capture import AudioCapture, list_input_devices
from talkback.config import Config
from talkback.conversation_log import ConversationLog
from talkback.errors import ConfigurationError, DeviceError, LogNotFound, StateConflict, StorageError
from talkback.event_bus import EventBus, Subscriber, SubscriberClosed
from talkback.models import Event
from talkback.prompt import resolve_system_prompt
from talkback.providers import create_streamer
from talkback.session import SessionController
from talkback.transcriber import create_transcriber

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable buffering for nginx
}


# Response models
class TranscriptResponse(BaseModel):
    transcript: Optional[str] = None
    gpt_response: Optional[str] = None


class StatusResponse(BaseModel):
    state: str
    started_at: Optional[float] = None
    elapsed_s: Optional[float] = None
    subscribers: int
    turns_logged: int


def build_controller() -> SessionController:
    """Wire the production collaborators from Config. Fails fast on missing credentials."""
    missing = Config.validate()
    if missing:
        raise ConfigurationError("Missing required settings: " + ", ".join(missing))

    timeout = Config.PROVIDER_TIMEOUT_SECONDS
    capture = AudioCapture(
        output_dir=Config.AUDIO_DIR,
        sample_rate=Config.AUDIO_SAMPLE_RATE,
        channels=Config.AUDIO_CHANNELS,
        device=Config.AUDIO_DEVICE,
        max_seconds=Config.MAX_RECORDING_SECONDS,
    )
    return SessionController(
        capture=capture,
        transcriber=create_transcriber(Config.TRANSCRIPTION_PROVIDER, timeout=timeout),
        streamer=create_streamer(Config.COMPLETION_PROVIDER, timeout=timeout),
        bus=EventBus(Config.SUBSCRIBER_QUEUE_SIZE),
        log=ConversationLog(Config.CONVERSATION_LOG_PATH),
        system_prompt=resolve_system_prompt(Config.SYSTEM_PROMPT),
        max_retries=Config.PROVIDER_MAX_RETRIES,
        retry_backoff=Config.PROVIDER_RETRY_BACKOFF_SECONDS,
        keep_audio=Config.KEEP_AUDIO,
    )


def format_sse(event: Event) -> str:
    return f"data: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"


async def sse_events(
    subscriber: Subscriber,
    bus: EventBus,
    request: Request,
    heartbeat: float,
) -> AsyncIterator[str]:
    """Relay one subscriber's events as SSE until the client goes away or the bus closes."""
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                event = await subscriber.get(timeout=heartbeat)
            except SubscriberClosed:
                break
            if event is None:
                # Send heartbeat to keep connection alive
                yield ": heartbeat\n\n"
                continue
            yield format_sse(event)
    finally:
        bus.unsubscribe(subscriber)


def create_app(
    controller: Optional[SessionController] = None,
    *,
    static_dir: Optional[str] = None,
    heartbeat: Optional[float] = None,
) -> FastAPI:
    """Build the FastAPI app around an explicitly owned SessionController."""
    controller = controller or build_controller()
    static_path = Path(static_dir or Config.STATIC_DIR)
    heartbeat_s = heartbeat if heartbeat is not None else Config.SSE_HEARTBEAT_SECONDS

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Talkback ready (%d turns in log)", len(controller.log))
        yield
        controller.bus.close()
        await controller.aclose()
        logger.info("Talkback stopped")

    app = FastAPI(title="Talkback", lifespan=lifespan)
    app.state.controller = controller

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StateConflict)
    async def state_conflict_handler(request: Request, exc: StateConflict):
        logger.info("%s %s rejected: %s", request.method, request.url.path, type(exc).__name__)
        return JSONResponse(status_code=409, content={"error": type(exc).__name__, "detail": str(exc)})

    @app.exception_handler(DeviceError)
    async def device_error_handler(request: Request, exc: DeviceError):
        logger.error("%s %s device error: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"error": type(exc).__name__, "detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        status = 404 if isinstance(exc, LogNotFound) else 500
        logger.error("%s %s storage error: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc)})

    @app.get("/favicon.ico")
    async def favicon():
        """Return empty favicon to prevent 404 errors."""
        return Response(content="", media_type="image/x-icon")

    @app.get("/", response_class=HTMLResponse)
    async def serve_ui():
        """Serve the recording page."""
        index = static_path / "index.html"
        try:
            return HTMLResponse(content=index.read_text(encoding="utf-8"))
        except OSError as e:
            logger.error("Could not read %s: %s", index, e)
            return HTMLResponse(content="<h1>index.html not found</h1>", status_code=404)

    @app.post("/start_recording")
    async def start_recording():
        started_at = controller.start()
        return {"status": "recording", "started_at": started_at}

    @app.post("/stop_recording")
    async def stop_recording():
        artifact = controller.stop()
        return {"status": "processing", "audio": artifact.to_dict()}

    @app.get("/transcript", response_model=TranscriptResponse)
    async def transcript():
        """Last completed turn; both fields null before the first one."""
        turn = controller.last_turn()
        if turn is None:
            return TranscriptResponse()
        return TranscriptResponse(transcript=turn.transcript, gpt_response=turn.response)

    @app.get("/live_log")
    async def live_log(request: Request):
        """Stream pipeline events via Server-Sent Events."""
        subscriber = controller.bus.subscribe()
        return StreamingResponse(
            sse_events(subscriber, controller.bus, request, heartbeat_s),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.get("/conversation_log", response_class=PlainTextResponse)
    async def conversation_log():
        return PlainTextResponse(await asyncio.to_thread(controller.log.read_raw))

    @app.get("/status", response_model=StatusResponse)
    async def status():
        return controller.status()

    @app.get("/devices")
    async def devices():
        """Available input devices."""
        return list_input_devices()

    return app

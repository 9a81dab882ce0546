"""Data models for Talkback."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"


@dataclass
class AudioArtifact:
    """A finished recording written to disk as a WAV file."""
    path: str
    sample_rate: int
    channels: int
    num_frames: int

    @property
    def duration_s(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.num_frames / float(self.sample_rate)

    @property
    def size_bytes(self) -> int:
        try:
            return os.path.getsize(self.path)
        except OSError:
            return 0

    def to_dict(self):
        return {
            "path": self.path,
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "duration_s": round(self.duration_s, 3),
            "size_bytes": self.size_bytes,
        }


@dataclass(frozen=True)
class Turn:
    """One completed transcript + response pair."""
    transcript: str
    response: str
    timestamp: float = field(default_factory=lambda: time.time())
    complete: bool = True  # False when the completion stream failed part way

    def to_dict(self):
        return {
            "transcript": self.transcript,
            "response": self.response,
            "timestamp": self.timestamp,
            "complete": self.complete,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        return cls(
            transcript=str(data["transcript"]),
            response=str(data["response"]),
            timestamp=float(data.get("timestamp", 0.0)),
            complete=bool(data.get("complete", True)),
        )


@dataclass
class Session:
    """The single recording/processing lifecycle, owned by SessionController."""
    state: SessionState = SessionState.IDLE
    started_at: Optional[float] = None
    current_audio: Optional[AudioArtifact] = None
    draft: str = ""

    def reset(self):
        self.state = SessionState.IDLE
        self.started_at = None
        self.current_audio = None
        self.draft = ""


# Events distributed by the EventBus. Every serialized event carries "text"
# so the page can render any of them the same way.

@dataclass(frozen=True)
class Fragment:
    """A single increment of a streamed response."""
    text: str
    sequence: int

    def to_dict(self):
        return {"type": "fragment", "text": self.text, "sequence": self.sequence}


@dataclass(frozen=True)
class TurnCommitted:
    turn: Turn

    def to_dict(self):
        return {
            "type": "turn",
            "text": "",
            "transcript": self.turn.transcript,
            "gpt_response": self.turn.response,
            "complete": self.turn.complete,
            "ts": self.turn.timestamp,
        }


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    stage: str  # "transcription", "completion", "storage" or "pipeline"
    retryable: bool = False

    def to_dict(self):
        return {
            "type": "error",
            "text": f"[Error: {self.message}]",
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
        }


Event = Union[Fragment, TurnCommitted, ErrorEvent]

"""Append-only, durable record of every completed turn."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import List, Optional

from talkback.errors import LogNotFound, StorageError
from talkback.models import Turn

logger = logging.getLogger(__name__)


class ConversationLog:
    """JSON Lines file with an in-memory mirror.

    Each turn is one line, written with a single append + flush + fsync under
    a short lock. The mirror is updated only after the write succeeds, so
    read_all() is never staler than the last committed append and never
    shows a half-written turn.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._turns: List[Turn] = []
        try:
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch(exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create conversation log at {self.path}: {e}") from e
        self._load()

    def _load(self) -> None:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            raise StorageError(f"Cannot read conversation log {self.path}: {e}") from e

        for lineno, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                self._turns.append(Turn.from_dict(json.loads(line)))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Skipping malformed log line %d in %s: %s", lineno, self.path, e)
        logger.info("Loaded %d turns from %s", len(self._turns), self.path)

    def append(self, turn: Turn) -> None:
        line = json.dumps(turn.to_dict(), ensure_ascii=False) + "\n"
        with self._lock:
            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise StorageError(f"Failed to append turn to {self.path}: {e}") from e
            self._turns.append(turn)

    def read_all(self) -> List[Turn]:
        with self._lock:
            return list(self._turns)

    def read_raw(self) -> str:
        """The persisted log as a single text document."""
        with self._lock:
            try:
                return self.path.read_text(encoding="utf-8")
            except FileNotFoundError as e:
                raise LogNotFound(f"Conversation log {self.path} does not exist") from e
            except (OSError, UnicodeDecodeError) as e:
                raise StorageError(f"Cannot read conversation log {self.path}: {e}") from e

    def last(self) -> Optional[Turn]:
        with self._lock:
            return self._turns[-1] if self._turns else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._turns)

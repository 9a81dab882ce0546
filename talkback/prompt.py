from __future__ import annotations

from typing import Dict, List, Optional

# Default annotation behavior for a spoken note
DEFAULT_SYSTEM_PROMPT = """You are a friendly assistant annotating short spoken notes.
You receive the transcript of a voice recording that may contain recognition errors.

- Respond to what was said in a few sentences.
- Add one interesting, accurate fact related to the topic.
- If the transcript is empty or unintelligible, say that you could not make it out.
- Plain text only. No markdown."""


def resolve_system_prompt(override: Optional[str] = None) -> str:
    prompt = (override or "").strip()
    return prompt or DEFAULT_SYSTEM_PROMPT


def build_messages(transcript: str, system_prompt: str) -> List[Dict[str, str]]:
    """
    Chat-style message list shared by the providers that accept roles.
    An empty transcript is still sent so the model can say it heard nothing.
    """
    text = (transcript or "").strip()
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": text if text else "[No speech detected]"},
    ]

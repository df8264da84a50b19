"""
Transcript Log Module.

Append-only record of the conversation as shown to the user.
"""

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple


USER = "user"
ASSISTANT = "assistant"

GREETING = "Hello! I'm Sonic. How can I help you today?"


@dataclass(frozen=True)
class TranscriptMessage:
    """One exchange unit in the transcript."""
    id: str
    role: str
    text: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    used_tool: bool = False

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
            "used_tool": self.used_tool,
        }


class TranscriptLog:
    """
    Owns the transcript messages.

    Messages are appended in chronological order and never mutated or
    removed. Identifiers come from a counter so two messages created in the
    same millisecond still get distinct, ordered ids.
    """

    def __init__(self, greeting: Optional[str] = None):
        self._messages: List[TranscriptMessage] = []
        self._ids = itertools.count(1)
        if greeting:
            self._append(ASSISTANT, greeting, used_tool=False)

    def _append(self, role: str, text: str, used_tool: bool) -> TranscriptMessage:
        message = TranscriptMessage(
            id=f"msg-{next(self._ids)}",
            role=role,
            text=text,
            used_tool=used_tool,
        )
        self._messages.append(message)
        return message

    def append_user(self, text: str) -> TranscriptMessage:
        return self._append(USER, text, used_tool=False)

    def append_assistant(self, text: str, used_tool: bool = False) -> TranscriptMessage:
        return self._append(ASSISTANT, text, used_tool=used_tool)

    @property
    def messages(self) -> Tuple[TranscriptMessage, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def to_list(self) -> List[Dict]:
        return [message.to_dict() for message in self._messages]

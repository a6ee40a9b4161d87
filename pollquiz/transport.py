"""
Transport capability consumed by quiz sessions.

A transport delivers polls and text to a chat. Sessions only ever talk to the
outside world through this interface.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

MAX_MESSAGE_LENGTH = 2000


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """
    Split text into chunks of at most limit characters.

    Breaks at line boundaries where possible; single lines longer than the
    limit are hard-wrapped.
    """
    if len(text) <= limit:
        return [text]

    chunks = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if current and len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return chunks


class Transport(ABC):
    """Outbound messaging for one chat platform."""

    @abstractmethod
    async def send_poll(self, chat_id: str, question_text: str, options: Sequence[str]) -> str:
        """Send a single-choice poll and return the platform's poll identifier."""

    @abstractmethod
    async def send_text(self, chat_id: str, text: str, mentions: Optional[Sequence[str]] = None) -> None:
        """Send a text message, optionally mentioning the given user ids."""

    async def close_poll(self, chat_id: str, poll_id: str) -> None:
        """Called once a poll's question has closed. Optional."""

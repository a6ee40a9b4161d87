"""
Core data models for the quiz bot.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

OPTION_COUNT = 4


@dataclass
class Question:
    """A canonical quiz question: exactly four options and a resolved answer."""
    text: str
    options: List[str]
    correct_index: int = 0
    explanation: str = ""

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_index]


@dataclass
class QuizSettings:
    """Default settings applied to new quiz sessions."""
    question_count: Optional[int] = None
    random_order: bool = False
    timer_duration: int = 30
    difficulty: str = "medium"


@dataclass
class GenerationRequest:
    """What to ask the AI for when generating a quiz."""
    topic: str = "General"
    quantity: int = 10
    difficulty: str = "medium"


@dataclass(frozen=True)
class ProviderCandidate:
    """One (model, credential) slot in the provider fallback order."""
    model: str
    credential_index: int = 0


@dataclass
class PollRecord:
    """Bookkeeping for one open poll, keyed by the transport's poll id."""
    chat_id: str
    question_index: int
    correct_index: int
    options: Tuple[str, ...] = field(default_factory=tuple)


class SessionStatus(Enum):
    """Lifecycle states of a quiz session."""
    ACTIVE = "active"
    STOPPED = "stopped"
    FINISHED = "finished"

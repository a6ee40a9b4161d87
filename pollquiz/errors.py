"""
Exception hierarchy for the quiz bot.

User-facing errors carry a ``user_message`` that command handlers send back
to the chat unchanged.
"""
from typing import Optional


class QuizError(Exception):
    """Base exception for quiz bot errors."""

    user_message = "❌ Something went wrong with the quiz."


class AlreadyActiveError(QuizError):
    """Raised when a quiz is started in a chat that already has one running."""

    user_message = "⚠️ A quiz is already running in this chat. Use `/stop` to end it first."

    def __init__(self, chat_id):
        super().__init__(f"Quiz already active in chat {chat_id}")
        self.chat_id = chat_id


class QuizCancelledError(QuizError):
    """Raised when a quiz is stopped while its questions are still being prepared."""

    user_message = "🛑 The quiz was stopped before it started."

    def __init__(self, chat_id):
        super().__init__(f"Quiz start cancelled in chat {chat_id}")
        self.chat_id = chat_id


class ModelNotFoundError(QuizError):
    """Provider reports that the requested model does not exist."""


class RateLimitedError(QuizError):
    """Provider reports rate limiting or an exhausted quota."""


class AllProvidersExhaustedError(QuizError):
    """Every provider candidate failed; ``last_error`` holds the final failure."""

    user_message = "❌ The AI service is unavailable right now. Please try again in a few minutes."

    def __init__(self, last_error: Optional[BaseException] = None):
        message = "All AI providers failed"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)
        self.last_error = last_error


class NoJsonFoundError(QuizError):
    """The AI response contained no JSON object."""

    user_message = "❌ The AI returned an unreadable quiz. Please try again."


class EmptyResultError(QuizError):
    """Question generation or loading produced no usable questions."""

    user_message = "❌ No questions could be generated for that topic."

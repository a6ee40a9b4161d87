"""
Question timers for the quiz bot.

A QuizTimer owns one asyncio task that waits for a question's time limit and
then fires a callback exactly once, unless it is cancelled first.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

# Set up logger for timer operations
logger = logging.getLogger(__name__)


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_created(chat_id: str, delay: float, question_index: int) -> None:
        """Log timer scheduling."""
        logger.debug(
            f"Timer lifecycle: CREATED - Chat {chat_id}, Q{question_index + 1}, Delay {delay:.3f}s",
            extra={
                'event_type': 'timer_created',
                'chat_id': chat_id,
                'delay': delay,
                'question_index': question_index,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_completion(chat_id: str, completion_type: str, question_index: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.debug(
            f"Timer lifecycle: COMPLETED - Chat {chat_id}, Q{question_index + 1}, Type {completion_type}",
            extra={
                'event_type': 'timer_completed',
                'chat_id': chat_id,
                'completion_type': completion_type,
                'question_index': question_index,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(chat_id: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Chat {chat_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'chat_id': chat_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(chat_id: str, details: str) -> None:
        """Log race condition detection."""
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - Chat {chat_id}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'chat_id': chat_id,
                'details': details,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """One cancellable, fire-once countdown for a quiz session."""

    def __init__(self, chat_id: str = None):
        """Initialize the timer."""
        self._task: Optional[asyncio.Task] = None
        self._chat_id = chat_id
        self._question_index = -1

    def start(self, delay: float, callback: Callable[[], Awaitable[Any]], question_index: int = 0) -> asyncio.Task:
        """
        Schedule callback to run once after delay seconds.

        Any timer already running on this instance is cancelled first, so a
        session never has two countdowns pending.

        Args:
            delay: Seconds to wait
            callback: Coroutine function invoked on expiry
            question_index: Question the countdown belongs to, for logging

        Returns:
            The asyncio task running the countdown
        """
        if self.is_running and self._task is not asyncio.current_task():
            TimerLifecycleLogger.log_race_condition_detected(
                self._chat_id,
                f"Timer for Q{self._question_index + 1} still running when Q{question_index + 1} started"
            )
            self._task.cancel()

        self._question_index = question_index
        self._task = asyncio.create_task(self._run(delay, callback, question_index))
        TimerLifecycleLogger.log_timer_created(self._chat_id, delay, question_index)
        return self._task

    async def _run(self, delay: float, callback: Callable[[], Awaitable[Any]], question_index: int) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            TimerLifecycleLogger.log_timer_completion(self._chat_id, "cancelled", question_index)
            raise

        TimerLifecycleLogger.log_timer_completion(self._chat_id, "natural_expiry", question_index)
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(self._chat_id, type(e).__name__, str(e), "timer_callback")

    def cancel(self) -> bool:
        """
        Cancel the pending countdown.

        Returns:
            True if a running task was cancelled, False if nothing was pending
        """
        if self._task is None or self._task.done():
            return False
        if self._task is asyncio.current_task():
            # The callback itself asked to stop; it unwinds on its own.
            return False
        self._task.cancel()
        return True

    async def wait_cancelled(self) -> None:
        """Wait until a cancelled countdown task has fully unwound."""
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(self._chat_id, type(e).__name__, str(e), "wait_cancelled")

    @property
    def is_running(self) -> bool:
        """Check if a countdown task is pending."""
        return self._task is not None and not self._task.done()

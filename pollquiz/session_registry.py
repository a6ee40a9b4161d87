"""
Session registry for the quiz bot.

Maps each chat to at most one running QuizSession, routes votes to it, and
forgets sessions once they finish or are stopped.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Set

from .errors import AlreadyActiveError, QuizCancelledError
from .question_source import QuestionSource
from .quiz_session import DEFAULT_INTER_QUESTION_PAUSE, QuizSession
from .transport import Transport


class SessionRegistry:
    """
    Owns the chat -> session mapping.

    A chat is busy from the moment a quiz start is accepted (including while
    its questions are being generated) until its session finishes or is
    stopped.
    """

    def __init__(
        self,
        transport: Transport,
        default_timer: int = 30,
        inter_question_pause: float = DEFAULT_INTER_QUESTION_PAUSE,
    ):
        """
        Args:
            transport: Outbound messaging shared by all sessions
            default_timer: Seconds per question when a start request gives none
            inter_question_pause: Pause between questions for new sessions
        """
        self.logger = logging.getLogger(__name__)
        self.transport = transport
        self.default_timer = default_timer
        self.inter_question_pause = inter_question_pause

        self._sessions: Dict[str, QuizSession] = {}
        self._pending: Set[str] = set()
        # pending chats whose start was stopped before the session existed
        self._cancelled: Set[str] = set()
        self._lock = asyncio.Lock()

        self.logger.info("SessionRegistry initialized")

    def is_active(self, chat_id: str) -> bool:
        """Check if a chat has a running quiz or one being prepared."""
        return chat_id in self._sessions or chat_id in self._pending

    def get_session(self, chat_id: str) -> Optional[QuizSession]:
        return self._sessions.get(chat_id)

    def active_chat_ids(self) -> List[str]:
        return list(self._sessions)

    async def start_quiz(
        self,
        chat_id: str,
        source: QuestionSource,
        timer_seconds: Optional[int] = None,
        topic: Optional[str] = None,
        before_start: Optional[Callable[[QuizSession], Awaitable[None]]] = None,
    ) -> QuizSession:
        """
        Load questions from source and start a quiz in chat_id.

        Args:
            chat_id: Chat to run the quiz in
            source: Static or generated question source
            timer_seconds: Seconds per question, default_timer if None
            topic: Quiz title, the source's topic if None
            before_start: Awaited with the new session just before its first poll

        Returns:
            The running QuizSession

        Raises:
            AlreadyActiveError: If the chat already has a quiz
            QuizCancelledError: If the quiz was stopped while its questions loaded
            QuizError: Whatever the question source raised
        """
        async with self._lock:
            if self.is_active(chat_id):
                self.logger.warning(f"Attempted to start quiz in chat {chat_id} but one is already active")
                raise AlreadyActiveError(chat_id)
            self._pending.add(chat_id)

        try:
            questions = await source.get_questions()
            if chat_id in self._cancelled:
                self.logger.info(f"Quiz start in chat {chat_id} was stopped during preparation")
                raise QuizCancelledError(chat_id)
            session = QuizSession(
                chat_id=chat_id,
                questions=questions,
                timer_seconds=timer_seconds if timer_seconds is not None else self.default_timer,
                topic=topic or source.topic,
                transport=self.transport,
                on_closed=self._on_session_closed,
                inter_question_pause=self.inter_question_pause,
            )
            async with self._lock:
                self._sessions[chat_id] = session
        finally:
            self._pending.discard(chat_id)
            self._cancelled.discard(chat_id)

        self.logger.info(
            f"Created quiz session for chat {chat_id}: topic='{session.topic}', questions={session.total_questions}",
            extra={
                'event_type': 'session_created',
                'chat_id': chat_id,
                'total_questions': session.total_questions,
                'timestamp': time.time()
            }
        )
        if before_start is not None:
            try:
                await before_start(session)
            except Exception as e:
                self.logger.error(f"Error in quiz start hook for chat {chat_id}: {e}")
        await session.start()
        return session

    async def stop_quiz(self, chat_id: str) -> bool:
        """
        Stop the quiz in chat_id.

        Returns:
            True if a quiz was stopped or its pending start cancelled,
            False if there was none
        """
        session = self._sessions.get(chat_id)
        if session is None and chat_id in self._pending:
            self._cancelled.add(chat_id)
            self.logger.info(f"Cancelling quiz start in chat {chat_id} while questions load")
            return True
        if session is None:
            self.logger.debug(f"No quiz to stop in chat {chat_id}")
            return False

        stopped = await session.stop()
        self._forget(session)
        return stopped

    async def route_vote(self, chat_id: str, poll_id: str, voter_id: str, option_text: str) -> bool:
        """
        Forward a poll vote to the chat's session.

        Votes for chats without a running quiz are dropped silently.

        Returns:
            True if the vote was credited
        """
        session = self._sessions.get(chat_id)
        if session is None:
            self.logger.debug(f"Dropping vote for chat {chat_id}: no active quiz")
            return False
        return await session.record_vote(poll_id, voter_id, option_text)

    async def shutdown(self) -> None:
        """Stop every running quiz."""
        for chat_id in list(self._sessions):
            try:
                await self.stop_quiz(chat_id)
            except Exception as e:
                self.logger.error(f"Error stopping quiz in chat {chat_id} during shutdown: {e}")

    def _forget(self, session: QuizSession) -> None:
        if self._sessions.get(session.chat_id) is session:
            del self._sessions[session.chat_id]

    async def _on_session_closed(self, session: QuizSession) -> None:
        self._forget(session)
        self.logger.info(
            f"Released quiz session for chat {session.chat_id} ({session.status.value})",
            extra={
                'event_type': 'session_released',
                'chat_id': session.chat_id,
                'status': session.status.value,
                'timestamp': time.time()
            }
        )

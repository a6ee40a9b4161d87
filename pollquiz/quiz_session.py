"""
Quiz session state machine.

One QuizSession runs one quiz in one chat: it opens a poll per question,
credits votes at most once per voter per question, advances on a timer, and
finishes with a ranked scoreboard and an answer key.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from .models import PollRecord, Question, SessionStatus
from .quiz_engine import QuizTimer
from .transport import Transport, split_message

logger = logging.getLogger(__name__)

MIN_TIMER_DELAY = 0.1
DEFAULT_INTER_QUESTION_PAUSE = 2.0
SCOREBOARD_SIZE = 10
MEDALS = ("🥇", "🥈", "🥉")
DIVIDER = "──────────────────"


def normalize_answer(text) -> str:
    return str(text).strip().lower() if text is not None else ""


def answers_match(selected: str, correct: str) -> bool:
    """
    Compare a voted option with the correct option.

    Case-insensitive and trimmed. Unequal strings still match when one
    contains the other and the contained string is longer than two
    characters, which tolerates transports that truncate or echo option text.
    """
    vote = normalize_answer(selected)
    answer = normalize_answer(correct)
    if not vote:
        return False
    if vote == answer:
        return True
    return (len(vote) > 2 and vote in answer) or (len(answer) > 2 and answer in vote)


class QuizSession:
    """A single running quiz in one chat."""

    def __init__(
        self,
        chat_id: str,
        questions: List[Question],
        timer_seconds: float,
        topic: str,
        transport: Transport,
        on_closed: Optional[Callable[["QuizSession"], Awaitable[None]]] = None,
        inter_question_pause: float = DEFAULT_INTER_QUESTION_PAUSE,
    ):
        """
        Args:
            chat_id: Chat the quiz runs in
            questions: Canonical questions, asked in order
            timer_seconds: Time each poll stays open
            topic: Shown on the scoreboard and answer key
            transport: Outbound polls and messages
            on_closed: Awaited once when the session finishes or is stopped
            inter_question_pause: Pause between closing one poll and opening the next
        """
        if not questions:
            raise ValueError("A quiz session needs at least one question")

        self.chat_id = chat_id
        self.questions = list(questions)
        self.timer_seconds = timer_seconds
        self.topic = topic
        self.transport = transport
        self.inter_question_pause = inter_question_pause
        self._on_closed = on_closed

        self.status = SessionStatus.ACTIVE
        self.current_index = 0
        self.scores: Dict[str, int] = {}
        self.credited_votes: Set[Tuple[int, str]] = set()
        self.poll_records: Dict[str, PollRecord] = {}
        self.active_poll_id: Optional[str] = None
        self.started_at = time.time()

        self._lock = asyncio.Lock()
        self._timer = QuizTimer(chat_id)
        self._closed = False

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    async def start(self) -> None:
        """Open the first question."""
        logger.info(
            f"Starting quiz '{self.topic}' with {self.total_questions} questions in chat {self.chat_id}",
            extra={
                'event_type': 'session_started',
                'chat_id': self.chat_id,
                'total_questions': self.total_questions,
                'timer_seconds': self.timer_seconds,
                'timestamp': time.time()
            }
        )
        await self.open_question(0)

    async def open_question(self, index: int) -> None:
        """Send the poll for question index and schedule its closing timer."""
        async with self._lock:
            await self._open_question(index)

    async def _open_question(self, index: int) -> None:
        if not self.is_active or index != self.current_index:
            logger.debug(f"Not opening Q{index + 1} in chat {self.chat_id}: status={self.status.value}, current={self.current_index}")
            return

        question = self.questions[index]
        send_started = time.monotonic()
        poll_id = None
        try:
            poll_id = await self.transport.send_poll(
                self.chat_id, f"Q{index + 1}: {question.text}", list(question.options)
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"Failed to send poll for Q{index + 1} in chat {self.chat_id}, skipping question: {e}",
                extra={
                    'event_type': 'poll_send_failed',
                    'chat_id': self.chat_id,
                    'question_index': index,
                    'timestamp': time.time()
                }
            )
        send_latency = time.monotonic() - send_started

        if not self.is_active:
            return

        if poll_id is not None:
            poll_id = str(poll_id)
            self.poll_records[poll_id] = PollRecord(
                chat_id=self.chat_id,
                question_index=index,
                correct_index=question.correct_index,
                options=tuple(question.options),
            )
            self.active_poll_id = poll_id
            logger.info(f"Poll sent: Q{index + 1}/{self.total_questions} in chat {self.chat_id}, poll id {poll_id}")
            delay = max(MIN_TIMER_DELAY, self.timer_seconds - send_latency)
        else:
            delay = MIN_TIMER_DELAY

        self._timer.start(delay, lambda: self.close_question(index), question_index=index)

    def _credit_vote(self, poll_id: str, voter_id: str, selected_option_text: str) -> bool:
        record = self.poll_records.get(str(poll_id))
        if record is None:
            logger.debug(f"No open poll {poll_id} in chat {self.chat_id}, ignoring vote")
            return False
        if not self.is_active or record.question_index != self.current_index:
            logger.debug(
                f"Stale vote for Q{record.question_index + 1} in chat {self.chat_id} "
                f"(current Q{self.current_index + 1})"
            )
            return False

        vote_key = (record.question_index, voter_id)
        if vote_key in self.credited_votes:
            logger.debug(f"Already credited {voter_id} for Q{record.question_index + 1} in chat {self.chat_id}")
            return False

        self.credited_votes.add(vote_key)
        self.scores.setdefault(voter_id, 0)

        correct_text = record.options[record.correct_index]
        is_correct = answers_match(selected_option_text, correct_text)
        if is_correct:
            self.scores[voter_id] += 1

        logger.info(
            f"Vote: {voter_id} on Q{record.question_index + 1} in chat {self.chat_id} | correct: {is_correct}",
            extra={
                'event_type': 'vote_credited',
                'chat_id': self.chat_id,
                'voter_id': voter_id,
                'question_index': record.question_index,
                'correct': is_correct,
                'timestamp': time.time()
            }
        )
        return True

    async def record_vote(self, poll_id: str, voter_id: str, selected_option_text: str) -> bool:
        """
        Credit a voter's answer to the current question.

        Only the first vote event per voter per question counts; later ones,
        votes on closed polls, and unknown polls are ignored.

        Returns:
            True if this call credited the vote, False if it was ignored
        """
        try:
            async with self._lock:
                return self._credit_vote(poll_id, voter_id, selected_option_text)
        except Exception as e:
            logger.error(f"Error recording vote from {voter_id} in chat {self.chat_id}: {e}", exc_info=True)
            return False

    async def close_question(self, index: int) -> None:
        """Close question index, then open the next one or finish the quiz."""
        async with self._lock:
            if not self.is_active or index != self.current_index:
                logger.debug(f"Ignoring close of Q{index + 1} in chat {self.chat_id}")
                return

            for poll_id in [pid for pid, record in self.poll_records.items() if record.question_index == index]:
                del self.poll_records[poll_id]
                await self._close_poll(poll_id)
            self.active_poll_id = None
            self.current_index += 1

            if self.current_index >= self.total_questions:
                await self._finish()
                return

        await asyncio.sleep(self.inter_question_pause)

        async with self._lock:
            await self._open_question(self.current_index)

    async def _close_poll(self, poll_id: str) -> None:
        try:
            await self.transport.close_poll(self.chat_id, poll_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Failed to close poll {poll_id} in chat {self.chat_id}: {e}")

    def ranking(self) -> List[Tuple[str, int]]:
        """Scores in descending order; ties keep first-credited order."""
        return sorted(self.scores.items(), key=lambda item: item[1], reverse=True)

    def format_scoreboard(self) -> Tuple[str, List[str]]:
        """Scoreboard text and the voter ids it mentions."""
        ranked = self.ranking()[:SCOREBOARD_SIZE]
        lines = ["🏆 **RANK LIST** 🏆", f"**Subject:** {self.topic}", DIVIDER]
        if not ranked:
            lines.append("No votes.")
        for position, (voter_id, score) in enumerate(ranked):
            badge = MEDALS[position] if position < len(MEDALS) else f"{position + 1}."
            lines.append(f"{badge} @{voter_id} : {score}/{self.total_questions}")
        lines.append(DIVIDER)
        return "\n".join(lines), [voter_id for voter_id, _ in ranked]

    def format_answer_key(self) -> str:
        parts = [f"📘 **DETAILED SOLUTIONS** 📘\n**Topic:** {self.topic}\n{DIVIDER}\n"]
        for number, question in enumerate(self.questions, start=1):
            parts.append(
                f"**Q{number}.** {question.text}\n"
                f"✅ {question.correct_option}\n"
                f"💡 {question.explanation}\n"
                f"{DIVIDER}\n"
            )
        return "\n".join(parts)

    async def _finish(self) -> None:
        self.status = SessionStatus.FINISHED
        logger.info(
            f"Quiz '{self.topic}' finished in chat {self.chat_id} with {len(self.scores)} participants",
            extra={
                'event_type': 'session_finished',
                'chat_id': self.chat_id,
                'participants': len(self.scores),
                'timestamp': time.time()
            }
        )

        try:
            await self._send_results()
        finally:
            await self._release()

    async def _send_results(self) -> None:
        scoreboard, mentions = self.format_scoreboard()
        try:
            await self.transport.send_text(self.chat_id, scoreboard, mentions)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to send scoreboard to chat {self.chat_id}: {e}")

        for chunk in split_message(self.format_answer_key()):
            try:
                await self.transport.send_text(self.chat_id, chunk)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Failed to send answer key to chat {self.chat_id}: {e}")
                break

    async def stop(self) -> bool:
        """
        Cancel the quiz. Safe to call more than once.

        Once this returns no further poll is opened and no timer fires.

        Returns:
            True if the session was running, False if it had already ended
        """
        if not self.is_active:
            return False

        self.status = SessionStatus.STOPPED
        self._timer.cancel()
        await self._timer.wait_cancelled()

        async with self._lock:
            await self._release()

        logger.info(
            f"Stopped quiz '{self.topic}' in chat {self.chat_id} at Q{self.current_index + 1}",
            extra={
                'event_type': 'session_stopped',
                'chat_id': self.chat_id,
                'question_index': self.current_index,
                'timestamp': time.time()
            }
        )
        return True

    async def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._timer.cancel()
        for poll_id in list(self.poll_records):
            await self._close_poll(poll_id)
        self.poll_records.clear()
        self.active_poll_id = None

        if self._on_closed is not None:
            try:
                await self._on_closed(self)
            except Exception as e:
                logger.error(f"Error releasing session for chat {self.chat_id}: {e}")

    def get_progress(self) -> Dict[str, object]:
        """Snapshot of the session for status displays."""
        return {
            'chat_id': self.chat_id,
            'topic': self.topic,
            'status': self.status.value,
            'current_question': min(self.current_index + 1, self.total_questions),
            'total_questions': self.total_questions,
            'timer_seconds': self.timer_seconds,
            'participants': len(self.scores),
            'elapsed_seconds': time.time() - self.started_at,
        }

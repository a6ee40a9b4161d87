"""
Question sources: hand-authored question lists and AI-generated quizzes.
"""
import asyncio
import json
import logging
import random
import re
from typing import Any, Callable, List, Optional

from .document_extractor import extract_text
from .errors import EmptyResultError, NoJsonFoundError
from .models import GenerationRequest, Question
from .normalizer import normalize_questions

logger = logging.getLogger(__name__)

MAX_DOCUMENT_CHARS = 100_000
GENERAL_TOPICS = ("", "general", "pdf content")

SYSTEM_PROMPT = "You are a quiz generator. Output strictly JSON."

RESPONSE_FORMAT = """Format:
{{
  "type": "quiz_batch",
  "topic": "{topic}",
  "quizzes": [
    {{
      "question": "Question",
      "options": ["A", "B", "C", "D"],
      "correct_index": 0,
      "answer_explanation": "Explanation"
    }}
  ]
}}"""

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


def extract_json_object(text: str) -> dict:
    """
    Pull the first JSON object out of a model response.

    Code fences and any prose around the object are ignored.

    Raises:
        NoJsonFoundError: If no object-shaped substring parses
    """
    cleaned = _FENCE_PATTERN.sub("", text or "").strip()
    decoder = json.JSONDecoder()

    start = cleaned.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(cleaned, start)
        except json.JSONDecodeError:
            start = cleaned.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = cleaned.find("{", start + 1)

    raise NoJsonFoundError("No valid JSON object found in AI response")


def select_questions(questions: List[Question], count: Optional[int] = None, random_order: bool = False) -> List[Question]:
    """
    Order and limit questions.

    Args:
        questions: Available questions
        count: Maximum number of questions, or None for all
        random_order: Shuffle before limiting

    Returns:
        New list of selected questions
    """
    selected = list(questions)
    if random_order:
        random.shuffle(selected)
    if count is not None:
        selected = selected[:max(0, count)]
    return selected


class QuestionSource:
    """Produces the ordered list of canonical questions for one quiz."""

    topic = "General"

    async def get_questions(self) -> List[Question]:
        raise NotImplementedError


class StaticQuestionSource(QuestionSource):
    """Questions supplied directly, canonical or raw records."""

    def __init__(self, records: List[Any], topic: str = "General",
                 question_count: Optional[int] = None, random_order: bool = False):
        self.records = list(records or [])
        self.topic = topic
        self.question_count = question_count
        self.random_order = random_order

    async def get_questions(self) -> List[Question]:
        questions = select_questions(normalize_questions(self.records), self.question_count, self.random_order)
        if not questions:
            raise EmptyResultError(f"No questions available for '{self.topic}'")
        return questions


class GeneratedQuestionSource(QuestionSource):
    """Questions generated by the AI client, optionally from a source document."""

    def __init__(
        self,
        ai_client,
        request: GenerationRequest,
        document: Optional[bytes] = None,
        extractor: Callable[[bytes], str] = extract_text,
        retriever=None,
    ):
        """
        Args:
            ai_client: AIClient (or anything with an async complete())
            request: Topic, quantity, and difficulty to generate
            document: Raw PDF bytes, or None for a topic-only quiz
            extractor: Document-to-text function, must not raise
            retriever: Optional ContextRetriever used to focus long documents on the topic
        """
        self.ai_client = ai_client
        self.request = request
        self.document = document
        self.extractor = extractor
        self.retriever = retriever
        self.topic = request.topic or "General"

    @property
    def has_specific_topic(self) -> bool:
        return self.topic.strip().lower() not in GENERAL_TOPICS

    async def _document_text(self) -> str:
        if not self.document:
            return ""

        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(None, self.extractor, self.document)
        if not text:
            logger.warning("Source document yielded no text, generating from topic only")
            return ""

        if self.retriever is not None and self.has_specific_topic:
            context = await self.retriever.retrieve(text, self.topic)
            if context:
                text = context

        if len(text) > MAX_DOCUMENT_CHARS:
            logger.warning(f"Document too large ({len(text)} chars), truncating to {MAX_DOCUMENT_CHARS}")
            text = text[:MAX_DOCUMENT_CHARS] + "...[truncated]"
        return text

    def build_prompt(self, document_text: str) -> str:
        request = self.request
        instructions = []
        if document_text:
            if self.has_specific_topic:
                instructions.append(
                    f'CRITICAL: Extract ONLY questions about "{self.topic}". '
                    "If there are none, return an empty quizzes array."
                )
            else:
                instructions.append("Extract questions from all topics.")
        else:
            instructions.append(f'Create a quiz about "{self.topic}".')
        instructions.append(f"Generate exactly {request.quantity} multiple-choice questions.")
        instructions.append(f"Difficulty: {request.difficulty}")

        sections = []
        if document_text:
            sections.append(f"Context:\n{document_text}")
        sections.append("Instructions:\n" + "\n".join(instructions))
        sections.append(RESPONSE_FORMAT.format(topic=self.topic))
        return "\n\n".join(sections)

    async def get_questions(self) -> List[Question]:
        """
        Generate, parse, and normalize a quiz.

        Raises:
            AllProvidersExhaustedError: If no AI provider answered
            NoJsonFoundError: If the response held no JSON object
            EmptyResultError: If no questions survived parsing
        """
        document_text = await self._document_text()
        prompt = self.build_prompt(document_text)

        logger.info(
            f"Generating {self.request.quantity} '{self.request.difficulty}' questions on '{self.topic}' "
            f"({len(document_text)} chars of context)"
        )
        response_text = await self.ai_client.complete(SYSTEM_PROMPT, prompt, json_mode=True)

        data = extract_json_object(response_text)
        records = data.get("quizzes") or data.get("questions") or []
        if not isinstance(records, list):
            records = []

        questions = normalize_questions(records)
        if not questions:
            raise EmptyResultError(f'No questions generated for topic "{self.topic}"')

        logger.info(f"Generated {len(questions)} questions on '{self.topic}'")
        return questions

"""
Question normalizer.

Turns loosely-typed question records, whether authored by hand or returned
by an AI model, into canonical ``Question`` objects. Normalization never
fails: anything missing or malformed degrades to a usable default.
"""
import logging
from typing import Any, Iterable, List, Optional

from .models import OPTION_COUNT, Question

logger = logging.getLogger(__name__)

DEFAULT_OPTIONS = ("True", "False")
DEFAULT_EXPLANATION = "No explanation provided"


def _first_present(record: dict, *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _as_index(value: Any) -> Optional[int]:
    """Interpret a numeric answer as an option index, or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def normalize_options(raw_options: Any) -> List[str]:
    """
    Coerce an options value into exactly four trimmed strings.

    Short lists are padded with "Option C", "Option D" style labels and long
    lists are truncated.
    """
    if isinstance(raw_options, (list, tuple)) and raw_options:
        options = [str(option).strip() for option in raw_options if option is not None]
    else:
        options = list(DEFAULT_OPTIONS)

    while len(options) < OPTION_COUNT:
        options.append(f"Option {chr(ord('A') + len(options))}")

    return options[:OPTION_COUNT]


def resolve_correct_index(record: dict, options: List[str]) -> int:
    """
    Work out which option is correct.

    Tried in order: a numeric index, an exact option match, a single answer
    letter, a case-insensitive substring match, and finally index 0.
    """
    for key in ("correct_index", "correctAnswer", "answer"):
        index = _as_index(record.get(key))
        if index is None and key == "correct_index" and isinstance(record.get(key), str):
            text = record[key].strip()
            index = int(text) if text.isdigit() else None
        if index is not None and 0 <= index < len(options):
            return index

    answer = _first_present(record, "correctAnswer", "answer")
    if not isinstance(answer, str) or not answer.strip():
        return 0
    answer = answer.strip()

    for index, option in enumerate(options):
        if option.strip() == answer:
            return index

    if len(answer) == 1 and answer.isalpha():
        index = ord(answer.upper()) - ord('A')
        if 0 <= index < len(options):
            return index

    lowered = answer.lower()
    for index, option in enumerate(options):
        if lowered in option.lower():
            return index

    return 0


def _canonical_question(question: Question) -> Question:
    """Return question itself when it is canonical, otherwise a repaired copy."""
    options = normalize_options(question.options)
    correct_index = _as_index(question.correct_index)
    if correct_index is None or not 0 <= correct_index < len(options):
        correct_index = 0
    if options == list(question.options) and correct_index == question.correct_index:
        return question

    logger.warning(f"Repairing malformed question '{question.text}'")
    return Question(
        text=question.text,
        options=options,
        correct_index=correct_index,
        explanation=question.explanation or DEFAULT_EXPLANATION,
    )


def normalize_question(record: Any, index: int = 0) -> Question:
    """
    Build a canonical Question from a raw record.

    Args:
        record: Dictionary in any of the supported shapes, or an existing Question
        index: Position of the record, used for the placeholder question text

    Returns:
        A Question with four options and a valid correct index
    """
    if isinstance(record, Question):
        return _canonical_question(record)
    if not isinstance(record, dict):
        logger.warning(f"Question record {index + 1} is not an object, using placeholder")
        record = {}

    text = _first_present(record, "question", "questionText", "text")
    text = str(text).strip() if text is not None else ""
    if not text:
        text = f"Question {index + 1}"

    options = normalize_options(record.get("options"))
    correct_index = resolve_correct_index(record, options)

    explanation = _first_present(record, "explanation", "answer_explanation")
    explanation = str(explanation).strip() if explanation is not None else ""

    return Question(
        text=text,
        options=options,
        correct_index=correct_index,
        explanation=explanation or DEFAULT_EXPLANATION,
    )


def normalize_questions(records: Iterable[Any]) -> List[Question]:
    """Normalize every dictionary (or Question) in records, skipping anything else."""
    questions = []
    for index, record in enumerate(records or []):
        if not isinstance(record, (dict, Question)):
            logger.warning(f"Skipping question record {index + 1}: unsupported type {type(record).__name__}")
            continue
        questions.append(normalize_question(record, index))
    return questions

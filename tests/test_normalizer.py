"""
Unit tests for question normalization.
"""
import unittest

from pollquiz.models import Question
from pollquiz.normalizer import (
    DEFAULT_EXPLANATION,
    normalize_options,
    normalize_question,
    normalize_questions,
    resolve_correct_index,
)
from tests.test_fixtures import TestFixtures


class TestNormalizeOptions(unittest.TestCase):
    """Test cases for option padding and truncation."""

    def test_short_list_is_padded_with_letters(self):
        """Two options get "Option C" and "Option D" appended."""
        self.assertEqual(normalize_options(["Yes", "No"]), ["Yes", "No", "Option C", "Option D"])

    def test_long_list_is_truncated(self):
        """Only the first four options are kept."""
        self.assertEqual(normalize_options(["a", "b", "c", "d", "e", "f"]), ["a", "b", "c", "d"])

    def test_missing_options_default_to_true_false(self):
        """Absent or non-list options fall back to True/False plus placeholders."""
        expected = ["True", "False", "Option C", "Option D"]
        self.assertEqual(normalize_options(None), expected)
        self.assertEqual(normalize_options("not a list"), expected)
        self.assertEqual(normalize_options([]), expected)

    def test_options_are_stringified_and_trimmed(self):
        """Non-string options are converted and whitespace is removed."""
        self.assertEqual(normalize_options([1, " two ", 3.5, True]), ["1", "two", "3.5", "True"])


class TestResolveCorrectIndex(unittest.TestCase):
    """Test cases for the correct-answer resolution order."""

    def setUp(self):
        self.options = ["Mumbai", "Delhi", "Chennai", "Kolkata"]

    def test_numeric_correct_index(self):
        self.assertEqual(resolve_correct_index({"correct_index": 2}, self.options), 2)

    def test_numeric_correct_answer(self):
        self.assertEqual(resolve_correct_index({"correctAnswer": 3}, self.options), 3)

    def test_digit_string_correct_index(self):
        self.assertEqual(resolve_correct_index({"correct_index": "1"}, self.options), 1)

    def test_out_of_range_index_falls_through_to_text(self):
        """An invalid index is ignored when a usable text answer exists."""
        record = {"correct_index": 9, "correctAnswer": "Chennai"}
        self.assertEqual(resolve_correct_index(record, self.options), 2)

    def test_out_of_range_index_defaults_to_zero(self):
        self.assertEqual(resolve_correct_index({"correctAnswer": 7}, self.options), 0)
        self.assertEqual(resolve_correct_index({"correct_index": -1}, self.options), 0)

    def test_boolean_is_not_an_index(self):
        """True must not be read as index 1."""
        self.assertEqual(resolve_correct_index({"correct_index": True}, self.options), 0)

    def test_exact_text_match(self):
        self.assertEqual(resolve_correct_index({"correctAnswer": "  Delhi "}, self.options), 1)

    def test_single_letter(self):
        self.assertEqual(resolve_correct_index({"correctAnswer": "c"}, self.options), 2)
        self.assertEqual(resolve_correct_index({"correctAnswer": "D"}, self.options), 3)

    def test_exact_match_wins_over_letter(self):
        """A one-letter answer that is itself an option resolves to that option."""
        options = ["X", "Y", "A", "Z"]
        self.assertEqual(resolve_correct_index({"correctAnswer": "A"}, options), 2)

    def test_substring_match_is_case_insensitive(self):
        self.assertEqual(resolve_correct_index({"correctAnswer": "kolk"}, self.options), 3)

    def test_unresolvable_answer_defaults_to_zero(self):
        self.assertEqual(resolve_correct_index({"correctAnswer": "Bangalore"}, self.options), 0)

    def test_answer_key_alias(self):
        """Hand-written quiz files may use "answer" instead of "correctAnswer"."""
        self.assertEqual(resolve_correct_index({"answer": "Delhi"}, self.options), 1)


class TestNormalizeQuestion(unittest.TestCase):
    """Test cases for whole-record normalization."""

    def test_ai_shaped_record(self):
        record = {
            "question": " Capital of India? ",
            "options": ["Mumbai", "Delhi", "Chennai", "Kolkata"],
            "correct_index": 1,
            "answer_explanation": "New Delhi.",
        }
        question = normalize_question(record)
        self.assertEqual(question.text, "Capital of India?")
        self.assertEqual(question.correct_index, 1)
        self.assertEqual(question.correct_option, "Delhi")
        self.assertEqual(question.explanation, "New Delhi.")

    def test_never_fails_on_empty_record(self):
        """A record with no options and no answer still yields a valid question."""
        question = normalize_question({}, index=4)
        self.assertEqual(question.text, "Question 5")
        self.assertEqual(len(question.options), 4)
        self.assertEqual(question.correct_index, 0)
        self.assertEqual(question.explanation, DEFAULT_EXPLANATION)

    def test_never_fails_on_garbage(self):
        """Non-dict input degrades to a placeholder question."""
        for garbage in (None, 42, "text", ["a", "b"]):
            question = normalize_question(garbage)
            self.assertEqual(len(question.options), 4)
            self.assertIn(question.correct_index, range(4))

    def test_missing_options_or_answer_is_always_valid(self):
        """Every combination of missing fields produces 4 options and a valid index."""
        records = [
            {"question": "Q"},
            {"question": "Q", "options": ["only one"]},
            {"question": "Q", "correctAnswer": "Z"},
            {"question": "Q", "options": None, "correctAnswer": None},
            {"question": "Q", "options": ["a", "b", "c", "d", "e"], "correctAnswer": 4},
        ]
        for record in records:
            question = normalize_question(record)
            self.assertEqual(len(question.options), 4, record)
            self.assertTrue(0 <= question.correct_index <= 3, record)

    def test_canonical_question_instances_pass_through(self):
        question = Question("Q?", ["a", "b", "c", "d"], 2, "why")
        self.assertIs(normalize_question(question), question)

    def test_malformed_question_instance_is_repaired(self):
        question = Question("Odd one out?", ["Red", "Blue"], 3, "")

        repaired = normalize_question(question)

        self.assertEqual(repaired.options, ["Red", "Blue", "Option C", "Option D"])
        self.assertEqual(repaired.correct_index, 0)
        self.assertEqual(repaired.correct_option, "Red")
        self.assertEqual(repaired.explanation, DEFAULT_EXPLANATION)
        self.assertEqual(question.options, ["Red", "Blue"])

    def test_question_instance_keeps_valid_index_when_options_are_padded(self):
        repaired = normalize_question(Question("Q?", ["a", "b", "c"], 2, "why"))
        self.assertEqual(repaired.options, ["a", "b", "c", "Option D"])
        self.assertEqual(repaired.correct_index, 2)

    def test_normalize_questions_skips_unsupported_entries(self):
        records = TestFixtures.create_raw_records() + ["junk", 7]
        questions = normalize_questions(records)
        self.assertEqual(len(questions), 4)
        self.assertEqual([q.correct_index for q in questions], [1, 1, 1, 1])
        self.assertEqual(questions[1].options, ["Earth", "Jupiter", "Option C", "Option D"])
        self.assertEqual(questions[3].explanation, "Up to 110 km/h.")


if __name__ == '__main__':
    unittest.main()

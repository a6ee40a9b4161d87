"""
Data manager for hand-authored quiz files.

Quiz files are JSON objects with a "quiz" (or "quizzes") array. Each entry
is normalized into a canonical Question, so files may use any of the
supported field spellings.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import Question
from .normalizer import normalize_questions

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB

SAMPLE_QUIZ = {
    "quiz": [
        {
            "question": "What is the capital of India?",
            "options": ["Mumbai", "Delhi", "Chennai", "Kolkata"],
            "correct_index": 1,
            "explanation": "New Delhi is the capital of India."
        },
        {
            "question": "What is 2 + 2?",
            "options": ["3", "4", "5", "6"],
            "correctAnswer": "4",
            "explanation": "Basic addition."
        },
        {
            "question": "Which language is this bot written in?",
            "options": ["Python", "Java", "Go", "Rust"],
            "correctAnswer": "A",
            "explanation": "The bot is written in Python."
        }
    ]
}


class DataManager:
    """Manages loading of JSON quiz files."""

    def __init__(self, quiz_directory: str = "./quizzes/"):
        self.quiz_directory = Path(quiz_directory)
        self.loaded_quizzes: Dict[str, List[Question]] = {}
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []
        self.fallback_quiz_created = False

    def load_quiz_files(self) -> Dict[str, List[Question]]:
        """
        Load all JSON files from the quiz directory.

        A sample quiz is written when the directory has no quiz files, and an
        in-memory fallback quiz is used when nothing can be loaded at all.

        Returns:
            Dictionary mapping quiz names to lists of Question objects
        """
        self.loaded_quizzes.clear()
        self.load_errors.clear()
        self.fallback_quiz_created = False

        try:
            self.quiz_directory.mkdir(parents=True, exist_ok=True)
            json_files = sorted(self.quiz_directory.glob("*.json"))
        except OSError as e:
            self.load_errors.append(f"Cannot access {self.quiz_directory}: {e}")
            return self._create_fallback_quiz()

        if not json_files:
            self.logger.warning(f"No JSON files found in {self.quiz_directory}")
            return self._create_sample_quiz()

        for json_file in json_files:
            error = self._load_quiz_file(json_file)
            if error:
                self.load_errors.append(f"{json_file.name}: {error}")

        if not self.loaded_quizzes:
            self.logger.error("No quiz files could be loaded successfully")
            self.load_errors.append("All quiz files failed to load")
            return self._create_fallback_quiz()

        self.logger.info(f"Successfully loaded {len(self.loaded_quizzes)} quiz files")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")

        return self.loaded_quizzes

    def extract_records(self, data: Any) -> Optional[List[Any]]:
        """
        Find the question array in a parsed quiz file.

        Returns:
            The raw question records, or None if the structure is not a quiz
        """
        if isinstance(data, list):
            return data
        if not isinstance(data, dict):
            return None
        for key in ("quiz", "quizzes", "questions"):
            if isinstance(data.get(key), list):
                return data[key]
        return None

    def _load_quiz_file(self, json_file: Path) -> Optional[str]:
        """
        Load a single quiz file.

        Returns:
            None on success, otherwise an error message
        """
        try:
            file_size = json_file.stat().st_size
            if file_size > MAX_FILE_SIZE:
                return f"File too large ({file_size / 1024 / 1024:.1f}MB). Maximum size is {MAX_FILE_SIZE / 1024 / 1024}MB"

            with open(json_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {json_file}: {e}")
            return f"Invalid JSON: {e}"
        except OSError as e:
            self.logger.error(f"Failed to read quiz file {json_file}: {e}")
            return f"System error: {e}"

        records = self.extract_records(data)
        if records is None:
            self.logger.error(f"Invalid quiz structure in {json_file}")
            return "Missing 'quiz' array"

        questions = normalize_questions(records)
        if not questions:
            return "No valid questions found in file"

        quiz_name = json_file.stem
        self.loaded_quizzes[quiz_name] = questions
        self.logger.info(f"Loaded quiz '{quiz_name}' with {len(questions)} questions")
        return None

    def _create_sample_quiz(self) -> Dict[str, List[Question]]:
        """Write and load a sample quiz when the directory is empty."""
        sample_file_path = self.quiz_directory / "sample_quiz.json"
        try:
            if not sample_file_path.exists():
                with open(sample_file_path, 'w', encoding='utf-8') as f:
                    json.dump(SAMPLE_QUIZ, f, indent=2, ensure_ascii=False)
                self.logger.info(f"Created sample quiz file: {sample_file_path}")
        except OSError as e:
            self.logger.error(f"Failed to create sample quiz: {e}")
            self.load_errors.append(f"Failed to create sample quiz: {e}")

        self.loaded_quizzes["sample_quiz"] = normalize_questions(SAMPLE_QUIZ["quiz"])
        self.logger.info(f"Loaded sample quiz with {len(SAMPLE_QUIZ['quiz'])} questions")
        return self.loaded_quizzes

    def _create_fallback_quiz(self) -> Dict[str, List[Question]]:
        """Create a minimal in-memory quiz when all file operations fail."""
        self.loaded_quizzes["fallback_quiz"] = normalize_questions([
            {
                "question": "What should you check when quiz files can't be loaded?",
                "options": ["The quiz directory and file permissions", "The weather", "Nothing", "The timer"],
                "correct_index": 0,
            }
        ])
        self.fallback_quiz_created = True
        self.logger.warning("No quiz file could be loaded, serving the built-in fallback quiz")
        return self.loaded_quizzes

    def get_available_quizzes(self) -> List[str]:
        return list(self.loaded_quizzes)

    def get_quiz_questions(self, quiz_name: str) -> Optional[List[Question]]:
        """Questions of a loaded quiz by file stem, or None."""
        return self.loaded_quizzes.get(quiz_name)

    def quiz_exists(self, quiz_name: str) -> bool:
        return quiz_name in self.loaded_quizzes

    def get_load_errors(self) -> List[str]:
        return self.load_errors.copy()

    def is_fallback_quiz_active(self) -> bool:
        return self.fallback_quiz_created

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Summary of the last load operation.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'total_quizzes': len(self.loaded_quizzes),
            'has_errors': bool(self.load_errors),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors(),
            'fallback_active': self.fallback_quiz_created,
            'quiz_directory': str(self.quiz_directory),
            'available_quizzes': list(self.loaded_quizzes.keys())
        }

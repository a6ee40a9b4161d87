"""
Configuration manager for quiz bot settings and AI provider parameters.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .ai_client import DEFAULT_BASE_URL, DEFAULT_CHAT_MODELS
from .models import QuizSettings


class ConfigManager:
    """Manages bot configuration settings, quiz parameters, and AI settings."""

    DEFAULT_GENERATED_COUNT = 10
    DEFAULT_QUIZ_DIRECTORY = "./quizzes/"
    DEFAULT_API_KEY_PREFIX = "GROQ_API_KEY"

    # Validation limits
    MIN_TIMER_DURATION = 5
    MAX_TIMER_DURATION = 300
    MIN_QUESTION_COUNT = 1
    MAX_QUESTION_COUNT = 50
    DIFFICULTIES = ("easy", "medium", "hard")

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._global_settings = QuizSettings()
        self._quiz_directory = self.DEFAULT_QUIZ_DIRECTORY
        self._ai_settings: Dict[str, Any] = {
            'base_url': DEFAULT_BASE_URL,
            'chat_models': list(DEFAULT_CHAT_MODELS),
            'embedding_models': [],
            'api_keys': [],
            'temperature': 0.7,
            'max_rate_limit_retries': 3,
            'backoff_seconds': 2.0,
            'request_timeout': 60.0,
        }

    def get_quiz_settings(self) -> QuizSettings:
        """Copy of the global quiz settings."""
        return QuizSettings(
            question_count=self._global_settings.question_count,
            random_order=self._global_settings.random_order,
            timer_duration=self._global_settings.timer_duration,
            difficulty=self._global_settings.difficulty,
        )

    def apply_config(self, config: Dict[str, Any]) -> None:
        """
        Apply the 'quiz' and 'ai' sections of a loaded config.json.

        Invalid values are logged and the defaults kept.
        """
        quiz_config = config.get('quiz', {}) or {}

        if 'quiz_directory' in quiz_config:
            self.set_quiz_directory(quiz_config['quiz_directory'])
        if quiz_config.get('default_question_count') is not None:
            self.set_question_count(quiz_config['default_question_count'])
        if 'default_random_order' in quiz_config:
            self.set_random_order(quiz_config['default_random_order'])
        if 'default_timer_duration' in quiz_config:
            self.set_timer_duration(quiz_config['default_timer_duration'])
        if 'default_difficulty' in quiz_config:
            self.set_difficulty(quiz_config['default_difficulty'])

        self.load_ai_settings(config.get('ai', {}) or {})
        self.logger.info("Configuration applied successfully")

    def load_ai_settings(self, ai_config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> None:
        """
        Load AI provider settings from config and environment.

        API keys come from the config's 'api_keys' list plus every environment
        variable whose name starts with the key prefix (GROQ_API_KEY,
        GROQ_API_KEY_2, ...), in sorted name order, without duplicates.
        """
        environ = os.environ if environ is None else environ

        for key in ('base_url', 'temperature', 'max_rate_limit_retries', 'backoff_seconds', 'request_timeout'):
            if key in ai_config:
                self._ai_settings[key] = ai_config[key]
        if ai_config.get('chat_models'):
            self._ai_settings['chat_models'] = list(ai_config['chat_models'])
        if 'embedding_models' in ai_config:
            self._ai_settings['embedding_models'] = list(ai_config['embedding_models'] or [])

        prefix = ai_config.get('api_key_env_prefix', self.DEFAULT_API_KEY_PREFIX)
        keys: List[str] = []
        for key in ai_config.get('api_keys', []) or []:
            if key and key not in keys:
                keys.append(key)
        for name in sorted(environ):
            value = environ[name].strip()
            if name.startswith(prefix) and value and value not in keys:
                self.logger.info(f"Found API key in environment: {name}")
                keys.append(value)

        self._ai_settings['api_keys'] = keys
        if not keys:
            self.logger.warning(f"No API keys found (config 'ai.api_keys' or ${prefix}*)")

    def get_ai_settings(self) -> Dict[str, Any]:
        """Copy of the AI provider settings."""
        settings = dict(self._ai_settings)
        settings['chat_models'] = list(settings['chat_models'])
        settings['embedding_models'] = list(settings['embedding_models'])
        settings['api_keys'] = list(settings['api_keys'])
        return settings

    def _accepted(self, message: str, user_message: str) -> Dict[str, Any]:
        self.logger.info(message)
        return {'success': True, 'message': message, 'user_message': user_message}

    def _rejected(self, error: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error)
        return {'success': False, 'error': error, 'user_message': user_message}

    def _check_bounded_int(self, value: Any, label: str, minimum: int, maximum: int, unit: str = "") -> Optional[Dict[str, Any]]:
        """
        Validate an integer setting.

        Returns:
            A rejection result, or None if value is acceptable
        """
        suffix = f" {unit}" if unit else ""
        if not isinstance(value, int) or isinstance(value, bool):
            return self._rejected(
                f"{label} must be an integer, got {type(value).__name__}",
                f"❌ Invalid input: Expected a whole number, got {type(value).__name__}"
            )
        if value < minimum:
            return self._rejected(
                f"{label} {value} is below the minimum of {minimum}{suffix}",
                f"❌ {label} too low: Minimum is {minimum}{suffix}"
            )
        if value > maximum:
            return self._rejected(
                f"{label} {value} is above the maximum of {maximum}{suffix}",
                f"❌ {label} too high: Maximum is {maximum}{suffix}"
            )
        return None

    def set_question_count(self, count: Optional[int]) -> Dict[str, Any]:
        """
        Set how many questions a quiz asks; None means every available question.

        Returns:
            Result dictionary with 'success', 'message' or 'error', and 'user_message'
        """
        if count is None:
            self._global_settings.question_count = None
            return self._accepted("Question count cleared", "✅ Quizzes will use every available question")

        rejection = self._check_bounded_int(count, "Question count", self.MIN_QUESTION_COUNT, self.MAX_QUESTION_COUNT)
        if rejection:
            return rejection

        self._global_settings.question_count = count
        return self._accepted(f"Question count is now {count}", f"✅ Quizzes will ask {count} questions")

    def get_question_count(self) -> Optional[int]:
        return self._global_settings.question_count

    def set_random_order(self, random_order: bool) -> Dict[str, Any]:
        """Shuffle saved quiz files (True) or ask them in file order (False)."""
        if not isinstance(random_order, bool):
            return self._rejected(
                f"Random order flag must be a bool, got {type(random_order).__name__}",
                "❌ Invalid input: Expected true or false"
            )

        self._global_settings.random_order = random_order
        order_text = "random" if random_order else "sequential"
        return self._accepted(f"Question order is now {order_text}", f"✅ Questions will be asked in {order_text} order")

    def toggle_random_order(self) -> Dict[str, Any]:
        """Flip the random order setting."""
        return self.set_random_order(not self._global_settings.random_order)

    def get_random_order(self) -> bool:
        return self._global_settings.random_order

    def set_timer_duration(self, duration: int) -> Dict[str, Any]:
        """
        Set how long each poll stays open.

        Args:
            duration: Seconds, between MIN_TIMER_DURATION and MAX_TIMER_DURATION

        Returns:
            Result dictionary with 'success', 'message' or 'error', and 'user_message'
        """
        rejection = self._check_bounded_int(
            duration, "Timer", self.MIN_TIMER_DURATION, self.MAX_TIMER_DURATION, "seconds"
        )
        if rejection:
            return rejection

        self._global_settings.timer_duration = duration
        return self._accepted(f"Timer is now {duration} seconds", f"✅ Each question will stay open for {duration} seconds")

    def get_timer_duration(self) -> int:
        return self._global_settings.timer_duration

    def set_difficulty(self, difficulty: str) -> Dict[str, Any]:
        """Set the default difficulty for generated quizzes."""
        value = str(difficulty).strip().lower() if difficulty is not None else ""
        if value not in self.DIFFICULTIES:
            return self._rejected(
                f"Difficulty must be one of {', '.join(self.DIFFICULTIES)}, got '{difficulty}'",
                f"❌ Unknown difficulty. Choose one of: {', '.join(self.DIFFICULTIES)}"
            )

        self._global_settings.difficulty = value
        return self._accepted(f"Difficulty is now {value}", f"✅ Generated quizzes will be {value}")

    def get_difficulty(self) -> str:
        return self._global_settings.difficulty

    def set_quiz_directory(self, directory: str) -> Dict[str, Any]:
        """Set the directory saved quiz files are loaded from."""
        if not isinstance(directory, str) or not directory.strip():
            return self._rejected("Quiz directory must be a non-empty path", "❌ Invalid quiz directory path")

        if Path(directory).exists() and not Path(directory).is_dir():
            return self._rejected(
                f"Quiz directory path is not a directory: {directory}",
                f"❌ {directory} is a file, not a directory"
            )

        self._quiz_directory = directory
        return self._accepted(f"Quiz directory is now {directory}", f"✅ Saved quizzes will load from {directory}")

    def get_quiz_directory(self) -> str:
        return self._quiz_directory

    def reset_to_defaults(self) -> None:
        """Restore the default quiz settings and quiz directory."""
        self._global_settings = QuizSettings()
        self._quiz_directory = self.DEFAULT_QUIZ_DIRECTORY
        self.logger.info("Quiz settings reset to defaults")

    def get_settings_summary(self) -> str:
        """Multi-line summary of the current settings for help and status displays."""
        settings = self._global_settings
        question_count = settings.question_count if settings.question_count is not None else "All"
        keys = self._ai_settings['api_keys']
        ai_status = f"{len(keys)} key(s)" if keys else "not configured"
        return (
            f"Questions: {question_count}\n"
            f"Order: {'Random' if settings.random_order else 'Sequential'}\n"
            f"Timer: {settings.timer_duration} seconds\n"
            f"Difficulty: {settings.difficulty}\n"
            f"AI: {ai_status}"
        )

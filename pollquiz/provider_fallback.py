"""
Provider fallback caller.

Runs a unit of work against an ordered list of (model, credential) candidates,
skipping models that do not exist, rotating credentials and backing off on
rate limits, and giving up with AllProvidersExhaustedError once every
candidate has failed.
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

import openai

from .errors import AllProvidersExhaustedError, ModelNotFoundError, RateLimitedError
from .models import ProviderCandidate

logger = logging.getLogger(__name__)

Work = Callable[[str, str], Awaitable[Any]]

NOT_FOUND_MARKERS = ("model not found", "model_not_found", "does not exist", "404")
RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "quota", "resource exhausted", "resource_exhausted", "429")


class ErrorClass(Enum):
    """How a provider failure should be handled."""
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    OTHER = "other"


def classify_error(error: BaseException) -> ErrorClass:
    """
    Decide whether a failure means "try another model", "slow down", or "give up".

    Args:
        error: Exception raised by a unit of work

    Returns:
        The ErrorClass for the failure
    """
    if isinstance(error, (ModelNotFoundError, openai.NotFoundError)):
        return ErrorClass.NOT_FOUND
    if isinstance(error, (RateLimitedError, openai.RateLimitError)):
        return ErrorClass.RATE_LIMITED

    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if status == 404:
        return ErrorClass.NOT_FOUND
    if status == 429:
        return ErrorClass.RATE_LIMITED

    message = str(error).lower()
    if any(marker in message for marker in RATE_LIMIT_MARKERS):
        return ErrorClass.RATE_LIMITED
    if any(marker in message for marker in NOT_FOUND_MARKERS):
        return ErrorClass.NOT_FOUND
    return ErrorClass.OTHER


class ProviderFallbackCaller:
    """Executes work against provider candidates in order, with credential rotation."""

    def __init__(
        self,
        candidates: Sequence[ProviderCandidate],
        credentials: Sequence[str],
        max_rate_limit_retries: int = 3,
        backoff_seconds: float = 2.0,
        name: str = "ai",
    ):
        """
        Args:
            candidates: Ordered (model, credential index) pairs to try
            credentials: Pool of API keys the credential indexes refer to
            max_rate_limit_retries: Attempts per candidate while rate limited
            backoff_seconds: Base pause, multiplied by the attempt number
            name: Label used in log records
        """
        self.candidates = tuple(candidates)
        self.credentials = tuple(credentials)
        self.max_rate_limit_retries = max(1, max_rate_limit_retries)
        self.backoff_seconds = backoff_seconds
        self.name = name
        self._rotation = 0

    @property
    def rotation(self) -> int:
        """Current offset into the credential pool."""
        return self._rotation

    def credential_for(self, candidate: ProviderCandidate) -> str:
        """Credential currently assigned to a candidate, honouring rotation."""
        if not self.credentials:
            return ""
        return self.credentials[(candidate.credential_index + self._rotation) % len(self.credentials)]

    def rotate_credential(self) -> None:
        """Advance to the next credential in the pool, wrapping around."""
        if self.credentials:
            self._rotation = (self._rotation + 1) % len(self.credentials)

    async def call(self, work: Work) -> Any:
        """
        Run work(model, credential) until one candidate succeeds.

        Args:
            work: Async callable taking a model name and a credential

        Returns:
            Whatever the first successful call returns

        Raises:
            AllProvidersExhaustedError: If no candidate succeeded
            Exception: Any failure that is neither "not found" nor "rate limited"
        """
        last_error: Optional[BaseException] = None

        for position, candidate in enumerate(self.candidates):
            attempt = 0
            while attempt < self.max_rate_limit_retries:
                attempt += 1
                credential = self.credential_for(candidate)
                started = time.time()
                try:
                    result = await work(candidate.model, credential)
                except Exception as e:
                    last_error = e
                    error_class = classify_error(e)

                    if error_class is ErrorClass.NOT_FOUND:
                        logger.warning(
                            f"[{self.name}] Model {candidate.model} not found, trying next candidate",
                            extra={
                                'event_type': 'provider_model_not_found',
                                'model': candidate.model,
                                'position': position,
                                'timestamp': time.time()
                            }
                        )
                        break

                    if error_class is ErrorClass.RATE_LIMITED:
                        self.rotate_credential()
                        if attempt >= self.max_rate_limit_retries:
                            logger.warning(
                                f"[{self.name}] Model {candidate.model} still rate limited after "
                                f"{attempt} attempts, moving on"
                            )
                            break
                        delay = self.backoff_seconds * attempt
                        logger.warning(
                            f"[{self.name}] Rate limited on {candidate.model} "
                            f"(attempt {attempt}/{self.max_rate_limit_retries}), "
                            f"rotated credential, retrying in {delay:.1f}s",
                            extra={
                                'event_type': 'provider_rate_limited',
                                'model': candidate.model,
                                'attempt': attempt,
                                'delay': delay,
                                'timestamp': time.time()
                            }
                        )
                        await asyncio.sleep(delay)
                        continue

                    logger.error(f"[{self.name}] Model {candidate.model} failed: {e}")
                    raise

                logger.debug(
                    f"[{self.name}] Model {candidate.model} succeeded in {time.time() - started:.2f}s",
                    extra={
                        'event_type': 'provider_call_succeeded',
                        'model': candidate.model,
                        'attempt': attempt,
                        'timestamp': time.time()
                    }
                )
                return result

        logger.error(f"[{self.name}] All {len(self.candidates)} provider candidates failed. Last error: {last_error}")
        raise AllProvidersExhaustedError(last_error)

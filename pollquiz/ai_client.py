"""
Generative AI client built on the OpenAI-compatible API (Groq by default).

Every call goes through a ProviderFallbackCaller, so conversational replies,
quiz generation, and embeddings share one retry and key-rotation policy.
"""
import logging
from typing import Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from .errors import AllProvidersExhaustedError, ModelNotFoundError, RateLimitedError
from .models import ProviderCandidate
from .provider_fallback import ProviderFallbackCaller

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_CHAT_MODELS = [
    "llama-3.3-70b-versatile",
    "llama-3.1-8b-instant",
    "gemma2-9b-it",
]


def build_candidates(models: Sequence[str], credential_count: int) -> List[ProviderCandidate]:
    """Spread the models over the key pool, starting each model on a different key."""
    slots = max(1, credential_count)
    return [ProviderCandidate(model=model, credential_index=i % slots) for i, model in enumerate(models)]


class AIClient:
    """Chat, JSON completion, and embedding calls with model and key fallback."""

    def __init__(self, settings: Optional[dict] = None):
        """
        Args:
            settings: AI settings as returned by ConfigManager.get_ai_settings()
        """
        settings = settings or {}
        self.base_url = settings.get('base_url', DEFAULT_BASE_URL)
        self.api_keys = [key for key in settings.get('api_keys', []) if key]
        self.temperature = settings.get('temperature', 0.7)
        self.request_timeout = settings.get('request_timeout', 60.0)
        self._clients: Dict[str, AsyncOpenAI] = {}

        chat_models = settings.get('chat_models') or DEFAULT_CHAT_MODELS
        embedding_models = settings.get('embedding_models') or []
        retries = settings.get('max_rate_limit_retries', 3)
        backoff = settings.get('backoff_seconds', 2.0)

        self.chat_caller = ProviderFallbackCaller(
            build_candidates(chat_models, len(self.api_keys)),
            self.api_keys,
            max_rate_limit_retries=retries,
            backoff_seconds=backoff,
            name="chat",
        )
        self.embedding_caller = ProviderFallbackCaller(
            build_candidates(embedding_models, len(self.api_keys)),
            self.api_keys,
            max_rate_limit_retries=retries,
            backoff_seconds=backoff,
            name="embeddings",
        )

        if not self.api_keys:
            logger.warning("No AI API keys configured - quiz generation and chat replies will not work")
        else:
            logger.info(f"AI client initialized with {len(chat_models)} chat models and {len(self.api_keys)} API keys")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_keys)

    @property
    def supports_embeddings(self) -> bool:
        return bool(self.api_keys) and bool(self.embedding_caller.candidates)

    def _client_for(self, credential: str) -> AsyncOpenAI:
        client = self._clients.get(credential)
        if client is None:
            client = AsyncOpenAI(api_key=credential, base_url=self.base_url, timeout=self.request_timeout)
            self._clients[credential] = client
        return client

    def _require_keys(self) -> None:
        if not self.api_keys:
            raise AllProvidersExhaustedError(RuntimeError("No AI API keys configured"))

    async def generate(
        self,
        prompt: str,
        document_text: Optional[str] = None,
        model: str = DEFAULT_CHAT_MODELS[0],
        credential: str = "",
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        """
        Single request against one model with one credential.

        Provider errors are translated to ModelNotFoundError / RateLimitedError
        so the fallback caller can classify them.
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        if document_text:
            messages.append({"role": "user", "content": f"Document:\n{document_text}"})
        messages.append({"role": "user", "content": prompt})
        return await self._chat_request(messages, model, credential, json_mode)

    async def _chat_request(self, messages: List[dict], model: str, credential: str, json_mode: bool) -> str:
        kwargs = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._client_for(credential).chat.completions.create(**kwargs)
        except openai.NotFoundError as e:
            raise ModelNotFoundError(f"{model}: {e}") from e
        except openai.RateLimitError as e:
            raise RateLimitedError(f"{model}: {e}") from e

        return response.choices[0].message.content or ""

    async def complete(self, system_prompt: str, user_prompt: str, json_mode: bool = True) -> str:
        """Run one prompt through the chat model fallback chain."""
        self._require_keys()

        async def work(model: str, credential: str) -> str:
            return await self.generate(
                user_prompt,
                model=model,
                credential=credential,
                system_prompt=system_prompt,
                json_mode=json_mode,
            )

        return await self.chat_caller.call(work)

    async def chat(self, messages: List[dict]) -> str:
        """Free-text conversational reply for a list of chat messages."""
        self._require_keys()

        async def work(model: str, credential: str) -> str:
            return await self._chat_request(messages, model, credential, json_mode=False)

        return await self.chat_caller.call(work)

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Embedding vectors for texts, in order."""
        self._require_keys()
        if not self.embedding_caller.candidates:
            raise AllProvidersExhaustedError(RuntimeError("No embedding models configured"))

        async def work(model: str, credential: str) -> List[List[float]]:
            try:
                response = await self._client_for(credential).embeddings.create(model=model, input=texts)
            except openai.NotFoundError as e:
                raise ModelNotFoundError(f"{model}: {e}") from e
            except openai.RateLimitError as e:
                raise RateLimitedError(f"{model}: {e}") from e
            return [item.embedding for item in response.data]

        return await self.embedding_caller.call(work)

"""Generation provider — single place to swap LLM backends.

Any OpenAI-compatible chat endpoint works:

1. **OpenAI cloud** (default) — set ``OPENAI_API_KEY``.
2. **Other compatible endpoints** — set ``LLM_BASE_URL`` (e.g. Groq at
   ``https://api.groq.com/openai/v1`` or a local vLLM server).
   ``ChatOpenAI`` talks to ``/v1/chat/completions`` unchanged.

Provider errors are mapped onto the application taxonomy so callers can
tell "unreachable", "unauthorized" and "rate limited" apart.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Protocol

import openai
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from docrag.config import settings
from docrag.exceptions import (
    ExternalServiceError,
    ExternalServiceUnavailable,
    GenerationRateLimited,
    GenerationUnauthorized,
    ValidationError,
)
from docrag.qa.models import GenerationResult

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."


class GenerationProvider(Protocol):
    def available(self) -> bool: ...

    def generate(
        self,
        prompt: str,
        *,
        system: str = DEFAULT_SYSTEM_PROMPT,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> GenerationResult: ...

    def list_models(self) -> list[str]: ...


class ChatGenerationProvider:
    """``ChatOpenAI``-backed generation.

    The client is built on first use and reused afterwards.

    Parameters
    ----------
    model_name:
        Default chat model.
    api_key:
        Key for the endpoint.  May be empty when *base_url* points at a
        server that needs none.
    base_url:
        OpenAI-compatible endpoint; empty means the OpenAI cloud API.
    temperature, max_tokens, timeout:
        Defaults for every call.
    available_models:
        Models offered to callers by :meth:`list_models`.
    """

    def __init__(
        self,
        model_name: str = settings.llm_model_name,
        *,
        api_key: str = settings.openai_api_key,
        base_url: str = settings.llm_base_url,
        temperature: float = settings.llm_temperature,
        max_tokens: int = settings.llm_max_tokens,
        timeout: float = settings.llm_timeout_seconds,
        available_models: list[str] | None = None,
    ) -> None:
        self.model_name = model_name
        self._api_key = api_key
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._available_models = list(available_models or settings.llm_available_models)
        self._client: ChatOpenAI | None = None
        self._lock = threading.Lock()

    def available(self) -> bool:
        """``True`` when the provider is configured well enough to call."""
        if not self._api_key and not self.base_url:
            logger.error("No API key or base URL configured for the generation provider")
            return False
        return True

    def list_models(self) -> list[str]:
        models = list(self._available_models)
        if self.model_name not in models:
            models.insert(0, self.model_name)
        return models

    def _get_client(self) -> ChatOpenAI:
        if self._client is None:
            with self._lock:
                if self._client is None:
                    kwargs: dict = {
                        "model": self.model_name,
                        "temperature": self.temperature,
                        "max_tokens": self.max_tokens,
                        "timeout": self.timeout,
                        "max_retries": 0,
                    }
                    if self.base_url:
                        logger.info("Using OpenAI-compatible endpoint: %s", self.base_url)
                        kwargs["base_url"] = self.base_url
                        # Some servers need no key; the client requires a non-empty value.
                        kwargs["api_key"] = self._api_key or "EMPTY"
                    else:
                        kwargs["api_key"] = self._api_key
                    self._client = ChatOpenAI(**kwargs)
        return self._client

    def generate(
        self,
        prompt: str,
        *,
        system: str = DEFAULT_SYSTEM_PROMPT,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> GenerationResult:
        """Run one chat completion.

        Raises
        ------
        ValidationError
            Empty *prompt*.
        GenerationUnauthorized
            The endpoint rejected the API key.
        GenerationRateLimited
            The endpoint is throttling.
        ExternalServiceUnavailable
            Connection failure or timeout.
        ExternalServiceError
            Any other provider failure.
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt cannot be empty", field="prompt")

        model = model or self.model_name
        overrides = {
            "model": model,
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        messages = [SystemMessage(content=system), HumanMessage(content=prompt)]

        logger.info("Generating response with %s", model)
        started = time.perf_counter()
        try:
            response = self._get_client().invoke(messages, **overrides)
        except openai.AuthenticationError as exc:
            raise GenerationUnauthorized() from exc
        except openai.RateLimitError as exc:
            raise GenerationRateLimited() from exc
        except openai.APIConnectionError as exc:
            # Includes APITimeoutError.
            raise ExternalServiceUnavailable("generation", f"Generation provider unreachable: {exc}") from exc
        except openai.OpenAIError as exc:
            logger.error("Failed to generate response", exc_info=True)
            raise ExternalServiceError("generation", f"Generation provider error: {exc}") from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        tokens = None
        usage = getattr(response, "usage_metadata", None)
        if usage:
            tokens = usage.get("output_tokens")
        else:
            tokens = (response.response_metadata or {}).get("token_usage", {}).get("completion_tokens")

        logger.debug("Generation finished in %d ms (%s output tokens)", elapsed_ms, tokens)
        return GenerationResult(
            text=response.content if isinstance(response.content, str) else str(response.content),
            model=model,
            tokens_generated=tokens,
            time_ms=elapsed_ms,
        )

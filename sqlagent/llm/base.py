"""
Base LLM Provider

Abstract base class for the chat-completion providers used to generate SQL,
explain queries and summarize schemas.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

from sqlagent.llm.models import LLMMessage, LLMRequest, LLMResponse

logger = logging.getLogger(__name__)


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Attributes:
        provider_name: Unique identifier for this provider
        model: Default model name
        temperature: Default sampling temperature
        max_tokens: Default maximum tokens to generate
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        provider_name: str,
        model: str,
        temperature: float = 0.0,
        max_tokens: int = 2000,
        timeout: int = 30,
    ):
        self.provider_name = provider_name
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

        logger.info(
            f"Initialized {provider_name} provider with model: {model}",
            extra={"provider": provider_name, "model": model},
        )

    @abstractmethod
    async def generate(self, request: LLMRequest) -> LLMResponse:
        """
        Generate a completion.

        Raises:
            Exception: Provider-specific errors (API errors, timeouts, etc.)
        """
        pass  # pragma: no cover - abstract method

    async def chat(
        self,
        messages: Sequence[LLMMessage | dict],
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Convenience wrapper around ``generate``.

        Args:
            messages: ``LLMMessage`` objects or ``{"role", "content"}`` dicts
            model: Model override
            temperature: Temperature override
            max_tokens: Max tokens override
        """
        request = LLMRequest(
            messages=[
                msg if isinstance(msg, LLMMessage) else LLMMessage.model_validate(msg)
                for msg in messages
            ],
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return await self.generate(request)

    def _apply_defaults(self, request: LLMRequest) -> LLMRequest:
        """Fill unset sampling parameters from provider defaults."""
        return request.model_copy(
            update={
                "model": request.model or self.model,
                "temperature": (
                    request.temperature if request.temperature is not None else self.temperature
                ),
                "max_tokens": request.max_tokens or self.max_tokens,
            }
        )

    def _log_request(self, request: LLMRequest) -> None:
        logger.debug(
            f"{self.provider_name} request",
            extra={
                "provider": self.provider_name,
                "model": request.model,
                "message_count": len(request.messages),
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
            },
        )

    def _log_response(self, response: LLMResponse) -> None:
        logger.debug(
            f"{self.provider_name} response",
            extra={
                "provider": self.provider_name,
                "model": response.model,
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "finish_reason": response.finish_reason,
            },
        )

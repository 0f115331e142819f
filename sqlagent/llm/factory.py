"""
LLM Provider Factory

Creates the configured provider. SQL generation, explanations and schema
summaries all go through the provider returned by ``create_sql_provider``,
which honours the optional ``LLM_SQL_MODEL`` override.
"""

import logging
from typing import Literal

from sqlagent.config import LLMSettings
from sqlagent.llm.anthropic import AnthropicProvider
from sqlagent.llm.base import BaseLLMProvider
from sqlagent.llm.openai import OpenAIProvider

logger = logging.getLogger(__name__)

ProviderName = Literal["openai", "anthropic"]


class LLMProviderFactory:
    """Factory for LLM provider instances."""

    PROVIDERS = {
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
    }

    @staticmethod
    def create_provider(
        provider_type: ProviderName,
        config: LLMSettings,
        model: str | None = None,
    ) -> BaseLLMProvider:
        """
        Create an LLM provider instance.

        Args:
            provider_type: Provider to create
            config: LLM configuration settings
            model: Model override (defaults to the provider's configured model)

        Raises:
            ValueError: If the provider is unknown or its API key is missing
        """
        if provider_type not in LLMProviderFactory.PROVIDERS:
            raise ValueError(
                f"Unknown provider type: {provider_type}. "
                f"Available providers: {list(LLMProviderFactory.PROVIDERS.keys())}"
            )

        logger.info(f"Creating {provider_type} provider", extra={"provider": provider_type})

        if provider_type == "openai":
            return LLMProviderFactory._create_openai(config, model)
        return LLMProviderFactory._create_anthropic(config, model)

    @staticmethod
    def create_sql_provider(config: LLMSettings) -> BaseLLMProvider:
        """Provider for SQL generation, honouring ``sql_model``."""
        return LLMProviderFactory.create_provider(
            config.default_provider, config, model=config.sql_model
        )

    @staticmethod
    def _create_openai(config: LLMSettings, model: str | None) -> OpenAIProvider:
        if not config.openai_api_key:
            raise ValueError("OpenAI API key is required but not configured")
        return OpenAIProvider(
            api_key=config.openai_api_key,
            model=model or config.openai_model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
        )

    @staticmethod
    def _create_anthropic(config: LLMSettings, model: str | None) -> AnthropicProvider:
        if not config.anthropic_api_key:
            raise ValueError("Anthropic API key is required but not configured")
        return AnthropicProvider(
            api_key=config.anthropic_api_key,
            model=model or config.anthropic_model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
        )

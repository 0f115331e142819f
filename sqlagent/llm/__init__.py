"""
LLM Provider Module

Chat-completion abstraction over OpenAI and Anthropic.

Usage:
    from sqlagent.config import get_settings
    from sqlagent.llm import LLMProviderFactory

    provider = LLMProviderFactory.create_sql_provider(get_settings().llm)
    response = await provider.chat([{"role": "user", "content": "Hello!"}])
    print(response.content)
"""

from sqlagent.llm.anthropic import AnthropicProvider
from sqlagent.llm.base import BaseLLMProvider
from sqlagent.llm.factory import LLMProviderFactory
from sqlagent.llm.models import LLMMessage, LLMRequest, LLMResponse, LLMUsage
from sqlagent.llm.openai import OpenAIProvider

__all__ = [
    "BaseLLMProvider",
    "LLMMessage",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    "LLMProviderFactory",
    "OpenAIProvider",
    "AnthropicProvider",
]

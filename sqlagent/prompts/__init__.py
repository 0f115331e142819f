"""Prompt templates for SQL generation, explanation and schema summaries."""

from sqlagent.prompts.loader import PromptEntry, PromptLoader

__all__ = ["PromptEntry", "PromptLoader"]

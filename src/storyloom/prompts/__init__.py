"""Prompt templates for story, illustration and critique calls."""

from storyloom.prompts.loader import (
    PromptLoader,
    PromptTemplate,
    RenderedPrompt,
    TemplateNotFoundError,
    TemplateParseError,
)

__all__ = [
    "PromptLoader",
    "PromptTemplate",
    "RenderedPrompt",
    "TemplateNotFoundError",
    "TemplateParseError",
]

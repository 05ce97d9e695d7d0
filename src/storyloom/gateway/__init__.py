"""Content generation behind the branching core."""

from storyloom.gateway.base import MISSING_ILLUSTRATION, GenerationError, GenerationGateway
from storyloom.gateway.factory import build_gateway
from storyloom.gateway.llm import ChapterDraft, ChapterDraftBatch, LLMGenerationGateway

__all__ = [
    "MISSING_ILLUSTRATION",
    "ChapterDraft",
    "ChapterDraftBatch",
    "GenerationError",
    "GenerationGateway",
    "LLMGenerationGateway",
    "build_gateway",
]

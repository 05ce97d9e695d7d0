"""Assemble a generation gateway from explicit studio settings."""

from __future__ import annotations

from typing import TYPE_CHECKING

from storyloom.gateway.llm import LLMGenerationGateway
from storyloom.providers.chat import create_chat_model, parse_provider_spec
from storyloom.providers.image_factory import create_image_provider
from storyloom.storage.assets import IllustrationStore

if TYPE_CHECKING:
    from pathlib import Path

    from storyloom.config import StudioConfig


def build_gateway(config: StudioConfig, studio_path: Path) -> LLMGenerationGateway:
    """Create the LangChain-backed gateway described by ``config``.

    Raises:
        ProviderError: If the chat provider is unknown or misconfigured.
        ImageProviderError: If the image provider is unknown or misconfigured.
    """
    provider, model = parse_provider_spec(config.text_provider)
    chat_model = create_chat_model(provider, model, api_key=config.api_key_for(provider))
    image_provider = create_image_provider(config.image_provider, api_keys=config.api_keys)
    return LLMGenerationGateway(
        chat_model,
        image_provider,
        IllustrationStore(studio_path),
        provider_name=provider,
    )

"""Chat model construction via LangChain's ``init_chat_model``.

Provider choice and credentials are explicit arguments. Nothing here reads
process-wide settings except the standard Ollama host fallback.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from storyloom.observability.logging import get_logger

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

log = get_logger(__name__)

PROVIDER_DEFAULTS: dict[str, str] = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-20250514",
    "google": "gemini-2.5-flash",
    "ollama": "qwen3:8b",
}

# storyloom provider name -> init_chat_model provider name
_INIT_NAMES: dict[str, str] = {
    "openai": "openai",
    "anthropic": "anthropic",
    "google": "google_genai",
    "ollama": "ollama",
}

_PACKAGES: dict[str, str] = {
    "openai": "langchain-openai",
    "anthropic": "langchain-anthropic",
    "google": "langchain-google-genai",
    "ollama": "langchain-ollama",
}


class ProviderError(Exception):
    """Base exception for chat provider configuration errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


def parse_provider_spec(spec: str) -> tuple[str, str]:
    """Split ``provider/model`` into its parts, filling in the default model.

    Raises:
        ProviderError: If the provider is unknown.
    """
    provider, _, model = spec.partition("/")
    provider = provider.strip().lower()
    if provider not in _INIT_NAMES:
        raise ProviderError(provider, f"Unknown provider: {provider}")
    return provider, model or PROVIDER_DEFAULTS[provider]


def create_chat_model(
    provider: str,
    model: str,
    *,
    api_key: str | None = None,
    temperature: float = 0.9,
    **kwargs: Any,
) -> BaseChatModel:
    """Create a LangChain chat model.

    Args:
        provider: One of ``openai``, ``anthropic``, ``google``, ``ollama``.
        model: Model name.
        api_key: Key for hosted providers. Ignored for Ollama.
        temperature: Sampling temperature; story drafting wants variety.
        **kwargs: Forwarded to ``init_chat_model``.

    Raises:
        ProviderError: If the provider is unknown, the key is missing, or the
            LangChain integration package is not installed.
    """
    if provider not in _INIT_NAMES:
        raise ProviderError(provider, f"Unknown provider: {provider}")

    options = dict(kwargs)
    if provider == "ollama":
        options.setdefault("base_url", os.getenv("OLLAMA_HOST", "http://localhost:11434"))
    else:
        if not api_key:
            log.error("provider_config_error", provider=provider, missing="api_key")
            raise ProviderError(provider, f"API key required (api_keys.{provider} in studio.yaml)")
        options["api_key"] = api_key

    from langchain.chat_models import init_chat_model

    try:
        chat_model: BaseChatModel = init_chat_model(
            model=model,
            model_provider=_INIT_NAMES[provider],
            temperature=temperature,
            **options,
        )
    except ImportError as e:
        package = _PACKAGES[provider]
        raise ProviderError(provider, f"{package} not installed. Run: uv add {package}") from e

    log.info("chat_model_created", provider=provider, model=model)
    return chat_model

"""Build illustration backends from ``provider/model`` spec strings."""

from __future__ import annotations

from storyloom.providers.image import ImageProvider, ImageProviderError


def create_image_provider(spec: str, *, api_keys: dict[str, str] | None = None) -> ImageProvider:
    """Create an image provider.

    Args:
        spec: ``placeholder`` or ``openai[/model]``.
        api_keys: Explicit provider keys from the studio config.

    Raises:
        ImageProviderError: For an unknown provider or missing key.
    """
    provider, _, model = spec.partition("/")
    provider = provider.strip().lower()
    keys = api_keys or {}

    if provider == "placeholder":
        from storyloom.providers.image_placeholder import PlaceholderImageProvider

        return PlaceholderImageProvider()

    if provider == "openai":
        from storyloom.providers.image_openai import OpenAIImageProvider

        if model:
            return OpenAIImageProvider(api_key=keys.get("openai"), model=model)
        return OpenAIImageProvider(api_key=keys.get("openai"))

    raise ImageProviderError(provider, f"Unknown image provider: {provider}")

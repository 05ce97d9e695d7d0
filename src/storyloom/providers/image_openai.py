"""OpenAI Images API backend (gpt-image-1, dall-e-3)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NoReturn

from storyloom.observability.logging import get_logger
from storyloom.providers.image import (
    ImageContentPolicyError,
    ImageProviderConnectionError,
    ImageProviderError,
    ImageResult,
)

if TYPE_CHECKING:
    from openai import AsyncOpenAI

log = get_logger(__name__)

_SIZES_BY_FAMILY: dict[bool, dict[str, str]] = {
    # gpt-image-*
    True: {"1:1": "1024x1024", "16:9": "1536x1024", "9:16": "1024x1536"},
    # dall-e-3
    False: {"1:1": "1024x1024", "16:9": "1792x1024", "9:16": "1024x1792"},
}


class OpenAIImageProvider:
    """Illustrations through OpenAI's Images API.

    Args:
        api_key: OpenAI key. Passed in explicitly from the studio config.
        model: ``gpt-image-1`` (default) or ``dall-e-3``.
        client: Pre-built client, mainly for tests.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-image-1",
        client: AsyncOpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise ImageProviderError("openai", "API key required (api_keys.openai in studio.yaml)")
        self._model = model
        self._gpt_image = model.startswith("gpt-image")
        self._sizes = _SIZES_BY_FAMILY[self._gpt_image]
        self._client = client if client is not None else self._create_client(api_key)

    @staticmethod
    def _create_client(api_key: str | None) -> AsyncOpenAI:
        from openai import AsyncOpenAI

        return AsyncOpenAI(api_key=api_key)

    async def generate(self, prompt: str, *, aspect_ratio: str = "1:1") -> ImageResult:
        size = self._sizes.get(aspect_ratio)
        if size is None:
            raise ImageProviderError("openai", f"Unsupported aspect_ratio '{aspect_ratio}'")

        kwargs: dict[str, Any] = {"model": self._model, "prompt": prompt, "n": 1, "size": size}
        if self._gpt_image:
            kwargs["output_format"] = "png"
        else:
            kwargs["response_format"] = "b64_json"

        log.debug("openai_image_request", model=self._model, size=size, prompt_length=len(prompt))
        try:
            response = await self._client.images.generate(**kwargs)
        except Exception as e:
            self._raise_mapped(e)

        if not response.data or not response.data[0].b64_json:
            raise ImageProviderError("openai", "No image data in response (possibly filtered)")

        item = response.data[0]
        metadata: dict[str, Any] = {"provider": "openai", "model": self._model, "size": size}
        revised = getattr(item, "revised_prompt", None)
        if revised:
            metadata["revised_prompt"] = revised
        return ImageResult.from_base64(item.b64_json, content_type="image/png", **metadata)

    def _raise_mapped(self, error: Exception) -> NoReturn:
        from openai import APIConnectionError, APIStatusError

        if isinstance(error, APIConnectionError):
            raise ImageProviderConnectionError("openai", f"Connection error: {error}") from error
        if isinstance(error, APIStatusError):
            if error.status_code == 400 and "content_policy" in str(error).lower():
                raise ImageContentPolicyError("openai", f"Prompt rejected: {error}") from error
            raise ImageProviderError("openai", f"HTTP {error.status_code}: {error}") from error
        raise ImageProviderError("openai", f"Image generation failed: {error}") from error

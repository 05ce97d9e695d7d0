"""Image generation protocol for illustration backends.

LangChain has no image-model abstraction, so illustration backends implement
this small protocol directly. Implementations:

    - PlaceholderImageProvider (image_placeholder.py): offline solid-colour PNGs
    - OpenAIImageProvider (image_openai.py): gpt-image-1 / dall-e-3
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ImageResult:
    """Bytes and metadata returned by one image generation call."""

    image_data: bytes
    content_type: str = "image/png"
    provider_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def size_bytes(self) -> int:
        return len(self.image_data)

    @classmethod
    def from_base64(
        cls, b64_data: str, content_type: str = "image/png", **metadata: Any
    ) -> ImageResult:
        """Build a result from a base64 payload (with or without a data URI prefix)."""
        if b64_data.startswith("data:") and "," in b64_data:
            b64_data = b64_data.split(",", 1)[1]
        return cls(
            image_data=base64.b64decode(b64_data),
            content_type=content_type,
            provider_metadata=metadata,
        )


@runtime_checkable
class ImageProvider(Protocol):
    """Backend able to turn a text prompt into a single image."""

    async def generate(self, prompt: str, *, aspect_ratio: str = "1:1") -> ImageResult:
        """Generate one image.

        Raises:
            ImageProviderError: If generation fails for any reason.
        """
        ...


class ImageProviderError(Exception):
    """Base exception for image backend failures."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ImageContentPolicyError(ImageProviderError):
    """The backend refused the prompt on safety grounds."""


class ImageProviderConnectionError(ImageProviderError):
    """The backend could not be reached."""

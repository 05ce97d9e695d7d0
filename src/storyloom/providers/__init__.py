"""Chat and image provider integrations."""

from storyloom.providers.chat import (
    PROVIDER_DEFAULTS,
    ProviderError,
    create_chat_model,
    parse_provider_spec,
)
from storyloom.providers.image import (
    ImageContentPolicyError,
    ImageProvider,
    ImageProviderConnectionError,
    ImageProviderError,
    ImageResult,
)
from storyloom.providers.image_factory import create_image_provider
from storyloom.providers.structured_output import (
    unwrap_structured_result,
    with_structured_output,
)

__all__ = [
    "PROVIDER_DEFAULTS",
    "ImageContentPolicyError",
    "ImageProvider",
    "ImageProviderConnectionError",
    "ImageProviderError",
    "ImageResult",
    "ProviderError",
    "create_chat_model",
    "create_image_provider",
    "parse_provider_spec",
    "unwrap_structured_result",
    "with_structured_output",
]

"""Offline illustration backend.

Draws a small solid-colour PNG whose colour is derived from the prompt, so
a story can be played end to end without an image API (and tests stay
deterministic).
"""

from __future__ import annotations

import hashlib
import struct
import zlib

from storyloom.providers.image import ImageResult

_SIZES: dict[str, tuple[int, int]] = {
    "1:1": (256, 256),
    "16:9": (512, 288),
    "9:16": (288, 512),
}

# Storybook pastels.
_COLOURS: list[tuple[int, int, int]] = [
    (244, 194, 194),
    (255, 223, 186),
    (255, 250, 200),
    (202, 231, 193),
    (186, 225, 255),
    (218, 198, 240),
]

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def _png_chunk(kind: bytes, payload: bytes) -> bytes:
    crc = zlib.crc32(kind + payload) & 0xFFFFFFFF
    return struct.pack(">I", len(payload)) + kind + payload + struct.pack(">I", crc)


def solid_png(width: int, height: int, colour: tuple[int, int, int]) -> bytes:
    """Encode a ``width`` x ``height`` RGB PNG filled with ``colour``."""
    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    scanline = b"\x00" + bytes(colour) * width
    pixels = zlib.compress(scanline * height)
    return (
        _PNG_SIGNATURE
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", pixels)
        + _png_chunk(b"IEND", b"")
    )


class PlaceholderImageProvider:
    """Zero-cost image backend producing pastel swatches."""

    async def generate(self, prompt: str, *, aspect_ratio: str = "1:1") -> ImageResult:
        width, height = _SIZES.get(aspect_ratio, _SIZES["1:1"])
        digest = hashlib.sha256(prompt.encode("utf-8")).digest()
        colour = _COLOURS[digest[0] % len(_COLOURS)]

        return ImageResult(
            image_data=solid_png(width, height, colour),
            content_type="image/png",
            provider_metadata={
                "provider": "placeholder",
                "size": f"{width}x{height}",
                "colour": "#{:02x}{:02x}{:02x}".format(*colour),
                "prompt_preview": prompt[:80],
            },
        )

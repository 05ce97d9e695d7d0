"""On-disk storage for generated illustrations.

Files are named by content hash, so regenerating an identical picture (the
placeholder backend does this often) reuses the existing file.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from storyloom.observability.logging import get_logger

if TYPE_CHECKING:
    from pathlib import Path

log = get_logger(__name__)

_EXTENSIONS: dict[str, str] = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}

ILLUSTRATIONS_DIR = "illustrations"


class IllustrationStore:
    """Store illustration bytes under ``<studio>/illustrations/``.

    References returned by ``store`` are paths relative to the studio root
    and double as the ``illustration_ref`` handles kept on chapters and
    characters.
    """

    def __init__(self, studio_path: Path) -> None:
        self.studio_path = studio_path
        self.directory = studio_path / ILLUSTRATIONS_DIR

    def store(self, data: bytes, content_type: str = "image/png") -> str:
        ext = _EXTENSIONS.get(content_type, ".png")
        filename = f"{hashlib.sha256(data).hexdigest()[:16]}{ext}"
        ref = f"{ILLUSTRATIONS_DIR}/{filename}"
        path = self.directory / filename

        if path.exists():
            log.debug("illustration_deduplicated", ref=ref)
            return ref

        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        log.debug("illustration_stored", ref=ref, size_bytes=len(data))
        return ref

    def resolve(self, ref: str) -> Path | None:
        """Map a ref back to a file, or None for remote/placeholder refs."""
        if not ref.startswith(f"{ILLUSTRATIONS_DIR}/"):
            return None
        path = self.studio_path / ref
        return path if path.exists() else None

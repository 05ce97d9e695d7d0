"""Studio configuration loading.

A studio is a directory holding ``studio.yaml``, the gallery and generated
illustrations. Provider selection and credentials are resolved here, once,
and handed to the gateway factory as plain values.

Resolution order for providers:
1. CLI flags (applied by the caller)
2. Environment (``STORYLOOM_TEXT_PROVIDER``, ``STORYLOOM_IMAGE_PROVIDER``)
3. ``studio.yaml``
4. Defaults below
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from storyloom.models import DEFAULT_OPTIONS_PER_ROUND

DEFAULT_TEXT_PROVIDER = "openai/gpt-4o-mini"
DEFAULT_IMAGE_PROVIDER = "placeholder"
DEFAULT_STYLE = "Watercolor"
CONFIG_FILENAME = "studio.yaml"

# Standard key variables consulted when studio.yaml has no key for a provider.
_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}


class StudioConfigError(Exception):
    """Raised when studio configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load studio config at {path}: {reason}")


@dataclass
class StudioConfig:
    """Settings for one studio directory."""

    text_provider: str = DEFAULT_TEXT_PROVIDER
    image_provider: str = DEFAULT_IMAGE_PROVIDER
    api_keys: dict[str, str] = field(default_factory=dict)
    options_per_round: int = DEFAULT_OPTIONS_PER_ROUND
    default_style: str = DEFAULT_STYLE
    gallery_file: str = "gallery.json"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StudioConfig:
        options = int(data.get("options_per_round", DEFAULT_OPTIONS_PER_ROUND))
        if options < 1:
            raise ValueError("options_per_round must be at least 1")
        keys = data.get("api_keys") or {}
        return cls(
            text_provider=str(data.get("text_provider", DEFAULT_TEXT_PROVIDER)),
            image_provider=str(data.get("image_provider", DEFAULT_IMAGE_PROVIDER)),
            api_keys={str(k): str(v) for k, v in dict(keys).items() if v},
            options_per_round=options,
            default_style=str(data.get("default_style", DEFAULT_STYLE)),
            gallery_file=str(data.get("gallery_file", "gallery.json")),
        )

    def with_environment(self) -> StudioConfig:
        """Return a copy with environment overrides and key fallbacks applied."""
        keys = dict(self.api_keys)
        for provider, var in _KEY_ENV_VARS.items():
            if provider not in keys and os.getenv(var):
                keys[provider] = os.environ[var]
        return StudioConfig(
            text_provider=os.getenv("STORYLOOM_TEXT_PROVIDER") or self.text_provider,
            image_provider=os.getenv("STORYLOOM_IMAGE_PROVIDER") or self.image_provider,
            api_keys=keys,
            options_per_round=self.options_per_round,
            default_style=self.default_style,
            gallery_file=self.gallery_file,
        )

    def api_key_for(self, provider: str) -> str | None:
        return self.api_keys.get(provider)


def load_studio_config(studio_path: Path) -> StudioConfig:
    """Load ``studio.yaml`` from ``studio_path``.

    A missing file yields the defaults; a present but broken file is an error.

    Raises:
        StudioConfigError: If the file exists but cannot be parsed.
    """
    config_path = studio_path / CONFIG_FILENAME
    if not config_path.exists():
        return StudioConfig()

    yaml = YAML(typ="safe")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)
        if data is None:
            return StudioConfig()
        if not isinstance(data, dict):
            raise StudioConfigError(config_path, "Top level must be a mapping")
        return StudioConfig.from_dict(data)
    except StudioConfigError:
        raise
    except Exception as e:
        raise StudioConfigError(config_path, str(e)) from e


def write_default_config(studio_path: Path) -> Path:
    """Write a default ``studio.yaml`` without API keys."""
    studio_path.mkdir(parents=True, exist_ok=True)
    config_path = studio_path / CONFIG_FILENAME
    yaml = YAML()
    yaml.default_flow_style = False
    defaults = StudioConfig()
    with config_path.open("w", encoding="utf-8") as f:
        yaml.dump(
            {
                "text_provider": defaults.text_provider,
                "image_provider": defaults.image_provider,
                "options_per_round": defaults.options_per_round,
                "default_style": defaults.default_style,
                "gallery_file": defaults.gallery_file,
            },
            f,
        )
    return config_path

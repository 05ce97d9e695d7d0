"""YAML prompt templates.

Each template lives in ``templates/<name>.yaml`` with a ``system`` and/or
``user`` section. Placeholders use ``{{ name }}`` and are substituted
verbatim; unknown placeholders are left untouched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

_TEMPLATES_DIR = Path(__file__).parent / "templates"
_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass(frozen=True)
class PromptTemplate:
    """A loaded prompt template."""

    name: str
    system: str = ""
    user: str = ""

    def render(self, **values: Any) -> RenderedPrompt:
        return RenderedPrompt(
            system=_substitute(self.system, values).strip(),
            user=_substitute(self.user, values).strip(),
        )


@dataclass(frozen=True)
class RenderedPrompt:
    system: str
    user: str


class TemplateNotFoundError(Exception):
    """Raised when a template file does not exist."""

    def __init__(self, name: str, path: Path) -> None:
        self.name = name
        self.path = path
        super().__init__(f"Template not found: {name} at {path}")


class TemplateParseError(Exception):
    """Raised when a template file cannot be parsed."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Failed to parse template '{name}': {reason}")


def _substitute(text: str, values: dict[str, Any]) -> str:
    def replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        value = values[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(replace, text)


class PromptLoader:
    """Load and cache prompt templates from a directory."""

    def __init__(self, templates_path: Path | None = None) -> None:
        self.templates_path = templates_path or _TEMPLATES_DIR
        self._yaml = YAML(typ="safe")
        self._cache: dict[str, PromptTemplate] = {}

    def load(self, name: str) -> PromptTemplate:
        """Load a template by name (without the ``.yaml`` extension).

        Raises:
            TemplateNotFoundError: If the file does not exist.
            TemplateParseError: If the file is empty or not valid YAML.
        """
        if name in self._cache:
            return self._cache[name]

        path = self.templates_path / f"{name}.yaml"
        if not path.exists():
            raise TemplateNotFoundError(name, path)

        try:
            with path.open("r", encoding="utf-8") as f:
                data = self._yaml.load(f)
        except Exception as e:
            raise TemplateParseError(name, str(e)) from e

        if not data:
            raise TemplateParseError(name, "Empty file")

        template = PromptTemplate(
            name=name,
            system=str(data.get("system", "")),
            user=str(data.get("user", "")),
        )
        self._cache[name] = template
        return template

    def render(self, name: str, **values: Any) -> RenderedPrompt:
        return self.load(name).render(**values)

    def list_templates(self) -> list[str]:
        if not self.templates_path.exists():
            return []
        return sorted(p.stem for p in self.templates_path.glob("*.yaml"))

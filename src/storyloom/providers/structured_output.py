"""Structured output helpers for chat models.

All providers are driven through ``json_schema`` mode. OpenAI's strict mode
additionally wants every property listed in ``required``, so its schema is
post-processed before binding.
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel
    from langchain_core.runnables import Runnable

T = TypeVar("T", bound=BaseModel)


def _require_all(schema: dict[str, Any]) -> dict[str, Any]:
    """Recursively mark every property as required (in place)."""
    if "properties" in schema:
        schema["required"] = sorted(schema["properties"])
        for sub in schema["properties"].values():
            if isinstance(sub, dict):
                _require_all(sub)
    if isinstance(schema.get("items"), dict):
        _require_all(schema["items"])
    for sub in schema.get("$defs", {}).values():
        if isinstance(sub, dict):
            _require_all(sub)
    return schema


def with_structured_output(
    model: BaseChatModel,
    schema: type[T],
    provider_name: str | None = None,
) -> Runnable[Any, Any]:
    """Bind ``schema`` to ``model`` so ``ainvoke`` returns parsed output."""
    json_schema = schema.model_json_schema()
    strict = bool(provider_name and provider_name.lower().startswith("openai"))
    if strict:
        json_schema = _require_all(copy.deepcopy(json_schema))

    return model.with_structured_output(
        json_schema,
        method="json_schema",
        include_raw=True,
        strict=True if strict else None,
    )


def unwrap_structured_result(raw_result: Any, schema: type[T]) -> T:
    """Validate the ``parsed`` part of an ``include_raw=True`` result.

    Mocks and some providers hand back the model (or a plain dict) directly;
    those are accepted too.

    Raises:
        ValueError: If the provider reported a parsing error or returned nothing.
        pydantic.ValidationError: If the payload does not match ``schema``.
    """
    if isinstance(raw_result, dict) and "parsed" in raw_result:
        if raw_result.get("parsing_error") is not None:
            raise ValueError(f"Structured output parsing failed: {raw_result['parsing_error']}")
        raw_result = raw_result["parsed"]
    if raw_result is None:
        raise ValueError("Structured output was empty")
    if isinstance(raw_result, schema):
        return raw_result
    return schema.model_validate(raw_result)

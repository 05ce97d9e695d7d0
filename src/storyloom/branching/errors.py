"""Error types for the branching core.

``GenerationError`` (re-exported here) is the only error a transition
reports to the user. Validation errors are raised before any state change
or gateway call, so a rejected call leaves the story exactly as it was.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from storyloom.gateway.base import GenerationError

if TYPE_CHECKING:
    from storyloom.models import StoryPath

__all__ = [
    "GenerationError",
    "InvalidStateError",
    "StaleResponseError",
    "StoryError",
    "StoryValidationError",
]


class StoryError(Exception):
    """Base class for branching-core errors."""


class StoryValidationError(StoryError, ValueError):
    """An index or path that does not address generated content.

    Attributes:
        path: The offending path (a one-element path for option indices).
    """

    def __init__(self, message: str, path: StoryPath | None = None) -> None:
        self.path = path
        super().__init__(message)


class InvalidStateError(StoryValidationError):
    """A transition was requested from a state that does not allow it."""

    def __init__(self, operation: str, state: str, detail: str = "") -> None:
        self.operation = operation
        self.state = state
        message = f"Cannot {operation} while the story is '{state}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class StaleResponseError(StoryError):
    """A gateway response arrived for a timeline that has since been replaced.

    Internal: caught at the controller boundary and discarded.
    """

    def __init__(self, issued_version: int, current_version: int) -> None:
        self.issued_version = issued_version
        self.current_version = current_version
        super().__init__(
            f"Response for timeline v{issued_version} arrived at v{current_version}"
        )

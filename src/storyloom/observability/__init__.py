"""Observability helpers: structured logging."""

from storyloom.observability.logging import (
    bind_story,
    close_file_logging,
    configure_logging,
    get_logger,
    read_story_events,
    unbind_story,
)

__all__ = [
    "bind_story",
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "read_story_events",
    "unbind_story",
]

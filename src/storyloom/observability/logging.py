"""Structured logging for storyloom.

Console output goes through rich and is gated by the ``-v`` count. A
studio can additionally keep a JSONL event log under ``<studio>/logs/``.
While a story is being played every event carries a ``story`` field holding
the id the story will have in the gallery, so ``read_story_events`` can
replay how a saved story was grown.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from structlog.typing import Processor

_configured = False
_event_handler: logging.FileHandler | None = None

# Dependencies that flood DEBUG output with transport details.
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "langchain", "langchain_core", "asyncio")

_VERBOSITY_LEVELS = {0: logging.WARNING, 1: logging.INFO}

EVENT_LOG = "events.jsonl"


class EventLogHandler(logging.FileHandler):
    """Append one JSON object per log record."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry: dict[str, Any] = {
                "timestamp": datetime.now(UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
            }
            if isinstance(record.msg, dict):
                fields = {
                    k: v for k, v in record.msg.items() if k not in ("level", "timestamp")
                }
                entry["event"] = fields.pop("event", "")
                entry.update(fields)
            else:
                entry["event"] = record.getMessage()

            if self.stream:
                self.stream.write(json.dumps(entry, default=str) + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    studio_path: Path | None = None,
) -> None:
    """Configure console and (optionally) file logging.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2+=DEBUG on the console.
        log_to_file: Also write every event to ``<studio_path>/logs/events.jsonl``.
        studio_path: Studio directory. Required when ``log_to_file`` is set.

    Raises:
        ValueError: If ``log_to_file`` is set without a ``studio_path``.
    """
    global _configured, _event_handler

    if log_to_file and studio_path is None:
        raise ValueError("studio_path is required when log_to_file=True")

    if _event_handler is not None:
        _event_handler.close()
        _event_handler = None

    console_level = _VERBOSITY_LEVELS.get(verbosity, logging.DEBUG)
    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            level=console_level,
            rich_tracebacks=True,
            show_time=verbosity >= 1,
            show_path=verbosity >= 2,
            markup=False,
        )
    ]

    if log_to_file and studio_path is not None:
        logs_dir = studio_path / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        _event_handler = EventLogHandler(str(logs_dir / EVENT_LOG), mode="a")
        _event_handler.setLevel(logging.DEBUG)
        handlers.append(_event_handler)

    root_level = logging.DEBUG if (verbosity > 0 or log_to_file) else logging.WARNING
    logging.basicConfig(level=root_level, format="%(message)s", handlers=handlers, force=True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Return a bound structlog logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def close_file_logging() -> None:
    """Close the JSONL event log, if open."""
    global _event_handler
    if _event_handler is not None:
        _event_handler.close()
        _event_handler = None


def bind_story(story_id: str) -> None:
    """Tag every later event in the current context with ``story=story_id``."""
    structlog.contextvars.bind_contextvars(story=story_id)


def unbind_story() -> None:
    structlog.contextvars.unbind_contextvars("story")


def read_story_events(studio_path: Path, story_id: str) -> list[dict[str, Any]]:
    """Return the logged events of one story, oldest first.

    Lines that are not JSON objects (a crash mid-write) are skipped. A studio
    without an event log yields an empty list.
    """
    path = studio_path / "logs" / EVENT_LOG
    if not path.exists():
        return []

    events: list[dict[str, Any]] = []
    with path.open(encoding="utf-8") as f:
        for line in f:
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(entry, dict) and entry.get("story") == story_id:
                events.append(entry)
    return events

from __future__ import annotations

import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
import sys
from typing import Final, Literal, cast


LOGGER_NAME: Final[str] = "feedbackhub"
LOG_FILE_NAME: Final[str] = "feedbackhub.log"
_FORMAT: Final[str] = "%(asctime)s %(levelname)s %(name)s %(message)s"
_MAX_VALUE_LEN: Final[int] = 160

# What an operator follows in "low" mode: a record's life from submission to ticket.
LIFECYCLE_EVENTS: Final[frozenset[str]] = frozenset(
    {
        "feedback_stored",
        "feedback_deleted",
        "jira_ticket_created",
        "jira_ticket_linked",
        "jira_ticket_skipped",
        "jira_ticket_create_failed",
        "jira_ticket_orphaned",
    }
)

# Jira credentials travel through config and client objects.
SECRET_FIELDS: Final[frozenset[str]] = frozenset({"token", "authorization", "password"})


VerboseMode = Literal["low", "high"]


def configure_logging(
    verbose: bool | str | None,
    *,
    log_dir: Path | None = None,
) -> None:
    """Attach handlers to the ``feedbackhub`` logger.

    ``None``/``False`` silences it. ``True`` and ``"high"`` log everything from
    DEBUG up. ``"low"`` keeps warnings plus the events in ``LIFECYCLE_EVENTS``.
    With ``log_dir`` the same records also go to ``feedbackhub.log``, rotated at
    UTC midnight.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    mode = _parse_verbose_mode(verbose)
    if mode is None:
        logger.addHandler(logging.NullHandler())
        logger.setLevel(logging.CRITICAL + 1)
        return

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            TimedRotatingFileHandler(
                log_dir / LOG_FILE_NAME,
                when="midnight",
                utc=True,
                encoding="utf-8",
                delay=True,
            )
        )

    formatter = logging.Formatter(_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        if mode == "low":
            handler.addFilter(_is_lifecycle_record)
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if mode == "high" else logging.INFO)


def log_event(
    logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: object
) -> None:
    logger.log(level, format_event(event, **fields), extra={"event": event})


def format_event(event: str, **fields: object) -> str:
    pairs = [("event", event), *sorted(fields.items())]
    return " ".join(f"{key}={_render(key, value)}" for key, value in pairs)


def _render(key: str, value: object) -> str:
    if key.lower() in SECRET_FIELDS:
        return "<redacted>"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int | float):
        return str(value)
    if not isinstance(value, str):
        return f"<{type(value).__name__}>"

    text = " ".join(value.split())
    if not text:
        return "<empty>"
    if len(text) > _MAX_VALUE_LEN:
        text = text[:_MAX_VALUE_LEN] + "..."
    if any(ch in text for ch in ' ="'):
        return json.dumps(text)
    return text


def _is_lifecycle_record(record: logging.LogRecord) -> bool:
    if record.levelno >= logging.WARNING:
        return True
    return getattr(record, "event", None) in LIFECYCLE_EVENTS


def _parse_verbose_mode(verbose: bool | str | None) -> VerboseMode | None:
    if verbose is None or verbose is False:
        return None
    if verbose is True:
        return "high"
    normalized = verbose.strip().lower()
    if normalized not in {"low", "high"}:
        raise ValueError(f"Unsupported verbose mode: {verbose!r}")
    return cast(VerboseMode, normalized)

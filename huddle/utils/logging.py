"""
Structured logging for huddle.

Every module logs through structlog. Production and staging render one
JSON object per line; development renders colored console output. Log
events carry:
  - the request id of the HTTP request being handled
  - the discussion id, round and persona while a deliberation runs
  - no credentials: Slack, GitHub and model keys are redacted
  - no full chat bodies: message text and prompts are clipped

Usage:
    from huddle.utils.logging import setup_logging, get_logger

    setup_logging(log_level="INFO", environment="development")

    logger = get_logger(__name__)
    logger.info("round_started", discussion_id="d-1", round=1)
"""

import logging
import re
import sys
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

REDACTED = "***REDACTED***"
MAX_BODY_CHARS = 300

_SECRET_VALUE_RES = (
    re.compile(r"xox[abpr]-[A-Za-z0-9\-]+"),         # Slack bot/user/app tokens
    re.compile(r"gh[pousr]_[A-Za-z0-9]{36,}"),       # GitHub tokens
    re.compile(r"github_pat_[A-Za-z0-9_]{40,}"),
    re.compile(r"sk-ant-[A-Za-z0-9\-_]{40,}"),       # Anthropic
    re.compile(r"sk-[A-Za-z0-9]{40,}"),              # OpenAI
    re.compile(r"Bearer\s+[A-Za-z0-9\-_.]+"),
)

_SECRET_KEY_PARTS = (
    "token", "secret", "password", "api_key", "apikey",
    "authorization", "credentials", "private_key",
)

# Event fields that may hold whole Slack messages or model prompts
_BODY_KEYS = frozenset({"text", "prompt", "context", "body", "reply", "history"})

_NOISY_LOGGERS = ("slack_sdk", "httpx", "LiteLLM", "github")


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, str) and any(p.search(value) for p in _SECRET_VALUE_RES):
        return REDACTED
    return value


def _sanitize_event_dict(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Redact values under secret-looking keys and values that look like credentials."""
    return {
        key: REDACTED
        if any(part in key.lower() for part in _SECRET_KEY_PARTS)
        else _sanitize_value(value)
        for key, value in event_dict.items()
    }


def _clip_message_bodies(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key in _BODY_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and len(value) > MAX_BODY_CHARS:
            event_dict[key] = f"{value[:MAX_BODY_CHARS]}... ({len(value)} chars)"
    return event_dict


def _add_app_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service", "huddle")
    return event_dict


def _drop_color_message_key(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Uvicorn duplicates the message into 'color_message'; drop it."""
    event_dict.pop("color_message", None)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        # registry and board modules log %-style
        structlog.stdlib.PositionalArgumentsFormatter(),
        _add_app_context,
        _drop_color_message_key,
        _sanitize_event_dict,
        _clip_message_bodies,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _select_renderer(json_output: bool) -> Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True, pad_event_to=40)


def setup_logging(
    log_level: str = "INFO",
    environment: str = "development",
    json_output: Optional[bool] = None,
) -> None:
    """
    Route structlog and stdlib logging through one stdout handler.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        environment: development, staging or production
        json_output: Force JSON output (auto-detected from environment if None)
    """
    if json_output is None:
        json_output = environment in ("production", "staging")
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    shared = _shared_processors()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _select_renderer(json_output),
            ],
            foreign_pre_chain=shared,
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers = [handler]

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    logging.captureWarnings(True)


def get_logger(name: Optional[str] = None, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    """
    Args:
        name: Logger name (typically __name__)
        **initial_context: Key-value pairs bound to every event of this logger
    """
    log = structlog.get_logger(name)
    if initial_context:
        log = log.bind(**initial_context)
    return log


def bind_contextvars(**kwargs: Any) -> None:
    """Bind values for every logger in the current async context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_contextvars(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_contextvars() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def discussion_log_context(discussion_id: str, **extra: Any) -> Iterator[None]:
    """
    Tag log events inside the block with a discussion id.

    Example:
        with discussion_log_context(discussion.id, round=2):
            logger.info("round_started")  # discussion_id and round included
    """
    with structlog.contextvars.bound_contextvars(discussion_id=discussion_id, **extra):
        yield


def generate_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:12]}"

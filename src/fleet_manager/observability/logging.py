"""structlog setup for the fleet manager.

Library code logs through ``logging.getLogger(__name__)`` with
``extra={"instance_id": ..., "callback_id": ...}``. ``configure_logging``
routes those stdlib records through structlog's ``ProcessorFormatter`` so
they come out as one JSON object per line, stamped with the active
request id and the lifted ``extra`` fields.

Call ``configure_logging()`` once from the process entry point; tests and
embedding applications keep their own logging setup.
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar

import structlog

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

# ``extra=`` keys lifted from stdlib records into the event.
_EXTRA_FIELDS = (
    "instance_id",
    "callback_id",
    "request_id",
    "event_source",
    "status",
)

_configured = False


def _add_request_id(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    request_id = request_id_ctx.get()
    if request_id is not None:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def _lift_stdlib_extra(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    record = event_dict.get("_record")
    if record is None:
        return event_dict
    for name in _EXTRA_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            event_dict.setdefault(name, value)
    return event_dict


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(*, level: str | None = None, json_output: bool | None = None) -> None:
    """Install the structlog formatter on the root logger (idempotent).

    ``level`` falls back to ``LOG_LEVEL`` (default INFO). ``json_output``
    falls back to ``LOG_FORMAT`` and is on unless that is set to something
    other than ``json``; off means structlog's console renderer.
    """
    global _configured
    if _configured:
        return
    _configured = True

    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") == "json"
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*_pre_chain(), _lift_stdlib_extra],
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    root.handlers[:] = [stream]
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)

"""Logging, metrics and request correlation for the fleet manager."""

from .logging import configure_logging, get_logger, request_id_ctx
from .metrics import metrics_text

__all__ = [
    "configure_logging",
    "get_logger",
    "metrics_text",
    "request_id_ctx",
]

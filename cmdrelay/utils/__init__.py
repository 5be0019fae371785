# cmdrelay/utils/__init__.py
"""Logging and tracing helpers."""

from cmdrelay.utils.logging import (
    StructuredFormatter,
    configure_logging,
    get_request_id,
    set_request_id,
)
from cmdrelay.utils.observability import setup_logfire

__all__ = [
    "StructuredFormatter",
    "configure_logging",
    "get_request_id",
    "set_request_id",
    "setup_logfire",
]

# cmdrelay/utils/observability.py
"""Optional Logfire tracing for the listener and outbound webhook calls."""

import logging
from typing import Any

from cmdrelay.config import settings

logger = logging.getLogger(__name__)


def setup_logfire(app: Any = None) -> None:
    """Send traces to Logfire when LOGFIRE_TOKEN is set.

    Instruments httpx (webhook deliveries) and, when given, the FastAPI app.
    Health probes are left out of the traces.
    """
    if not settings.logfire_token:
        return

    try:
        import logfire

        logfire.configure(
            token=settings.logfire_token,
            service_name="cmdrelay",
            send_to_logfire="if-token-present",
        )
        logfire.instrument_httpx(capture_all=True)
        if app is not None:
            logfire.instrument_fastapi(app, excluded_urls="/health")
    except Exception as e:
        logger.warning("Failed to configure Logfire: %s", e)

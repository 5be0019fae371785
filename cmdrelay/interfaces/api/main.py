# cmdrelay/interfaces/api/main.py
"""FastAPI application receiving platform event callbacks.

Provides the signed event callback endpoint that feeds the relay queue, plus
health, status and notification endpoints for local tooling.
"""

import json
import logging
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Annotated, Any

import uvicorn
from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# Load environment variables from .env file
load_dotenv()

from cmdrelay.config import settings  # noqa: E402
from cmdrelay.core.lifecycle import get_lifecycle_manager  # noqa: E402
from cmdrelay.core.relay.service import RelayService, get_relay_service  # noqa: E402
from cmdrelay.core.sessions.dispatch import Notification  # noqa: E402
from cmdrelay.interfaces.api.events import ChannelFullError, EventGateway  # noqa: E402
from cmdrelay.interfaces.api.schemas import (  # noqa: E402
    EventCallback,
    NotifyRequest,
    NotifyResponse,
    StatusResponse,
)
from cmdrelay.interfaces.api.security import (  # noqa: E402
    NONCE_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    get_rate_limit_string,
    limiter,
    verify_api_key,
    verify_event_signature,
)
from cmdrelay.middleware.guardrails import CommandPolicy, create_default_policy  # noqa: E402
from cmdrelay.utils.logging import configure_logging, set_request_id  # noqa: E402
from cmdrelay.utils.observability import setup_logfire  # noqa: E402

logger = logging.getLogger(__name__)

ApiKey = Annotated[str, Depends(verify_api_key)]


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def get_service(app: FastAPI) -> RelayService:
    service = getattr(app.state, "service", None)
    if service is None:
        service = get_relay_service()
        app.state.service = service
    return service


def get_gateway(app: FastAPI) -> EventGateway:
    """Get the app's event gateway, building it on first use."""
    gateway = getattr(app.state, "gateway", None)
    if gateway is None:
        service = get_service(app)
        gateway = EventGateway(service.store, service.channel, app.state.policy)
        app.state.gateway = gateway
    return gateway


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logfire(app)

    if not settings.event_secret:
        logger.warning("VERIFY_TOKEN not set - event signatures are not checked")

    service = get_service(app)
    get_gateway(app)

    lifecycle = get_lifecycle_manager()
    lifecycle.register("scheduler", service.scheduler)
    lifecycle.register("relay", service)
    await lifecycle.startup()
    logger.info("Listening for events on %s", settings.events_path)

    yield

    await lifecycle.shutdown()
    logger.info("Shutting down...")


router = APIRouter()


@router.post(settings.events_path)
async def receive_event(request: Request) -> JSONResponse:
    """Receive a platform event callback.

    Verifies the signature over the raw body, then dispatches by event type.
    Every handled callback is acknowledged with code 0, including ones whose
    command was dropped.
    """
    body = await request.body()
    if not verify_event_signature(
        request.headers.get(TIMESTAMP_HEADER),
        request.headers.get(NONCE_HEADER),
        request.headers.get(SIGNATURE_HEADER),
        body,
        settings.event_secret,
    ):
        client = request.client.host if request.client else "unknown"
        logger.warning("Invalid event signature from %s", client)
        return _error("Invalid signature", 401)

    try:
        payload = json.loads(body)
        if not isinstance(payload, dict):
            raise ValueError("callback body must be a JSON object")
        callback = EventCallback.model_validate(payload)
    except (ValueError, ValidationError) as e:
        logger.warning("Invalid event body: %s", e)
        return _error("Invalid JSON", 400)

    try:
        result = await get_gateway(request.app).handle(callback)
    except ChannelFullError:
        return _error("Command channel full", 503)
    except Exception as e:
        logger.exception("Error processing event: %s", e)
        return _error("Internal server error", 500)

    return JSONResponse(result)


@router.api_route(
    settings.events_path,
    methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS"],
    include_in_schema=False,
)
async def events_method_not_allowed() -> JSONResponse:
    return _error("Method not allowed", 405)


@router.get("/health")
@limiter.limit(get_rate_limit_string)
async def health_check(request: Request) -> dict[str, Any]:
    """Health check endpoint.

    Returns:
        Dictionary with health status and whether the relay is draining.
    """
    service = request.app.state.service
    return {
        "status": "healthy",
        "relay_running": service.is_running if service else False,
    }


@router.get("/status", response_model=StatusResponse)
@limiter.limit(get_rate_limit_string)
async def relay_status(request: Request, _api_key: ApiKey) -> StatusResponse:
    """Report queue counts, recent commands and scheduled jobs."""
    return StatusResponse(**get_service(request.app).get_status())


@router.post("/notify", response_model=NotifyResponse)
@limiter.limit(get_rate_limit_string)
async def notify(
    request: Request, notify_request: NotifyRequest, _api_key: ApiKey
) -> NotifyResponse:
    """Issue a session and send its notification to the chat channel.

    Args:
        notify_request: Notification raised by the local session.

    Returns:
        NotifyResponse with the session id and the token users reply with.

    Raises:
        HTTPException: 502 if the notification could not be delivered.
    """
    session = await get_service(request.app).notify(
        Notification(
            type=notify_request.type,
            project=notify_request.project,
            message=notify_request.message,
            working_context=notify_request.working_context,
            metadata=notify_request.metadata,
        )
    )
    if session is None:
        raise HTTPException(status_code=502, detail="Notification could not be delivered")

    return NotifyResponse(
        session_id=session.id,
        token=session.token,
        expires_at=session.expires_at.isoformat(),
    )


async def request_id_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    set_request_id(request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12])
    return await call_next(request)


def create_app(
    service: RelayService | None = None, policy: CommandPolicy | None = None
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        service: Relay service to feed; defaults to the settings-based
            singleton, created lazily on first use.
        policy: Security filter policy; defaults to one built from settings.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Command Relay",
        description="Relays replies from chat notifications to a local terminal session",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.gateway = None
    app.state.policy = policy or create_default_policy()
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.middleware("http")(request_id_middleware)
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    """Run the event listener."""
    configure_logging(settings.log_level, json_output=settings.log_json)

    uvicorn.run(
        app,
        host=settings.event_host,
        port=settings.event_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()

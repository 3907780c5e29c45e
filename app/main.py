# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""FastAPI application for the age gate.

**HTTP Endpoints** (``/age-gate`` is the configurable gate path)

* ``GET /age-gate``: Decide whether the visitor must verify.  Answers
  200 when no verification is needed, or 451 (Unavailable For Legal
  Reasons) with the visitor's region and the launch link of every
  configured provider.

* ``GET /age-gate/{provider}/launch``: Send the visitor to the provider,
  or straight back to the gate if already verified.

* ``POST /age-gate/{provider}/callback``: Server-to-server result
  notification (GoCam).

* ``GET|POST /age-gate/{provider}/linkback``: The visitor returning from
  the provider (RedactID posts its signed assertion here).

* ``POST /age-gate/clear-cookie``: Forget the visitor's token cookie.

* ``GET /healthz``: Service status, cache statistics and configured
  providers.

The visitor's account id is taken from a header set by the upstream
authentication layer (``X-Account-ID`` by default); guests have none.

Architecture
------------
The async lifespan context manager builds the service graph once,
stores it on ``app.state.services``, creates the database tables, and
releases the database engine and geolocation reader on shutdown.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response

from app.config import (
    HTTP_HOST,
    HTTP_PORT,
    LOG_FORMAT,
    LOG_LEVEL,
    TOKEN_COOKIE_MAX_AGE_SECONDS,
    TOKEN_COOKIE_NAME,
    Settings,
    load_settings,
)
from app.db.session import init_database
from app.agegate.api_models import AgeGateResponse, ErrorResponse, HealthResponse, ProviderLink
from app.agegate.exceptions import AgeGateError, CallbackRejectedError, ConfigurationError
from app.agegate.models import OutcomeKind, ProviderOutcome, ProviderRequest, VisitorContext
from app.agegate.services import AgeGateServices, build_services


# ======================================================================
# Structured JSON logging
# ======================================================================


class _JSONFormatter(logging.Formatter):
    """Structured JSON log formatter.

    Produces one JSON object per log line with fields:

    * ``timestamp``: ISO 8601 UTC timestamp.
    * ``level``: Log level name (INFO, WARNING, ERROR, etc.).
    * ``logger``: Logger name.
    * ``message``: The formatted log message.
    * ``module``: Source module name.
    * ``funcName``: Source function name.

    If the log record carries an exception, it is serialized as an
    ``exception`` field containing the formatted traceback string.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def _configure_logging() -> None:
    """Configure root logging from ``LOG_LEVEL`` and ``LOG_FORMAT``.

    ``LOG_FORMAT=text`` selects a plain human-readable format; anything
    else produces one JSON object per line.  Existing handlers are
    removed first to prevent duplicate output under uvicorn.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT.lower() == "text":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    else:
        handler.setFormatter(_JSONFormatter())

    root.addHandler(handler)
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))

    # Suppress noisy third-party loggers.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# Module-level logger (configured properly after lifespan runs).
logger = logging.getLogger("agegate.main")


# ======================================================================
# Application lifespan
# ======================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services on startup and release them on shutdown.

    Services already placed on ``app.state.services`` (by tests) are used
    as given.
    """
    _configure_logging()
    settings: Settings = app.state.settings

    services: Optional[AgeGateServices] = getattr(app.state, "services", None)
    if services is None:
        services = build_services(settings)
        app.state.services = services

    init_database(services.session_factory)
    logger.info(
        "Age gate starting: gate=%s, providers=%s, log_level=%s",
        settings.age_gate_path,
        [p.value for p in services.providers.configured()],
        LOG_LEVEL,
    )

    yield

    logger.info("Age gate shutting down")
    services.close()
    logger.info("Age gate shutdown complete")


# ======================================================================
# Request helpers
# ======================================================================


def _services(request: Request) -> AgeGateServices:
    return request.app.state.services


def _client_ip(request: Request, settings: Settings) -> str:
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def _account_id(request: Request, settings: Settings) -> int:
    raw = request.headers.get(settings.account_id_header, "")
    try:
        return max(int(raw), 0)
    except ValueError:
        return 0


def build_context(request: Request) -> VisitorContext:
    """Collect everything the services need to know about the visitor."""
    settings: Settings = request.app.state.settings
    return VisitorContext(
        ip=_client_ip(request, settings),
        account_id=_account_id(request, settings),
        cookie_token=request.cookies.get(TOKEN_COOKIE_NAME, ""),
        user_agent=request.headers.get("user-agent", ""),
        host=request.url.hostname or "",
        scheme=request.url.scheme,
    )


async def _provider_request(request: Request) -> ProviderRequest:
    form: Dict[str, str] = {}
    if request.method == "POST":
        form = {k: v for k, v in (await request.form()).items() if isinstance(v, str)}
    return ProviderRequest(query=dict(request.query_params), form=form)


def _set_token_cookie(response: Response, token: str, secure: bool) -> None:
    response.set_cookie(
        TOKEN_COOKIE_NAME,
        token,
        max_age=TOKEN_COOKIE_MAX_AGE_SECONDS,
        path="/",
        secure=secure,
        httponly=True,
        samesite="lax",
    )


def _to_response(outcome: ProviderOutcome, context: VisitorContext) -> Response:
    if outcome.kind == OutcomeKind.REDIRECT:
        response: Response = RedirectResponse(outcome.location, status_code=outcome.status_code)
    elif outcome.kind == OutcomeKind.MESSAGE:
        response = HTMLResponse(outcome.message, status_code=outcome.status_code)
    else:
        response = Response(status_code=outcome.status_code)

    if outcome.set_cookie_token:
        _set_token_cookie(response, outcome.set_cookie_token, secure=context.scheme == "https")
    return response


# ======================================================================
# Endpoints
# ======================================================================


def _build_router(settings: Settings) -> APIRouter:
    router = APIRouter(prefix=settings.age_gate_path, tags=["age-gate"])

    @router.get(
        "",
        response_model=AgeGateResponse,
        responses={451: {"model": AgeGateResponse}},
        summary="Age verification decision",
    )
    async def age_gate(request: Request) -> JSONResponse:
        services = _services(request)
        context = build_context(request)

        if not await services.engine.should_verify(context):
            body = AgeGateResponse(verify_required=False)
            return JSONResponse(content=body.model_dump(), status_code=200)

        links = [
            ProviderLink(
                provider=provider.value,
                launch_url=f"{settings.age_gate_path}/{provider.value}/launch",
            )
            for provider in services.providers.configured()
        ]
        body = AgeGateResponse(
            verify_required=True,
            region=context.display_region_name or None,
            providers=links,
        )
        return JSONResponse(content=body.model_dump(), status_code=451)

    @router.get("/{provider}/launch", summary="Start verification with a provider")
    async def launch(provider: str, request: Request) -> Response:
        context = build_context(request)
        outcome = await _services(request).providers.get(provider).launch(context)
        return _to_response(outcome, context)

    @router.post("/{provider}/callback", summary="Provider result notification")
    async def callback(provider: str, request: Request) -> Response:
        context = build_context(request)
        handler = _services(request).providers.get(provider)
        outcome = await handler.callback(context, await _provider_request(request))
        return _to_response(outcome, context)

    @router.api_route("/{provider}/linkback", methods=["GET", "POST"], summary="Visitor returns from a provider")
    async def linkback(provider: str, request: Request) -> Response:
        context = build_context(request)
        handler = _services(request).providers.get(provider)
        outcome = await handler.linkback(context, await _provider_request(request))
        return _to_response(outcome, context)

    @router.post("/clear-cookie", summary="Forget the verification token cookie")
    async def clear_cookie() -> Response:
        response = Response(status_code=204)
        response.delete_cookie(TOKEN_COOKIE_NAME, path="/")
        return response

    return router


async def _health(request: Request) -> HealthResponse:
    services = _services(request)
    return HealthResponse(
        status="ok",
        cache=services.cache.stats(),
        providers=[p.value for p in services.providers.configured()],
    )


# ======================================================================
# Error handling
# ======================================================================


async def _callback_rejected_handler(request: Request, exc: CallbackRejectedError) -> Response:
    logger.warning("Callback rejected: %s", exc.message)
    return PlainTextResponse(exc.message, status_code=CallbackRejectedError.status_code)


async def _configuration_error_handler(request: Request, exc: ConfigurationError) -> Response:
    logger.error("Configuration error on %s: %s", request.url.path, exc.message)
    body = ErrorResponse(code=exc.code, message="Age verification is not available right now")
    return JSONResponse(content=body.model_dump(), status_code=ConfigurationError.status_code)


async def _age_gate_error_handler(request: Request, exc: AgeGateError) -> Response:
    status_code = getattr(exc, "status_code", 400)
    logger.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
    body = ErrorResponse(code=exc.code, message=exc.message)
    return JSONResponse(content=body.model_dump(), status_code=status_code)


async def _unhandled_error_handler(request: Request, exc: Exception) -> Response:
    logger.exception("Unhandled exception on %s", request.url.path)
    body = ErrorResponse(code="INTERNAL_ERROR", message="Unexpected server error")
    return JSONResponse(content=body.model_dump(), status_code=500)


# ======================================================================
# FastAPI application
# ======================================================================


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[AgeGateServices] = None,
) -> FastAPI:
    """Create the application.

    Parameters
    ----------
    settings : Settings, optional
        Defaults to :func:`app.config.load_settings`.
    services : AgeGateServices, optional
        Prebuilt service graph; built in the lifespan when omitted.
    """
    settings = settings or (services.settings if services else load_settings())

    application = FastAPI(
        title="Age Gate",
        description=(
            "Region-aware age verification gate. Decides whether a visitor "
            "must verify their age and runs the verification provider "
            "handshakes."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    application.state.settings = settings
    if services is not None:
        application.state.services = services

    application.include_router(_build_router(settings))
    application.add_api_route(
        "/healthz",
        _health,
        methods=["GET"],
        response_model=HealthResponse,
        summary="Health check",
        tags=["health"],
    )

    application.add_exception_handler(CallbackRejectedError, _callback_rejected_handler)
    application.add_exception_handler(ConfigurationError, _configuration_error_handler)
    application.add_exception_handler(AgeGateError, _age_gate_error_handler)
    application.add_exception_handler(Exception, _unhandled_error_handler)
    return application


app = create_app()


# ======================================================================
# Application runner (for direct invocation)
# ======================================================================


def main() -> None:
    """Run the age gate using uvicorn.

    This entry point is intended for direct invocation during
    development::

        python -m app.main

    For production deployments, use uvicorn directly::

        uvicorn app.main:app --host 0.0.0.0 --port 8000
    """
    import uvicorn

    _configure_logging()

    logger.info("Starting age gate: HTTP=%s:%d", HTTP_HOST, HTTP_PORT)

    uvicorn.run(
        "app.main:app",
        host=HTTP_HOST,
        port=HTTP_PORT,
        log_level=LOG_LEVEL.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings
from .container import ApplicationContainer
from .logging import configure_logging
from ..domain.errors import StorageError, SubscriptionError, UpstreamBillingError
from ..infrastructure.persistence.sqlite import SQLitePersistence
from ..presentation.api.routers import subscriptions as subscriptions_router
from ..presentation.api.routers import webhooks as webhooks_router
from ..services.stripe_service import StripeService
from ..services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

_PUBLIC_SERVER_ERRORS = {
    UpstreamBillingError: "Billing provider request failed",
    StorageError: "Subscription store unavailable",
}


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    started_at = time.monotonic()

    app = FastAPI(title="Subscription Hub", lifespan=_create_lifespan(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(subscriptions_router.router)
    app.include_router(webhooks_router.router)
    _register_exception_handlers(app)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "service": settings.service_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - started_at, 3),
        }

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        container: ApplicationContainer = request.app.state.container  # type: ignore[attr-defined]
        try:
            container.persistence.ping()
        except StorageError as exc:
            logger.error("Readiness check failed: %s", exc)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not ready", "service": settings.service_name},
            )
        return JSONResponse(content={"status": "ready", "service": settings.service_name})

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(SubscriptionError)
    async def subscription_error_handler(request: Request, exc: SubscriptionError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
            message = _PUBLIC_SERVER_ERRORS.get(type(exc), "Internal server error")
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
            message = exc.message
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": message},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = "Invalid request body"
        if errors:
            location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
            if location:
                message = f"Invalid value for {location}"
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": message},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = "Route not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": message},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Internal server error"},
        )


def _create_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        try:
            persistence = SQLitePersistence(settings.database_path)
        except Exception:
            logger.exception("Unable to open subscription store at %s", settings.database_path)
            raise
        stripe_service = StripeService(
            api_key=settings.stripe_api_key,
            api_version=settings.stripe_api_version,
        )
        if not stripe_service.is_configured:
            logger.warning("Stripe API key not set; paid subscriptions cannot be created")
        subscription_service = SubscriptionService(
            persistence,
            persistence,
            stripe_service,
            default_trial_days=settings.default_trial_days,
        )

        app.state.container = ApplicationContainer(  # type: ignore[attr-defined]
            settings=settings,
            persistence=persistence,
            stripe_service=stripe_service,
            subscription_service=subscription_service,
        )
        logger.info("%s ready, store at %s", settings.service_name, settings.database_path)

        try:
            yield
        finally:
            persistence.close()

    return lifespan

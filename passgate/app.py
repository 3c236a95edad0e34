from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from passgate.api.error_handling import register_exception_handlers
from passgate.api.routes import health_router, router
from passgate.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

__version__ = "0.1.0"

# Longer client ids are replaced with a generated one
MAX_REQUEST_ID_LENGTH = 128


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup so configuration errors fail fast."""
    from passgate.service.runtime import get_runtime

    runtime = get_runtime()
    logger.info(
        "app_started",
        app_name=runtime.settings.app_name,
        version=__version__,
        email_configured=runtime.email_service.is_configured,
    )
    yield
    logger.info("app_stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Passgate", version=__version__, lifespan=lifespan)

    @app.middleware("http")
    async def add_correlation_id(request, call_next):
        """Tag each request with a correlation ID.

        Taken from the X-Request-ID header when the client sends a usable
        one, generated otherwise, and echoed back on the response.
        """
        client_request_id = request.headers.get("X-Request-ID")
        if client_request_id and len(client_request_id) > MAX_REQUEST_ID_LENGTH:
            client_request_id = None
        correlation_id = set_correlation_id(client_request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(router)
    app.include_router(health_router)
    return app


app = create_app()

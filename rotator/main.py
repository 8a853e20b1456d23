"""Secret Rotation Service - HTTP Application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from rotator.api import router as rotation_router
from rotator.core.config import settings
from rotator.logging_hardening import configure_logging

# Initialize logging redaction filters early
configure_logging(settings.LOG_LEVEL)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if settings.MODE == "prod" and settings.VAULT_BACKEND.lower() == "memory":
        raise RuntimeError("In PROD, VAULT_BACKEND must not be 'memory'")
    logger.info(
        f"Rotation service starting (vault={settings.VAULT_BACKEND}, target={settings.TARGET_BACKEND})"
    )
    yield
    # Shutdown
    logger.info("Rotation service stopped")


app = FastAPI(
    title="Secret Rotation Service",
    description="Four-step credential rotation for vault-managed secrets",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(rotation_router.router)


def setup_opentelemetry(app: FastAPI):
    from rotator.observability.tracing import setup_tracing
    provider = setup_tracing(settings.OTEL_EXPORTER_OTLP_ENDPOINT, dev_mode=settings.DEV_MODE)
    if provider is None:
        return

    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    # Exclude health checks from tracing to reduce noise
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider, excluded_urls="health/*")


if settings.TRACING_ENABLED:
    setup_opentelemetry(app)


@app.exception_handler(HTTPException)
async def rotation_http_exception_handler(request: Request, exc: HTTPException):
    # Rotation routes return the error body at top level
    if request.url.path.startswith("/rotation/"):
        if isinstance(exc.detail, dict) and "error" in exc.detail:
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.detail,
                headers=exc.headers
            )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=exc.headers
    )

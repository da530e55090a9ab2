"""
Main Application - FastAPI presentation adapter over one store session.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest

from storekit_entitlements.api.routes import router
from storekit_entitlements.config import settings
from storekit_entitlements.observability import get_logger, setup_logging, setup_tracing
from storekit_entitlements.observability.tracing import instrument_fastapi
from storekit_entitlements.services.http_store import HttpStoreClient
from storekit_entitlements.services.session import StoreSession

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Startup builds the session and starts the transaction listener;
    shutdown cancels and joins it.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        store_base_url=settings.store_base_url,
        tracing_enabled=settings.tracing_enabled,
    )

    store = HttpStoreClient(settings)
    session = StoreSession(
        catalog_client=store,
        purchase_client=store,
        ledger=store,
        settings=settings,
    )
    app.state.store_session = session
    await session.start()

    yield

    logger.info("application_shutting_down")
    await session.close()
    await store.aclose()
    app.state.store_session = None


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)

setup_tracing()
instrument_fastapi(app)


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log every request with its duration."""
    start_time = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_seconds=round(time.perf_counter() - start_time, 6),
    )
    return response


app.include_router(router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus metrics in text format."""
    if not settings.metrics_enabled:
        return PlainTextResponse("", status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storekit_entitlements.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )

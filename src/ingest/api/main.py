"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import SQLModel

from ingest.api.routes import backfill, queue
from ingest.db.engine import get_engine
from ingest.errors import CallerCategory, FailureCode, IngestError, ProviderError

logger = logging.getLogger(__name__)


async def _ingest_error_handler(request: Request, exc: IngestError) -> JSONResponse:
    return JSONResponse(status_code=exc.category.http_status, content=exc.to_dict())


async def _provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
    # Provider text can echo request data; callers only get the code.
    logger.error("Unhandled provider error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=CallerCategory.INTERNAL.http_status,
        content={
            "code": FailureCode.PROVIDER_ERROR.value,
            "category": CallerCategory.INTERNAL.value,
            "message": "The provider request failed",
            "details": {"providerErrorCode": exc.code},
        },
    )


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        SQLModel.metadata.create_all(get_engine())
        yield

    app = FastAPI(
        title="Workout Ingest API",
        description="Fitness provider ingestion: history imports and queue operations",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(IngestError, _ingest_error_handler)
    app.add_exception_handler(ProviderError, _provider_error_handler)

    app.include_router(backfill.router, prefix="/backfill", tags=["backfill"])
    app.include_router(queue.router, prefix="/queue", tags=["queue"])

    return app


# Module-level app instance for uvicorn
app = create_app()

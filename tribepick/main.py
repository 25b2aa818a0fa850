import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tribepick.api import health_router, sessions_router
from tribepick.config import settings
from tribepick.db.database import init_db
from tribepick.models.failure import KnownError, create_unknown_failure, finalize_response

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    await init_db()
    yield


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("tribepick"),
    lifespan=lifespan,
)

app.include_router(sessions_router)
app.include_router(health_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(KnownError)
async def known_error_handler(_request: Request, exc: KnownError) -> JSONResponse:
    """Known errors become refusal / known_failure envelopes."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log("request_failed", extra={"kind": exc.kind.value, "status_code": exc.status_code})
    body = finalize_response(exc.to_response())
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


@app.exception_handler(Exception)
async def unknown_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Anything else is an unknown failure with a fixed message."""
    logger.exception("request_failed_unexpectedly", exc_info=exc)
    body = create_unknown_failure(exc)
    return JSONResponse(status_code=500, content=body.model_dump(mode="json"))

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from procure_ledger.core.config import settings
from procure_ledger.core.errors import (
    ConflictError,
    ImbalancedLedgerError,
    NotFoundError,
    PermissionDeniedError,
    ProcurementError,
    ValidationError,
)
from procure_ledger.core.logging import setup_logging

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting procure-ledger (%s)", settings.APP_ENV)
    yield


app = FastAPI(
    title="Procure Ledger",
    version="0.1.0",
    docs_url="/api/docs" if settings.APP_ENV != "production" else None,
    redoc_url="/api/redoc" if settings.APP_ENV != "production" else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Error mapping ───

_STATUS_BY_ERROR: list[tuple[type[ProcurementError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ImbalancedLedgerError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
]


def status_for(exc: ProcurementError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(ProcurementError)
async def procurement_error_handler(request: Request, exc: ProcurementError):
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc)
    body = {"detail": exc.message, "code": exc.code}
    if exc.details is not None:
        body["details"] = exc.details
    existing_id = getattr(exc, "existing_id", None)
    if existing_id is not None:
        body["existing_id"] = str(existing_id)
    return JSONResponse(status_code=code, content=body)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


# ─── Routers ───
from procure_ledger.api.v1.router import api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "env": settings.APP_ENV}

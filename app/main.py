import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.logging import configure_logging
from app.db.mongo import close_mongo_connection, connect_to_mongo
from app.utils.ledger_validation import (
    ConflictError,
    LedgerError,
    LedgerInvariantError,
    LedgerValidationError,
    NotFoundError,
    OverpaymentError,
)

configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect_to_mongo()
    yield
    await close_mongo_connection()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Most specific first; the first isinstance match wins.
_ERROR_STATUS = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (OverpaymentError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (LedgerValidationError, status.HTTP_400_BAD_REQUEST),
    (LedgerInvariantError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_for_error(exc: LedgerError) -> int:
    for error_class, status_code in _ERROR_STATUS:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    status_code = status_for_error(exc)
    if status_code >= 500:
        logger.error("Ledger invariant violated on %s %s: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": exc.kind}
    )


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}

app.include_router(api_router, prefix=settings.API_V1_STR)

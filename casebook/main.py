"""
Main FastAPI application for the Casebook backend.
Handles CORS, request logging middleware, lifespan events, error mapping and router registration.
"""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from casebook.config import settings
from casebook.core.exceptions import (
    BlobNotFoundError,
    CasebookError,
    ConflictError,
    DocumentGenerationError,
    ImmutableError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from casebook.database import close_db, init_db
from casebook.dependencies.services import default_blob_store
from casebook.routers import case_studies, drafts, health, labels
from casebook.utils.helpers import utc_now

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


async def _check_blob_store() -> bool:
    """
    Verify the blob store answers a listing.
    Never raises: a failing store only degrades document and label features.
    """
    try:
        await default_blob_store().list("labels/")
        logger.info("✓ Blob store reachable (backend: %s)", settings.BLOB_BACKEND)
        return True
    except StorageError as exc:
        logger.error("✗ Blob store unreachable (%s); documents cannot be stored", exc)
        return False


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting Casebook backend...")
    logger.info("=" * 60)

    # 1. Database (required; raises on failure)
    await _check_database()

    # 2. Blob store (optional; logs errors but continues)
    await _check_blob_store()

    logger.info("=" * 60)
    logger.info("  Casebook backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down Casebook backend...")
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Casebook API",
    description=(
        "**Casebook**: author, review and publish case studies, exported as Word documents.\n\n"
        "Key endpoints:\n"
        "- `POST /api/case-studies/create` - submit a questionnaire for review\n"
        "- `PUT  /api/case-studies/{folder}/incorporate-feedback` - revise, bump version\n"
        "- `PUT  /api/case-studies/{folder}/status` - approve / reject / publish\n"
        "- `POST /api/drafts` - save a draft\n"
        "- `POST /api/drafts/{id}/approve` - approve a draft into a case study\n"
        "- `GET  /api/labels` - label taxonomy\n"
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy health-check polling from the frontend
    if request.url.path not in ("/api/health", "/api/health/", "/"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

def _error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


def _status_for(exc: CasebookError) -> int:
    if isinstance(exc, (NotFoundError, BlobNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (ValidationError, ImmutableError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, StorageError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, DocumentGenerationError) and exc.timed_out:
        return status.HTTP_408_REQUEST_TIMEOUT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(CasebookError)
async def casebook_exception_handler(request: Request, exc: CasebookError):
    """Map domain errors to their HTTP status with a ``{success, error}`` body."""
    status_code = _status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log("%s %s failed: %s", request.method, request.url.path, exc)

    extra = {}
    if isinstance(exc, ValidationError) and exc.details:
        extra["details"] = exc.details
    return _error_response(status_code, str(exc), **extra)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and bad enum values are plain 400s."""
    logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.errors())
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        "Invalid request",
        details=[
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ],
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        path=str(request.url.path),
        timestamp=utc_now().isoformat(),
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,       prefix="/api/health",       tags=["Health"])
app.include_router(case_studies.router, prefix="/api/case-studies", tags=["Case Studies"])
app.include_router(drafts.router,       prefix="/api/drafts",       tags=["Drafts"])
app.include_router(labels.router,       prefix="/api/labels",       tags=["Labels"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root: basic service info."""
    return {
        "name": "Casebook API",
        "version": "1.0.0",
        "description": "Case Study Authoring and Publishing Backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "case_studies": "/api/case-studies",
            "drafts": "/api/drafts",
            "labels": "/api/labels",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "casebook.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )

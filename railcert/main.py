"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from railcert.config import settings
from railcert.database import init_db
from railcert.errors import (
    CertificationCoreError,
    CorrectionConflictError,
    EntityNotFoundError,
    ForbiddenError,
    IntegrityViolation,
    OperationTimeoutError,
    StorageError,
    ValidationError,
)
from railcert.logging_config import configure_logging
from railcert.api.routes import router

configure_logging(settings.log_level, json_format=settings.log_json)
logger = logging.getLogger(__name__)

# Create database tables
init_db()

# Create FastAPI app
app = FastAPI(
    title="Railcert - Certification Compliance Core",
    description="Append-only evidence, derived certification status, enforcement gates and regulator reconstruction.",
    version="0.1.0"
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # For MVP - restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Most specific first: CorrectionConflictError is a ValidationError
_STATUS_BY_ERROR = [
    (CorrectionConflictError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (EntityNotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (IntegrityViolation, status.HTTP_409_CONFLICT),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (OperationTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
]


@app.exception_handler(CertificationCoreError)
async def core_error_handler(request: Request, exc: CertificationCoreError):
    status_code = next(
        (code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if isinstance(exc, ForbiddenError):
        detail = exc.to_detail()
    else:
        detail = {"message": exc.message, "error": type(exc).__name__}
    if status_code >= 500:
        logger.error("Request failed", extra={"path": request.url.path, "error": type(exc).__name__})
    return JSONResponse(status_code=status_code, content={"detail": detail})


# Include API routes
app.include_router(router, prefix="/api", tags=["Certifications"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "railcert", "environment": settings.app_env}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

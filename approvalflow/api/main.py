import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from approvalflow.api.routers import approvals, health
from approvalflow.api.schemas.common import ErrorResponse
from approvalflow.common.logger import setup_logger
from approvalflow.core.config import get_settings
from approvalflow.core.errors import (
    ApprovalConfigurationError,
    ApprovalError,
    ApprovalStateError,
    DuplicateSubmissionError,
    InsufficientPermissionError,
    InvalidInputError,
    RequestNotFoundError,
)

settings = get_settings()

setup_logger(
    "approvalflow",
    log_dir=settings.log_dir,
    level=settings.log_level,
    file_logging=settings.log_to_file,
)
logger = logging.getLogger(__name__)

# Most specific first; the first class in an error's MRO wins
ERROR_STATUS_CODES = {
    RequestNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidInputError: status.HTTP_400_BAD_REQUEST,
    ApprovalConfigurationError: 422,
    ApprovalStateError: status.HTTP_409_CONFLICT,
    InsufficientPermissionError: status.HTTP_403_FORBIDDEN,
    DuplicateSubmissionError: status.HTTP_409_CONFLICT,
}


def status_code_for(error: ApprovalError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return status.HTTP_400_BAD_REQUEST


app = FastAPI(
    title=settings.app_name,
    description="Multi-step approval workflow engine",
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApprovalError)
async def approval_error_handler(request: Request, exc: ApprovalError):
    status_code = status_code_for(exc)
    if isinstance(exc, ApprovalConfigurationError):
        logger.warning("Configuration error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=exc.code, detail=exc.message).model_dump(),
    )


# Include routers
app.include_router(health.router)
app.include_router(approvals.router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else None,
    }

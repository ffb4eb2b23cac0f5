import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sis_app.config import settings
from sis_app.exceptions import (
    GradebookError, GradeValidationError, InvalidTransitionError, SchemeLockedError, TransmutationLookupError
)
from sis_app.utils.system_utils import local_now

logger = logging.getLogger(__name__)

# most specific first
ERROR_STATUS = (
    (GradeValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (TransmutationLookupError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (SchemeLockedError, status.HTTP_409_CONFLICT),
    (GradebookError, status.HTTP_400_BAD_REQUEST),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
)


def add_cors_middleware(app: FastAPI):
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def error_body(code: str, message: str) -> dict:
    return {
        "error": {"code": code, "message": message},
        "generated_at": local_now().isoformat(),
    }


def status_for(exc: Exception) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def add_error_handlers(app: FastAPI):
    async def domain_error_handler(request: Request, exc: Exception):
        status_code = status_for(exc)
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}")
        return JSONResponse(
            status_code=status_code,
            content=error_body(getattr(exc, "code", type(exc).__name__), getattr(exc, "message", str(exc))),
        )

    app.add_exception_handler(GradebookError, domain_error_handler)
    app.add_exception_handler(InvalidTransitionError, domain_error_handler)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("INTERNAL_ERROR", "Internal server error"),
        )

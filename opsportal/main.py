# opsportal/main.py

"""
FastAPI application for the operations portal export service.
"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from opsportal.core.config import settings
from opsportal.exports.exceptions import (
    EncodingFault,
    ExportError,
    ExportTooLarge,
    ExportValidationError,
    JobNotFound,
    JobNotReady,
    RowSourceFault,
    UnknownColumn,
    UnsupportedEntityType,
)
from opsportal.exports.router import router as exports_router
from opsportal.utils.logger import configure_logging, get_logger

configure_logging(settings.log_level, settings.log_json)
logger = get_logger(__name__)

# Most specific first
ERROR_STATUS_CODES = (
    (UnknownColumn, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnsupportedEntityType, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ExportValidationError, status.HTTP_400_BAD_REQUEST),
    (ExportTooLarge, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (JobNotFound, status.HTTP_404_NOT_FOUND),
    (JobNotReady, status.HTTP_409_CONFLICT),
    (RowSourceFault, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (EncodingFault, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_code_for(exc: ExportError) -> int:
    for error_class, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def export_error_handler(request: Request, exc: ExportError) -> JSONResponse:
    code = status_code_for(exc)
    if code >= 500:
        logger.error(f"Export failed: {exc}", path=request.url.path, error=exc.code, exc_info=exc)
    else:
        logger.warning(f"Export rejected: {exc}", path=request.url.path, error=exc.code)
    return JSONResponse(status_code=code, content=exc.to_dict())


def create_app() -> FastAPI:
    app = FastAPI(title="Ops Portal Exports", version="0.1.0")
    # Gzip when the client sends Accept-Encoding: gzip
    app.add_middleware(GZipMiddleware, minimum_size=settings.export_gzip_minimum_size)
    app.add_exception_handler(ExportError, export_error_handler)
    app.include_router(exports_router)
    return app


app = create_app()

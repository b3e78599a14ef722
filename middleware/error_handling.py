"""
Exception handlers rendering license and service errors as JSON.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from middleware.license_validation import license_error_response
from utils.exceptions import HRSMError, LicenseError

logger = logging.getLogger(__name__)


async def license_exception_handler(request: Request, exc: LicenseError) -> JSONResponse:
    """Render a LicenseError as ``{success: false, error, message, ...context}``."""
    logger.info(f"🔐 [LICENSE] {request.method} {request.url.path} denied: {exc.error_code}")
    return license_error_response(exc)


async def service_exception_handler(request: Request, exc: HRSMError) -> JSONResponse:
    logger.error(f"❌ [{exc.correlation_id}] {exc.__class__.__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "INTERNAL_ERROR",
            "message": exc.user_message,
            "correlationId": exc.correlation_id,
        },
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(LicenseError, license_exception_handler)
    app.add_exception_handler(HRSMError, service_exception_handler)

"""
Error types for external integrations and the JSON error envelope
"""

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class IntegrationError(Exception):
    """Failure talking to a third-party service"""
    status_code = 502

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ZoomError(IntegrationError):
    pass


class AIServiceError(IntegrationError):
    status_code = 503


class PaymentGatewayError(IntegrationError):
    pass


# ==================== HANDLERS ====================

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation failed",
            "errors": jsonable_encoder(exc.errors())
        }
    )


async def integration_exception_handler(request: Request, exc: IntegrationError):
    logger.warning("Integration failure on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrationError, integration_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

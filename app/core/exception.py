from typing import Any, Dict

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------

class GatewayError(Exception):
    """Base class for errors that map onto a JSON error response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(GatewayError):
    """A required body, path or query field is missing or unusable."""
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(GatewayError):
    """Bad upstream credentials, or a missing/invalid/expired bearer token."""
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(GatewayError):
    status_code = status.HTTP_404_NOT_FOUND


class UpstreamError(GatewayError):
    """Any vendor API/SDK failure, network error or unexpected response shape."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(message: str, details: Any = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if details is not None:
        body["details"] = details
    return body


# ---------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------

async def gateway_exception_handler(request: Request, exc: GatewayError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} ({exc.details})")
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(error_body(exc.message, exc.details)),
    )

async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler for unhandled exceptions (Internal Server Errors).
    Logs the error and returns a generic 500 response.
    """
    logger.error(f"Global Exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error"),
    )

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Handler for standard HTTP exceptions (404, 405, etc.).
    """
    message = "Resource not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message),
        headers=getattr(exc, "headers", None),
    )

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handler for request parsing errors (malformed JSON, wrong field types).
    Reported as 400 with the list of offending fields.
    """
    errors = []
    for error in exc.errors():
        field = ".".join(str(x) for x in error["loc"]) if error["loc"] else "body"
        msg = error["msg"]
        errors.append(f"{field}: {msg}")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("Validation error", errors),
    )


"""Exception handlers producing `{"error": ...}` JSON bodies.

WHAT:
    Registers handlers on the FastAPI app for HTTP errors, request validation
    errors, service-layer `DevCrmError`s and unexpected exceptions.

WHY:
    Every API failure has the same shape. Validation problems answer 400 with
    field-level detail; unexpected errors answer a generic 500 and their
    details stay in the server log and Sentry.

REFERENCES:
    - devcrm/exceptions.py: service-layer exception hierarchy
    - devcrm/telemetry/sentry.py: capture_exception
"""

import logging
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .exceptions import DevCrmError
from .telemetry import capture_exception

logger = logging.getLogger(__name__)


def _format_validation_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Flatten pydantic error dicts to `{"field", "message"}` pairs."""
    details = []
    for err in errors:
        # Drop the "body"/"query"/"path" prefix from the location
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header", "cookie")]
        details.append({
            "field": ".".join(loc) or "request",
            "message": err.get("msg", "Invalid value"),
        })
    return details


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": _format_validation_errors(exc.errors())},
    )


async def domain_exception_handler(request: Request, exc: DevCrmError) -> JSONResponse:
    content: Dict[str, Any] = {"error": exc.message}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("[API] Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    capture_exception(exc, extra={"path": request.url.path, "method": request.method})
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all handlers to the application."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(DevCrmError, domain_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

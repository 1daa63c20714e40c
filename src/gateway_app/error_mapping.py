# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Centralized error mapping from gateway exceptions to HTTP responses.

Every failure the caller sees is a parseable body of the form
{"error": {"message", "type", "code"}}, except upstream protocol errors,
whose body and status are relayed verbatim.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException

from gateway_library.errors import GatewayError, UpstreamProtocolError

logger = logging.getLogger(__name__)

# Status code -> error type used for HTTPExceptions raised by the app itself
_HTTP_ERROR_TYPES = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found",
    409: "conflict",
}


def error_payload(message: str, error_type: str, code: int) -> Dict[str, Any]:
    return {"error": {"message": message, "type": error_type, "code": code}}


def map_gateway_error(e: Exception, context: Optional[str] = None) -> Response:
    """
    Map an exception from the gateway library to an HTTP response.

    Args:
        e: The exception raised while serving the request
        context: Optional context string for logging (e.g., endpoint name)
    """
    ctx = f" ({context})" if context else ""

    if isinstance(e, UpstreamProtocolError):
        logger.warning(f"Relaying upstream HTTP {e.status_code}{ctx}")
        return Response(
            content=e.body,
            status_code=e.status_code,
            media_type=e.content_type,
        )

    if isinstance(e, GatewayError):
        logger.warning(f"{type(e).__name__}{ctx}: {e.message}")
        return JSONResponse(
            status_code=e.status_code,
            content=error_payload(e.message, e.error_type, e.status_code),
        )

    if isinstance(e, ValueError):
        return JSONResponse(
            status_code=400,
            content=error_payload(f"Invalid Request: {e}", "invalid_request_error", 400),
        )

    # Log unexpected errors
    logger.error(f"Unhandled exception{ctx}: {e}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_payload(str(e) or type(e).__name__, "proxy_internal_error", 500),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTPExceptions in the same error envelope as gateway errors."""
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = error_payload(
            str(exc.detail),
            _HTTP_ERROR_TYPES.get(exc.status_code, "proxy_error"),
            exc.status_code,
        )
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def gateway_error_handler(request: Request, exc: GatewayError) -> Response:
    return map_gateway_error(exc, request.url.path)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid request')}" if location else "Invalid request"
    return JSONResponse(
        status_code=400,
        content=error_payload(message, "invalid_request_error", 400),
    )

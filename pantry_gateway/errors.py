"""Structured error responses.

Every failure leaving the gateway is a JSON object with a short
machine-readable ``error`` code plus optional context fields.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

_HTTP_STATUS_CODES: Dict[int, str] = {
    status.HTTP_401_UNAUTHORIZED: "unauthorized",
    status.HTTP_403_FORBIDDEN: "forbidden",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
}


class GatewayError(Exception):
    """Raised anywhere in request handling to short-circuit with a JSON error."""

    def __init__(self, status_code: int, code: str, **context: Any) -> None:
        super().__init__(code)
        self.status_code = status_code
        self.code = code
        self.context = context

    def as_dict(self) -> Dict[str, Any]:
        return {"error": self.code, **self.context}


def bad_request(code: str, **context: Any) -> GatewayError:
    return GatewayError(status.HTTP_400_BAD_REQUEST, code, **context)


def backend_unavailable(detail: str) -> GatewayError:
    return GatewayError(status.HTTP_502_BAD_GATEWAY, "backend_unavailable", detail=detail)


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("Gateway error path=%s code=%s context=%s", request.url.path, exc.code, exc.context)
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    code = "invalid_json" if any(err.get("type") == "json_invalid" for err in errors) else "invalid_request"
    fields = [
        ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        for err in errors
        if err.get("type") != "json_invalid"
    ]
    content: Dict[str, Any] = {"error": code}
    if fields:
        content["fields"] = [f for f in fields if f]
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, "http_error")
    return JSONResponse(status_code=exc.status_code, content={"error": code}, headers=exc.headers)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_error"},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, _gateway_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

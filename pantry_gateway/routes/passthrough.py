from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, Request, Response, status

from ..backend import BackendError, BackendTimeout, GrocyClient
from ..config import Settings
from ..auth import get_app_settings
from ..deps import get_backend
from ..errors import GatewayError


router = APIRouter(tags=["passthrough"])

logger = logging.getLogger(__name__)

# httpx has already decoded the body; framing headers must be recomputed.
_DROPPED_HEADERS = {
    "connection",
    "content-encoding",
    "content-length",
    "keep-alive",
    "transfer-encoding",
}

FORWARDED_METHODS = ("GET", "POST", "HEAD")
# Every method reaches this route so the bearer guard runs before the method check.
ROUTED_METHODS = [*FORWARDED_METHODS, "PUT", "PATCH", "DELETE", "OPTIONS"]


def looks_like_access_denial(response: httpx.Response) -> bool:
    """Upstream auth failures surface as a redirect or an HTML login page."""
    content_type = response.headers.get("content-type", "")
    if response.is_redirect or 300 <= response.status_code < 400:
        return True
    return "text/html" in content_type and "application/json" not in content_type


@router.api_route("/{path:path}", methods=ROUTED_METHODS, include_in_schema=False)
async def passthrough(
    path: str,
    request: Request,
    backend: GrocyClient = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    if request.method not in FORWARDED_METHODS:
        raise GatewayError(status.HTTP_405_METHOD_NOT_ALLOWED, "method_not_allowed")
    body = None if request.method in ("GET", "HEAD") else await request.body()
    try:
        upstream = await backend.forward(
            request.method,
            f"/api/{path}",
            query=request.url.query,
            body=body,
            timeout=settings.passthrough_timeout_seconds,
        )
    except BackendTimeout as exc:
        raise GatewayError(status.HTTP_504_GATEWAY_TIMEOUT, "upstream_timeout") from exc
    except BackendError as exc:
        raise GatewayError(status.HTTP_502_BAD_GATEWAY, "backend_unavailable", detail="Upstream request failed") from exc

    if looks_like_access_denial(upstream):
        logger.warning(
            "Upstream access authentication failed path=/api/%s status=%s", path, upstream.status_code
        )
        raise GatewayError(status.HTTP_502_BAD_GATEWAY, "upstream_auth_failed")

    headers = {k: v for k, v in upstream.headers.items() if k.lower() not in _DROPPED_HEADERS}
    return Response(content=upstream.content, status_code=upstream.status_code, headers=headers)

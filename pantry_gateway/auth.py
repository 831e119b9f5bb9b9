from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings
from .errors import GatewayError
from .startup import missing_upstream_settings


_bearer = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _token_matches(expected: Optional[str], presented: str) -> bool:
    if not expected:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


def require_gateway_access(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Static bearer gate, then a check that the upstream is configured at all."""
    if not creds or creds.scheme.lower() != "bearer":
        raise GatewayError(status.HTTP_401_UNAUTHORIZED, "unauthorized")
    if not _token_matches(settings.gateway_bearer_token, creds.credentials):
        raise GatewayError(status.HTTP_401_UNAUTHORIZED, "unauthorized")

    missing = missing_upstream_settings(settings)
    if missing:
        raise GatewayError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "server_misconfigured",
            missing=missing,
        )

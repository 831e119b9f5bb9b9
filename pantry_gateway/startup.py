from __future__ import annotations

import logging
from typing import Iterable, Tuple

from .config import Settings

logger = logging.getLogger(__name__)

UPSTREAM_REQUIRED: Tuple[Tuple[str, str], ...] = (
    ("upstream_base", "UPSTREAM_BASE"),
    ("grocy_api_key", "GROCY_API_KEY"),
    ("cf_access_client_id", "CF_ACCESS_CLIENT_ID"),
    ("cf_access_client_secret", "CF_ACCESS_CLIENT_SECRET"),
)


def _collect_missing(settings: Settings, pairs: Iterable[Tuple[str, str]]) -> list[str]:
    missing: list[str] = []
    for attr, label in pairs:
        value = getattr(settings, attr, None)
        if value in (None, "", [], {}):
            missing.append(label)
    return missing


def missing_upstream_settings(settings: Settings) -> list[str]:
    """Labels of the upstream settings a request needs but are not configured."""
    return _collect_missing(settings, UPSTREAM_REQUIRED)


def validate_settings(settings: Settings) -> None:
    """Fail fast when mandatory secrets/config values are missing for non-dev envs."""
    environment = (settings.environment or "dev").lower()

    required_pairs: list[Tuple[str, str]] = [
        ("gateway_bearer_token", "GATEWAY_BEARER_TOKEN"),
        *UPSTREAM_REQUIRED,
    ]
    missing = _collect_missing(settings, required_pairs)

    if environment == "dev":
        if missing:
            logger.warning(
                "Running in dev without required settings; requests will be rejected until set: %s",
                ", ".join(missing),
            )
        return

    if missing:
        raise RuntimeError(
            f"Missing required configuration for environment '{environment}': {', '.join(sorted(missing))}"
        )

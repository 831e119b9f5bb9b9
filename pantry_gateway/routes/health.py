from __future__ import annotations

import os
from fastapi import APIRouter, Depends

from ..auth import get_app_settings
from ..config import Settings
from ..startup import missing_upstream_settings


router = APIRouter()


@router.get("/health")
def health(settings: Settings = Depends(get_app_settings)):
    return {
        "status": "ok",
        "service": settings.app_name,
        "env": settings.environment,
        "upstream_configured": not missing_upstream_settings(settings),
        "cache_version": settings.cache_version,
        "pid": os.getpid(),
    }

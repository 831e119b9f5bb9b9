from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .auth import require_gateway_access
from .backend import GrocyClient
from .cache import CacheAside, CacheBackend, build_cache_backend
from .config import Settings, get_settings
from .errors import install_error_handlers
from .observability import RequestContextMiddleware, configure_logging, init_sentry
from .startup import validate_settings
from .routes import enriched, health, passthrough

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("X-Frame-Options", "DENY")
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.backend.aclose()
    close_cache = getattr(app.state.cache.backend, "close", None)
    if close_cache is not None:
        await close_cache()
    logger.info("Gateway shut down cleanly")


def create_app(
    settings: Optional[Settings] = None,
    *,
    backend: Optional[GrocyClient] = None,
    cache_backend: Optional[CacheBackend] = None,
) -> FastAPI:
    s = settings or get_settings()
    configure_logging(json_logs=s.log_json, level=s.log_level)
    init_sentry(s)
    validate_settings(s)
    app = FastAPI(title=s.app_name, lifespan=lifespan)

    # Shared per-process collaborators; handlers reach them through app.state.
    app.state.settings = s
    app.state.backend = backend or GrocyClient(s)
    app.state.cache = CacheAside(cache_backend or build_cache_backend(s), version=s.cache_version)

    # CORS
    origins: List[str] = s.cors_allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "HEAD"],
        allow_headers=["*"],
    )

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(RequestContextMiddleware)

    install_error_handlers(app)

    # Routers; enriched routes must be registered before the catch-all.
    guarded = [Depends(require_gateway_access)]
    app.include_router(health.router)
    app.include_router(enriched.router, prefix="/api", dependencies=guarded)
    app.include_router(passthrough.router, prefix="/api", dependencies=guarded)

    # Metrics
    Instrumentator().instrument(app).expose(app, include_in_schema=False)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("pantry_gateway.main:app", host="0.0.0.0", port=port, reload=False)

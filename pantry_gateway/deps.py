from __future__ import annotations

from fastapi import Request

from .backend import GrocyClient
from .services.catalog import Catalog


def get_backend(request: Request) -> GrocyClient:
    return request.app.state.backend


def get_catalog(request: Request) -> Catalog:
    state = request.app.state
    return Catalog(state.backend, state.cache, state.settings)

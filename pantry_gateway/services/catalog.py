from __future__ import annotations

import logging
from typing import Any, Dict, List

from ..backend import BackendError, GrocyClient
from ..cache import CacheAside
from ..config import Settings
from ..errors import backend_unavailable

logger = logging.getLogger(__name__)

PRODUCTS_KEY = "products"


class Catalog:
    """Cached read access to the backend's reference collections."""

    def __init__(self, client: GrocyClient, cache: CacheAside, settings: Settings) -> None:
        self.client = client
        self.cache = cache
        self.settings = settings

    async def _collection(self, discriminator: str, path: str, label: str) -> List[Dict[str, Any]]:
        try:
            data = await self.cache.get_or_fetch(
                discriminator,
                self.settings.cache_duration,
                lambda: self.client.get_raw(path),
            )
        except (BackendError, ValueError) as exc:
            logger.warning("Unable to load %s: %s", label, exc)
            raise backend_unavailable(f"Failed to fetch {label}") from exc
        if not isinstance(data, list):
            raise backend_unavailable(f"Failed to fetch {label}")
        return data

    async def products(self) -> List[Dict[str, Any]]:
        return await self._collection(PRODUCTS_KEY, "/api/objects/products", "products")

    async def shopping_lists(self) -> List[Dict[str, Any]]:
        return await self._collection("shopping_lists", "/api/objects/shopping_lists", "shopping lists")

    async def stores(self) -> List[Dict[str, Any]]:
        return await self._collection("stores", "/api/objects/shopping_locations", "stores")

    async def locations(self) -> List[Dict[str, Any]]:
        return await self._collection("locations", "/api/objects/locations", "locations")

    async def quantity_units(self) -> List[Dict[str, Any]]:
        return await self._collection("quantity-units", "/api/objects/quantity_units", "quantity units")

    async def product_groups(self) -> List[Dict[str, Any]]:
        return await self._collection("product-groups", "/api/objects/product_groups", "product groups")

    async def stock_product(self, product_id: Any) -> Dict[str, Any]:
        """Cached per-product stock detail; raises ``BackendError`` on failure."""
        return await self.cache.get_or_fetch(
            f"stock-product/{product_id}",
            self.settings.stock_detail_cache_seconds,
            lambda: self.client.get_raw(f"/api/stock/products/{product_id}"),
        )

    async def invalidate_products(self) -> None:
        await self.cache.invalidate(PRODUCTS_KEY)

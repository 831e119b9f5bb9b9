from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..backend import BackendError, ImageFetchError
from ..errors import backend_unavailable, bad_request
from ..matching import rank_products
from ..resolution import find_exact
from ..schemas import (
    EntityRef,
    ImageAttachment,
    ProductCreateRequest,
    ProductCreateResponse,
    ProductMatch,
    ProductSearchResponse,
    QuantityUnitNames,
)
from .catalog import Catalog

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 5
MAX_SEARCH_LIMIT = 10
UNIT_ROLES = ("stock", "purchase", "consume", "price")
IMAGE_UPLOAD_NAME = "product.jpg"


def clamp_search_limit(raw: Optional[str]) -> int:
    try:
        limit = int(raw) if raw else DEFAULT_SEARCH_LIMIT
    except ValueError:
        limit = DEFAULT_SEARCH_LIMIT
    if limit <= 0:
        limit = DEFAULT_SEARCH_LIMIT
    return min(limit, MAX_SEARCH_LIMIT)


async def search_products(catalog: Catalog, q: Optional[str], limit: Optional[str] = None) -> ProductSearchResponse:
    if not q or not q.strip():
        raise bad_request("missing_query")
    products = await catalog.products()
    matches = rank_products(products, q, limit=clamp_search_limit(limit))
    return ProductSearchResponse(
        query=q,
        matches=[ProductMatch(id=m.id, name=m.name, confidence=m.confidence) for m in matches],
    )


async def create_product(catalog: Catalog, request: ProductCreateRequest) -> ProductCreateResponse:
    """Create a product only once every mandatory reference has resolved.

    Gates run in order (duplicate name, location, quantity units, product
    group) and each one rejects before anything is written upstream. The
    image attach afterwards is best effort: the product already exists.
    """
    settings = catalog.settings

    products = await catalog.products()
    if find_exact(products, request.name):
        raise bad_request("product_exists", product=request.name)

    location_name = request.default_location or settings.default_location_name
    location = find_exact(await catalog.locations(), location_name)
    if location is None:
        raise bad_request("invalid_location", location=location_name)

    units = await catalog.quantity_units()
    requested_units = request.quantity_units.model_dump()
    resolved_units: Dict[str, Dict[str, Any]] = {}
    for role in UNIT_ROLES:
        unit_name = requested_units.get(role) or settings.default_units[role]
        unit = find_exact(units, unit_name)
        if unit is None:
            raise bad_request("invalid_quantity_unit", unit=role, name=unit_name)
        resolved_units[role] = unit

    product_group_id = None
    if request.product_group:
        group = find_exact(await catalog.product_groups(), request.product_group)
        if group is None:
            raise bad_request("invalid_product_group", product_group=request.product_group)
        product_group_id = group.get("id")

    try:
        created = await catalog.client.post_json(
            "/api/objects/products",
            {
                "name": request.name,
                "description": request.description,
                "location_id": location.get("id"),
                "qu_id_stock": resolved_units["stock"].get("id"),
                "qu_id_purchase": resolved_units["purchase"].get("id"),
                "qu_id_consume": resolved_units["consume"].get("id"),
                "qu_id_price": resolved_units["price"].get("id"),
                "product_group_id": product_group_id,
            },
        )
    except BackendError as exc:
        raise backend_unavailable("Failed to create product") from exc
    product_id = (created or {}).get("created_object_id", (created or {}).get("id"))
    logger.info("Product created id=%s name=%s", product_id, request.name)

    image = ImageAttachment()
    if request.image_url:
        image = await attach_image(catalog, product_id, request.image_url)

    await catalog.invalidate_products()

    return ProductCreateResponse(
        product=EntityRef(id=product_id, name=request.name),
        location=location.get("name"),
        quantity_units=QuantityUnitNames(**{role: unit.get("name") for role, unit in resolved_units.items()}),
        image=image,
    )


async def attach_image(catalog: Catalog, product_id: Any, image_url: str) -> ImageAttachment:
    try:
        fetched = await catalog.client.fetch_image(image_url, max_bytes=catalog.settings.image_max_bytes)
        await catalog.client.upload_file(
            f"/api/files/productpictures/{product_id}",
            filename=IMAGE_UPLOAD_NAME,
            content=fetched.content,
            content_type=fetched.content_type,
        )
    except (ImageFetchError, BackendError) as exc:
        logger.warning("Image upload failed product_id=%s error=%s", product_id, exc)
        return ImageAttachment(attached=False, error=str(exc))
    return ImageAttachment(attached=True)

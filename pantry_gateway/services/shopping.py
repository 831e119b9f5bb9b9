from __future__ import annotations

import logging

from ..backend import BackendError
from ..errors import backend_unavailable
from ..resolution import (
    Resolved,
    list_resolution_error,
    product_resolution_error,
    resolve_product,
    select_shopping_list,
)
from ..schemas import (
    EntityRef,
    ShoppingListAddedItem,
    ShoppingListAddRequest,
    ShoppingListAddResponse,
)
from .catalog import Catalog

logger = logging.getLogger(__name__)


async def add_to_shopping_list(catalog: Catalog, request: ShoppingListAddRequest) -> ShoppingListAddResponse:
    lists = await catalog.shopping_lists()
    selection = select_shopping_list(
        lists,
        list_id=request.shopping_list_id,
        list_name=request.shopping_list,
    )
    if not isinstance(selection, Resolved):
        by_name = request.shopping_list_id is None and bool(request.shopping_list)
        raise list_resolution_error(selection, by_name=by_name)
    selected = selection.entity

    products = await catalog.products()
    resolution = resolve_product(products, request.product)
    if not isinstance(resolution, Resolved):
        raise product_resolution_error(resolution)
    product = resolution.entity

    try:
        await catalog.client.post_json(
            "/api/stock/shoppinglist/add-product",
            {
                "product_id": product["id"],
                "product_amount": request.amount,
                "note": request.note,
                "list_id": selected.get("id"),
            },
        )
    except BackendError as exc:
        raise backend_unavailable("Failed to add item") from exc

    logger.info(
        "Shopping list item added list_id=%s product_id=%s amount=%s",
        selected.get("id"),
        product["id"],
        request.amount,
    )
    return ShoppingListAddResponse(
        list=EntityRef(id=selected.get("id"), name=selected.get("name")),
        item=ShoppingListAddedItem(
            product_id=product["id"],
            product_name=product["name"],
            amount=request.amount,
            note=request.note,
        ),
    )

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..backend import BackendError
from ..errors import backend_unavailable
from ..resolution import Resolved, NotFound, list_resolution_error, select_shopping_list
from ..schemas import (
    EnrichedShoppingList,
    EnrichedShoppingListItem,
    EnrichedStockRow,
    EntityRef,
    ItemPricing,
)
from .catalog import Catalog

logger = logging.getLogger(__name__)

UNKNOWN_PRODUCT = "Unknown"


@dataclass(frozen=True)
class PricingContext:
    """Last-purchase projection of a stock detail record. Informational only."""

    last_price: Any = None
    store_id: Any = None
    price_qu_id: Any = None
    price_qu_name: Optional[str] = None
    price_to_stock_factor: Any = None
    purchase_to_stock_factor: Any = None


EMPTY_PRICING = PricingContext()


def pricing_context(details: Dict[str, Any]) -> PricingContext:
    product = details.get("product") or {}
    price_unit = details.get("quantity_unit_price") or {}
    price_qu_id = product.get("qu_id_price")
    if price_qu_id is None:
        price_qu_id = details.get("qu_id_price")
    return PricingContext(
        last_price=details.get("last_price"),
        store_id=details.get("last_shopping_location_id"),
        price_qu_id=price_qu_id,
        price_qu_name=price_unit.get("name"),
        price_to_stock_factor=details.get("qu_conversion_factor_price_to_stock"),
        purchase_to_stock_factor=details.get("qu_conversion_factor_purchase_to_stock"),
    )


def distinct_product_ids(rows: Sequence[Dict[str, Any]]) -> List[int]:
    """Numeric product ids in first-seen order."""
    seen: Dict[int, None] = {}
    for row in rows:
        product_id = row.get("product_id")
        if isinstance(product_id, int) and not isinstance(product_id, bool):
            seen.setdefault(product_id, None)
    return list(seen)


async def _load_pricing(catalog: Catalog, product_ids: Sequence[int]) -> Dict[int, PricingContext]:
    if not product_ids:
        return {}
    tasks = [asyncio.create_task(catalog.stock_product(pid)) for pid in product_ids]
    responses = await asyncio.gather(*tasks, return_exceptions=True)
    pricing: Dict[int, PricingContext] = {}
    for product_id, outcome in zip(product_ids, responses):
        if isinstance(outcome, (BackendError, ValueError)):
            logger.warning("Pricing unavailable product_id=%s error=%s", product_id, outcome)
            continue
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, dict):
            pricing[product_id] = pricing_context(outcome)
    return pricing


def _name_map(entities: Sequence[Dict[str, Any]]) -> Dict[Any, Any]:
    return {entity.get("id"): entity.get("name") for entity in entities}


async def build_shopping_list_view(catalog: Catalog, list_id: Optional[str] = None) -> EnrichedShoppingList:
    lists = await catalog.shopping_lists()
    selection = select_shopping_list(lists, list_id=list_id)
    if isinstance(selection, NotFound) and selection.query is None:
        return EnrichedShoppingList(list=None, items=[])
    if not isinstance(selection, Resolved):
        raise list_resolution_error(selection)
    selected = selection.entity

    try:
        items = await catalog.client.get_json(
            "/api/objects/shopping_list", params={"list_id": selected.get("id")}
        )
    except BackendError as exc:
        raise backend_unavailable("Failed to fetch shopping list items") from exc
    if not isinstance(items, list):
        raise backend_unavailable("Failed to fetch shopping list items")
    items = items[: catalog.settings.list_item_cap]

    product_names = _name_map(await catalog.products())
    store_names = _name_map(await catalog.stores())
    pricing = await _load_pricing(catalog, distinct_product_ids(items))

    enriched: List[EnrichedShoppingListItem] = []
    for item in items:
        product_id = item.get("product_id")
        last = pricing.get(product_id, EMPTY_PRICING)
        enriched.append(
            EnrichedShoppingListItem(
                product_id=product_id,
                product_name=product_names.get(product_id) or UNKNOWN_PRODUCT,
                amount=item.get("amount"),
                note=item.get("note"),
                last_store=store_names.get(last.store_id) if last.store_id else None,
                pricing=ItemPricing(
                    last_price_per_price_unit=last.last_price,
                    price_unit=last.price_qu_name,
                    price_qu_id=last.price_qu_id,
                    amount=item.get("amount"),
                    shopping_list_qu_id=item.get("qu_id"),
                    purchase_to_stock_factor=last.purchase_to_stock_factor,
                    price_to_stock_factor=last.price_to_stock_factor,
                ),
            )
        )
    return EnrichedShoppingList(
        list=EntityRef(id=selected.get("id"), name=selected.get("name")),
        items=enriched,
    )


async def build_stock_view(catalog: Catalog) -> List[EnrichedStockRow]:
    try:
        stock = await catalog.client.get_json("/api/objects/stock")
    except BackendError as exc:
        raise backend_unavailable("Failed to fetch stock") from exc
    if not isinstance(stock, list):
        raise backend_unavailable("Failed to fetch stock")
    stock = stock[: catalog.settings.stock_row_cap]

    if not distinct_product_ids(stock):
        return []
    product_names = _name_map(await catalog.products())
    return [
        EnrichedStockRow(
            stock_id=row.get("id"),
            product_id=row.get("product_id"),
            product_name=product_names.get(row.get("product_id")) or UNKNOWN_PRODUCT,
            amount=row.get("amount"),
            best_before_date=row.get("best_before_date"),
        )
        for row in stock
    ]

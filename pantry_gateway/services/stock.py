from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Set

from pydantic import ValidationError

from ..backend import BackendError, GrocyClient
from ..errors import GatewayError, backend_unavailable
from ..resolution import Resolved, product_resolution_error, resolve_product
from ..schemas import (
    BulkLineResult,
    BulkStockAddResponse,
    BulkSummary,
    EntityRef,
    InterpretedAs,
    StockAddRequest,
    StockAddResponse,
)
from .catalog import Catalog

logger = logging.getLogger(__name__)

DEFAULT_STOCK_UNIT_LABEL = "stock unit"

# Detached tasks are only referenced here so they are not garbage collected mid-flight.
_background_tasks: Set[asyncio.Task] = set()


def schedule_price_recording(
    client: GrocyClient,
    *,
    product_id: Any,
    price: float,
    store_id: Any = None,
) -> Optional[asyncio.Task]:
    """Fire-and-forget price write; the caller never waits for or sees its outcome."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("Cannot record price; no running loop (product_id=%s)", product_id)
        return None

    task = loop.create_task(
        _record_price_with_guard(client, product_id=product_id, price=price, store_id=store_id)
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def _record_price_with_guard(client: GrocyClient, *, product_id: Any, price: float, store_id: Any) -> None:
    try:
        await client.post_json(
            "/api/objects/product_prices",
            {"product_id": product_id, "price": price, "store_id": store_id},
        )
    except BackendError as exc:
        logger.info("Price recording failed product_id=%s error=%s", product_id, exc)
    else:
        logger.debug("Price recorded product_id=%s price=%s", product_id, price)


async def _fetch_details(client: GrocyClient, product_id: Any) -> Dict[str, Any]:
    details = await client.get_json(f"/api/stock/products/{product_id}")
    if not isinstance(details, dict):
        raise BackendError(f"stock detail for product {product_id} is not an object")
    return details


def _stock_unit_id(details: Dict[str, Any]) -> Any:
    product = details.get("product") or {}
    qu_id = product.get("qu_id_stock")
    return qu_id if qu_id is not None else details.get("qu_id_stock")


def _stock_unit_label(details: Dict[str, Any]) -> str:
    unit = details.get("quantity_unit_stock") or {}
    return unit.get("name") or DEFAULT_STOCK_UNIT_LABEL


async def _add_resolved(
    client: GrocyClient,
    product: Dict[str, Any],
    line: StockAddRequest,
    details: Dict[str, Any],
) -> StockAddResponse:
    product_id = product["id"]
    await client.post_json(
        f"/api/objects/products/{product_id}/add",
        {
            "amount": line.amount,
            "best_before_date": line.best_before_date,
            "qu_id": _stock_unit_id(details),
        },
    )
    if line.price is not None:
        schedule_price_recording(
            client,
            product_id=product_id,
            price=line.price,
            store_id=details.get("last_shopping_location_id"),
        )
    return StockAddResponse(
        product=EntityRef(id=product_id, name=product.get("name")),
        interpreted_as=InterpretedAs(
            amount=line.amount,
            unit=_stock_unit_label(details),
            price=line.price,
        ),
    )


async def add_stock(catalog: Catalog, request: StockAddRequest) -> StockAddResponse:
    products = await catalog.products()
    resolution = resolve_product(products, request.product)
    if not isinstance(resolution, Resolved):
        raise product_resolution_error(resolution)

    product_id = resolution.entity["id"]
    try:
        details = await _fetch_details(catalog.client, product_id)
    except BackendError as exc:
        raise backend_unavailable("Failed to fetch product details") from exc
    try:
        return await _add_resolved(catalog.client, resolution.entity, request, details)
    except BackendError as exc:
        raise backend_unavailable("Failed to add stock") from exc


async def _process_line(catalog: Catalog, products: Sequence[Dict[str, Any]], raw: Any) -> BulkLineResult:
    line_ref = raw.get("line") if isinstance(raw, dict) else None
    try:
        line = StockAddRequest.model_validate(raw)
    except ValidationError:
        return BulkLineResult(line=line_ref, status="error", error="invalid_line")

    resolution = resolve_product(products, line.product)
    if not isinstance(resolution, Resolved):
        failure: GatewayError = product_resolution_error(resolution)
        return BulkLineResult(line=line_ref, status="error", error=failure.code, **failure.context)

    try:
        details = await _fetch_details(catalog.client, resolution.entity["id"])
    except BackendError:
        return BulkLineResult(line=line_ref, status="error", error="product_details_unavailable")

    try:
        added = await _add_resolved(catalog.client, resolution.entity, line, details)
    except BackendError:
        return BulkLineResult(line=line_ref, status="error", error="add_failed")

    return BulkLineResult(
        line=line_ref,
        status="added",
        product=added.product,
        interpreted_as=added.interpreted_as,
    )


async def add_stock_bulk(catalog: Catalog, items: Sequence[Any]) -> BulkStockAddResponse:
    """Add stock line by line; each line succeeds or fails on its own.

    Lines past ``BULK_MAX_ITEMS`` are dropped before any processing and
    only show up as a smaller ``summary.total``.
    """
    retained = list(items[: catalog.settings.bulk_max_items])
    if len(items) > len(retained):
        logger.info("Bulk stock add truncated received=%s kept=%s", len(items), len(retained))

    products = await catalog.products()

    results: List[BulkLineResult] = []
    for raw in retained:
        try:
            result = await _process_line(catalog, products, raw)
        except Exception:
            line_ref = raw.get("line") if isinstance(raw, dict) else None
            logger.exception("Bulk stock line failed line=%s", line_ref)
            result = BulkLineResult(line=line_ref, status="error", error="add_failed")
        results.append(result)

    added = sum(1 for r in results if r.status == "added")
    return BulkStockAddResponse(
        status="completed",
        summary=BulkSummary(total=len(retained), added=added, errors=len(results) - added),
        results=results,
    )

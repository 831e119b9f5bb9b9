from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..deps import get_catalog
from ..schemas import (
    BulkStockAddRequest,
    BulkStockAddResponse,
    EnrichedShoppingList,
    EnrichedStockRow,
    ProductCreateRequest,
    ProductCreateResponse,
    ProductSearchResponse,
    ShoppingListAddRequest,
    ShoppingListAddResponse,
    StockAddRequest,
    StockAddResponse,
)
from ..services.catalog import Catalog
from ..services.enrichment import build_shopping_list_view, build_stock_view
from ..services.products import create_product, search_products
from ..services.shopping import add_to_shopping_list
from ..services.stock import add_stock, add_stock_bulk


router = APIRouter(prefix="/enriched", tags=["enriched"])

logger = logging.getLogger(__name__)


@router.post("/shopping_list/add", response_model=ShoppingListAddResponse)
async def shopping_list_add(
    payload: ShoppingListAddRequest,
    catalog: Catalog = Depends(get_catalog),
) -> ShoppingListAddResponse:
    return await add_to_shopping_list(catalog, payload)


@router.get("/shopping_list", response_model=EnrichedShoppingList)
async def shopping_list(
    list_id: Optional[str] = Query(default=None),
    catalog: Catalog = Depends(get_catalog),
) -> EnrichedShoppingList:
    return await build_shopping_list_view(catalog, list_id)


@router.get("/stock", response_model=List[EnrichedStockRow])
async def stock(catalog: Catalog = Depends(get_catalog)) -> List[EnrichedStockRow]:
    return await build_stock_view(catalog)


@router.get("/products/search", response_model=ProductSearchResponse)
async def products_search(
    q: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    catalog: Catalog = Depends(get_catalog),
) -> ProductSearchResponse:
    return await search_products(catalog, q, limit)


@router.post("/products/create", response_model=ProductCreateResponse)
async def products_create(
    payload: ProductCreateRequest,
    catalog: Catalog = Depends(get_catalog),
) -> ProductCreateResponse:
    return await create_product(catalog, payload)


@router.post("/stock/add", response_model=StockAddResponse)
async def stock_add(
    payload: StockAddRequest,
    catalog: Catalog = Depends(get_catalog),
) -> StockAddResponse:
    return await add_stock(catalog, payload)


@router.post(
    "/stock/add/bulk",
    response_model=BulkStockAddResponse,
    response_model_exclude_unset=True,
)
async def stock_add_bulk(
    payload: BulkStockAddRequest,
    catalog: Catalog = Depends(get_catalog),
) -> BulkStockAddResponse:
    logger.info("Bulk stock add received items=%s", len(payload.items))
    return await add_stock_bulk(catalog, payload.items)

from __future__ import annotations

from typing import Annotated, Any, List, Optional, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt

# Finite JSON numbers only; "2", true and NaN are rejected rather than coerced.
Amount = Union[StrictInt, Annotated[StrictFloat, Field(allow_inf_nan=False)]]


class EntityRef(BaseModel):
    id: Any = None
    name: Optional[str] = None


class ShoppingListAddRequest(BaseModel):
    product: str = Field(min_length=1)
    amount: Amount
    note: Optional[str] = None
    shopping_list_id: Optional[Union[int, str]] = None
    shopping_list: Optional[str] = None


class ShoppingListAddedItem(BaseModel):
    product_id: Any
    product_name: str
    amount: Amount
    note: Optional[str] = None


class ShoppingListAddResponse(BaseModel):
    status: Literal["added"] = "added"
    list: EntityRef
    item: ShoppingListAddedItem


class ItemPricing(BaseModel):
    last_price_per_price_unit: Any = None
    price_unit: Optional[str] = None
    price_qu_id: Any = None
    amount: Any = None
    shopping_list_qu_id: Any = None
    purchase_to_stock_factor: Any = None
    price_to_stock_factor: Any = None


class EnrichedShoppingListItem(BaseModel):
    product_id: Any = None
    product_name: str
    amount: Any = None
    note: Optional[str] = None
    last_store: Optional[str] = None
    pricing: ItemPricing


class EnrichedShoppingList(BaseModel):
    list: Optional[EntityRef] = None
    items: List[EnrichedShoppingListItem] = Field(default_factory=lambda: [])


class EnrichedStockRow(BaseModel):
    stock_id: Any = None
    product_id: Any = None
    product_name: str
    amount: Any = None
    best_before_date: Optional[str] = None


class ProductMatch(BaseModel):
    id: Any
    name: str
    confidence: float = Field(ge=0, le=1)


class ProductSearchResponse(BaseModel):
    query: str
    matches: List[ProductMatch]


class QuantityUnitNames(BaseModel):
    stock: Optional[str] = None
    purchase: Optional[str] = None
    consume: Optional[str] = None
    price: Optional[str] = None


class ProductCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    default_location: Optional[str] = None
    quantity_units: QuantityUnitNames = Field(default_factory=QuantityUnitNames)
    product_group: Optional[str] = None
    image_url: Optional[str] = None


class ImageAttachment(BaseModel):
    attached: bool = False
    error: Optional[str] = None


class ProductCreateResponse(BaseModel):
    status: Literal["created"] = "created"
    product: EntityRef
    location: Optional[str] = None
    quantity_units: QuantityUnitNames
    image: ImageAttachment


class StockAddRequest(BaseModel):
    product: str = Field(min_length=1)
    amount: Amount
    price: Optional[Amount] = None
    best_before_date: Optional[str] = None


class InterpretedAs(BaseModel):
    amount: Amount
    unit: str
    price: Optional[Amount] = None


class StockAddResponse(BaseModel):
    status: Literal["added"] = "added"
    product: EntityRef
    interpreted_as: InterpretedAs


class BulkStockAddRequest(BaseModel):
    # Lines are validated one by one so that a malformed line fails alone.
    items: List[Any] = Field(min_length=1)


class BulkLineResult(BaseModel):
    line: Any = None
    status: Literal["added", "error"]
    product: Optional[Union[EntityRef, str]] = None
    interpreted_as: Optional[InterpretedAs] = None
    error: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class BulkSummary(BaseModel):
    total: int
    added: int
    errors: int


class BulkStockAddResponse(BaseModel):
    status: Literal["completed"] = "completed"
    summary: BulkSummary
    results: List[BulkLineResult]

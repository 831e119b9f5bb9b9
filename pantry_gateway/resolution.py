"""Entity resolution outcomes.

Product names are resolved fuzzily; every other entity kind (shopping
lists by name, locations, quantity units, product groups) must match
exactly after normalization. Callers receive a tagged ``Resolved``,
``NotFound`` or ``Ambiguous`` value and never a best guess.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .errors import GatewayError, bad_request
from .matching import EXACT_SCORE, Candidate, normalize, rank_products

PRODUCT_CANDIDATE_LIMIT = 5


@dataclass(frozen=True)
class Resolved:
    entity: Dict[str, Any]


@dataclass(frozen=True)
class NotFound:
    query: Any = None


@dataclass(frozen=True)
class Ambiguous:
    candidates: List[Dict[str, Any]] = field(default_factory=list)


ResolutionResult = Union[Resolved, NotFound, Ambiguous]


def resolve_product(products: Sequence[Dict[str, Any]], name: str) -> ResolutionResult:
    matches: List[Candidate] = rank_products(products, name, limit=PRODUCT_CANDIDATE_LIMIT)
    if not matches:
        return NotFound(query=name)
    top = matches[0]
    if top.score == EXACT_SCORE or len(matches) == 1:
        return Resolved(entity={"id": top.id, "name": top.name, "score": top.score})
    return Ambiguous(candidates=[m.ref() for m in matches])


def find_exact(entities: Iterable[Dict[str, Any]], name: Any) -> Optional[Dict[str, Any]]:
    wanted = normalize(name)
    if not wanted:
        return None
    for entity in entities:
        if normalize(entity.get("name")) == wanted:
            return entity
    return None


def select_shopping_list(
    lists: Sequence[Dict[str, Any]],
    list_id: Any = None,
    list_name: Optional[str] = None,
) -> ResolutionResult:
    if list_id is not None and str(list_id) != "":
        for entry in lists:
            if str(entry.get("id")) == str(list_id):
                return Resolved(entity=entry)
        return NotFound(query=list_id)
    if list_name:
        match = find_exact(lists, list_name)
        return Resolved(entity=match) if match else NotFound(query=list_name)
    if len(lists) == 1:
        return Resolved(entity=lists[0])
    if len(lists) > 1:
        return Ambiguous(candidates=[{"id": entry.get("id"), "name": entry.get("name")} for entry in lists])
    return NotFound()


def product_resolution_error(result: ResolutionResult) -> GatewayError:
    """Map a failed product resolution onto its client-facing error."""
    if isinstance(result, Ambiguous):
        return bad_request("multiple_products", products=result.candidates)
    if isinstance(result, NotFound):
        return bad_request("product_not_found", product=result.query)
    raise ValueError("resolved products carry no error")


def list_resolution_error(result: ResolutionResult, by_name: bool = False) -> GatewayError:
    if isinstance(result, Ambiguous):
        return bad_request("multiple_lists", lists=result.candidates)
    if isinstance(result, NotFound):
        if result.query is None:
            return bad_request("no_shopping_list_found")
        if by_name:
            return bad_request("invalid_shopping_list", shopping_list=result.query)
        return bad_request("invalid_shopping_list_id", shopping_list_id=result.query)
    raise ValueError("resolved lists carry no error")

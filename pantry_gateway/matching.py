from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

EXACT_SCORE = 100
PREFIX_SCORE = 60
CONTAINS_SCORE = 30

_DISALLOWED = re.compile(r"[^a-z0-9\s]")


def normalize(value: Any) -> str:
    """Canonical token form: lowercase ASCII letters, digits and inner whitespace."""
    if value is None:
        return ""
    # Strip last so that removed punctuation never leaves edge whitespace behind.
    return _DISALLOWED.sub("", str(value).lower()).strip()


def score_product(name: str, query: str) -> int:
    """Ordinal match score of an already-normalized name against a normalized query."""
    if name == query:
        return EXACT_SCORE
    if name.startswith(query):
        return PREFIX_SCORE
    if query in name:
        return CONTAINS_SCORE
    return 0


@dataclass(frozen=True)
class Candidate:
    id: Any
    name: str
    score: int

    @property
    def confidence(self) -> float:
        return min(1.0, self.score / EXACT_SCORE)

    def ref(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}


def rank_products(products: Iterable[Dict[str, Any]], query: str, limit: Optional[int] = None) -> List[Candidate]:
    """Score every named product against ``query`` and return the best first.

    Zero scores are dropped. ``sorted`` is stable, so equal scores keep the
    backend's iteration order.
    """
    needle = normalize(query)
    if not needle:
        return []
    scored: List[Candidate] = []
    for product in products:
        name = product.get("name")
        if not name:
            continue
        score = score_product(normalize(name), needle)
        if score > 0:
            scored.append(Candidate(id=product.get("id"), name=name, score=score))
    ranked = sorted(scored, key=lambda c: c.score, reverse=True)
    if limit is not None:
        return ranked[:limit]
    return ranked

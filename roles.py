from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

from config import get_settings
from models import Category, Entry

logger = logging.getLogger(__name__)


def _find_role(
    categories: list[Category], marker: str, max_distance: int
) -> Optional[Category]:
    marker_lower = marker.strip().lower()
    for category in categories:
        if marker_lower in (category.name or "").lower():
            return category

    # Names typed without accents ("Cartao de Credito") still resolve.
    best: Optional[Category] = None
    best_distance: Optional[int] = None
    for category in categories:
        name_lower = (category.name or "").strip().lower()
        dist = int(Levenshtein.distance(marker_lower, name_lower))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = category
    if best is not None and best_distance is not None and best_distance <= max_distance:
        return best
    return None


@dataclass(frozen=True)
class CategoryRoles:
    """Well-known categories, resolved once per snapshot."""

    card_bill_category_id: Optional[str] = None
    transfer_category_id: Optional[str] = None

    @classmethod
    def resolve(cls, categories: Iterable[Category]) -> "CategoryRoles":
        settings = get_settings()
        items = list(categories)
        card_bill = _find_role(
            items, settings.card_bill_marker, settings.role_match_max_distance
        )
        transfer = _find_role(
            items, settings.transfer_marker, settings.role_match_max_distance
        )
        if card_bill is None:
            logger.warning("category_roles: card-bill payment category not found")
        return cls(
            card_bill_category_id=card_bill.id if card_bill else None,
            transfer_category_id=transfer.id if transfer else None,
        )

    def is_card_bill(self, category_id: Optional[str]) -> bool:
        return bool(category_id) and category_id == self.card_bill_category_id

    def is_transfer(self, category_id: Optional[str]) -> bool:
        return bool(category_id) and category_id == self.transfer_category_id

    def is_card_bill_payment(self, entry: Entry) -> bool:
        return self.is_card_bill(entry.category_id)

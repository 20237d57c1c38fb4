r"""backend\inventory_engine\services\cost_optimizer.py

Pick the cheapest supplier offer for a SKU under discount tiers and a budget.

Each reorder candidate (one per supplier) is priced with the best discount
its quantity unlocks.  When rounding the order up to the next tier's
minimum quantity is cheaper than the base order, the larger quantity is
taken.  If no offer fits the budget the cheapest one is still returned and
annotated ``budget-limited``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..models.schemas import (
    BUDGET_LIMITED_NOTE,
    DiscountTier,
    ReorderCandidate,
    ReorderRecommendation,
)

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
def applicable_discount(tiers: Iterable[DiscountTier], quantity: int) -> float:
    """Largest discount among tiers whose minimum quantity is reached."""

    eligible = [tier.discount_percentage for tier in tiers if tier.min_quantity <= quantity]
    return max(eligible, default=0.0)


def estimate_cost(quantity: int, unit_cost: float, discount_percentage: float = 0.0) -> float:
    """quantity x unit cost x (1 - discount), rounded to cents."""

    return round(quantity * unit_cost * (1.0 - discount_percentage / 100.0), 2)


def next_tier(tiers: Iterable[DiscountTier], quantity: int) -> Optional[DiscountTier]:
    """The tier with the smallest minimum quantity above ``quantity``."""

    above = [tier for tier in tiers if tier.min_quantity > quantity]
    if not above:
        return None
    return min(above, key=lambda tier: (tier.min_quantity, -tier.discount_percentage))


def tiers_are_monotonic(tiers: Sequence[DiscountTier]) -> bool:
    """True when discounts never decrease as the minimum quantity grows."""

    ordered = sorted(tiers, key=lambda tier: tier.min_quantity)
    return all(
        later.discount_percentage >= earlier.discount_percentage
        for earlier, later in zip(ordered, ordered[1:])
    )


@dataclass(slots=True)
class Offer:
    """A priced purchase option derived from one candidate."""

    candidate: ReorderCandidate
    quantity: int
    discount: float
    cost: float
    notes: List[str] = field(default_factory=list)

    @property
    def sort_key(self) -> Tuple[float, float, str]:
        return (self.cost, self.candidate.lead_time_days, self.candidate.supplier_id or "")


class CostOptimizer:
    """Resolve supplier and quantity for a SKU against discounts and budget."""

    # ------------------------------------------------------------------
    @staticmethod
    def _index_tiers(discount_tiers: Iterable[DiscountTier]) -> Dict[Tuple[str, str], List[DiscountTier]]:
        index: Dict[Tuple[str, str], List[DiscountTier]] = {}
        for tier in discount_tiers:
            index.setdefault((tier.supplier_id, tier.sku), []).append(tier)
        for key, tiers in index.items():
            tiers.sort(key=lambda tier: tier.min_quantity)
            if not tiers_are_monotonic(tiers):
                LOGGER.warning(
                    "Discount tiers for supplier %s / SKU %s are not monotonic; "
                    "the best reachable discount is used",
                    key[0],
                    key[1],
                )
        return index

    # ------------------------------------------------------------------
    def price_candidate(
        self,
        candidate: ReorderCandidate,
        tiers: Sequence[DiscountTier],
    ) -> Offer:
        """Price ``candidate`` and apply the bulk-buy rule."""

        quantity = candidate.quantity
        discount = applicable_discount(tiers, quantity)
        cost = estimate_cost(quantity, candidate.unit_cost, discount)
        notes: List[str] = []
        if discount > 0 and quantity > 0:
            notes.append(f"Includes {discount:g}% supplier discount")

        upgrade = next_tier(tiers, quantity) if quantity > 0 else None
        if upgrade is not None:
            upgrade_discount = applicable_discount(tiers, upgrade.min_quantity)
            upgrade_cost = estimate_cost(upgrade.min_quantity, candidate.unit_cost, upgrade_discount)
            # Taken even over budget: it never costs more than the base order.
            if upgrade_cost < cost:
                notes = [
                    f"Bulk discount of {upgrade_discount:g}% applied at {upgrade.min_quantity} units "
                    f"(saves {cost - upgrade_cost:.2f} versus {quantity} units)"
                ]
                quantity, discount, cost = upgrade.min_quantity, upgrade_discount, upgrade_cost

        return Offer(candidate=candidate, quantity=quantity, discount=discount, cost=cost, notes=notes)

    # ------------------------------------------------------------------
    def select_best_offer(
        self,
        candidates: Sequence[ReorderCandidate],
        discount_tiers: Iterable[DiscountTier] = (),
        budget_constraint: Optional[float] = None,
    ) -> Optional[ReorderRecommendation]:
        """Return the lowest-cost recommendation, or ``None`` without candidates."""

        if not candidates:
            return None

        tier_index = self._index_tiers(discount_tiers)
        offers = [
            self.price_candidate(
                candidate,
                tier_index.get((candidate.supplier_id, candidate.sku), [])
                if candidate.supplier_id
                else [],
            )
            for candidate in candidates
        ]

        within_budget = [
            offer for offer in offers if budget_constraint is None or offer.cost <= budget_constraint
        ]
        budget_limited = not within_budget
        best = min(within_budget or offers, key=lambda offer: offer.sort_key)

        notes = list(best.candidate.notes) + list(best.notes)
        if len(offers) > 1 and best.candidate.supplier_id:
            notes.append(f"Selected supplier {best.candidate.supplier_id} out of {len(offers)} offers")
        if budget_limited:
            unit_price = best.candidate.unit_cost * (1.0 - best.discount / 100.0)
            affordable = (
                int(math.floor(budget_constraint / unit_price)) if unit_price > 0 else best.quantity
            )
            notes.append(
                f"{BUDGET_LIMITED_NOTE}: cost {best.cost:.2f} exceeds budget {budget_constraint:.2f}; "
                f"budget covers {affordable} units"
            )
            LOGGER.warning(
                "All %d offers for SKU %s exceed budget %.2f; cheapest costs %.2f",
                len(offers),
                best.candidate.sku,
                budget_constraint,
                best.cost,
            )

        candidate = best.candidate
        return ReorderRecommendation(
            sku=candidate.sku,
            product_name=candidate.product_name,
            current_quantity=candidate.current_quantity,
            current_reorder_point=candidate.current_reorder_point,
            optimized_reorder_point=candidate.optimized_reorder_point,
            optimal_reorder_quantity=best.quantity,
            selected_supplier_id=candidate.supplier_id,
            estimated_cost=best.cost,
            notes="; ".join(notes) if notes else None,
        )

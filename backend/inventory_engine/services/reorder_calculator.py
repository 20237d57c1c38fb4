"""Compute reorder points and order quantities from demand forecasts."""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Sequence, Tuple

from ..core.config import EngineConfig
from ..core.errors import DATA_GAP, InputError
from ..models.schemas import (
    ForecastResult,
    InventorySnapshot,
    Issue,
    LeadTime,
    ReorderCandidate,
)

LOGGER = logging.getLogger(__name__)

_CEIL_PRECISION = 6


# ---------------------------------------------------------------------------
def _ceil(value: float) -> int:
    """Ceiling that ignores float noise such as ``22.000000000000004``."""

    return int(math.ceil(round(value, _CEIL_PRECISION)))


def average_daily_demand(forecasts: Sequence[ForecastResult]) -> Tuple[float, str]:
    """Return daily demand and confidence, preferring the 30-day forecast."""

    if not forecasts:
        raise InputError("at least one forecast is required to compute a reorder")
    by_horizon = {fc.horizon_days: fc for fc in forecasts}
    reference = by_horizon.get(30) or min(forecasts, key=lambda fc: fc.horizon_days)
    daily = max(float(reference.predicted_demand), 0.0) / float(reference.horizon_days)
    return daily, reference.confidence


def calculate_reorder_point(daily_demand: float, lead_time_days: float, safety_factor: float) -> int:
    """Reorder point = ceil(daily demand x lead time x safety factor)."""

    lead_time = max(float(lead_time_days), 0.0)
    return max(_ceil(max(daily_demand, 0.0) * lead_time * safety_factor), 0)


def calculate_order_quantity(
    reorder_point: int,
    daily_demand: float,
    lead_time_days: float,
    current_quantity: float,
) -> int:
    """Order enough to restore the reorder point after lead-time demand."""

    lead_time_demand = max(daily_demand, 0.0) * max(float(lead_time_days), 0.0)
    return max(_ceil(reorder_point + lead_time_demand - current_quantity), 0)


class ReorderCalculator:
    """Per-supplier reorder candidates for one SKU."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self.default_lead_time_days = float(self.config.default_lead_time_days)
        if self.default_lead_time_days <= 0:
            raise ValueError("default_lead_time_days must be positive")

    # ------------------------------------------------------------------
    def _is_sufficiently_stocked(self, current_quantity: float, reorder_point: int) -> bool:
        return current_quantity >= reorder_point * (1.0 + self.config.stock_safety_margin)

    # ------------------------------------------------------------------
    def compute_reorder(
        self,
        inventory: InventorySnapshot,
        forecasts: Sequence[ForecastResult],
        lead_times: Iterable[LeadTime],
        issues: List[Issue] | None = None,
    ) -> List[ReorderCandidate]:
        """Return one candidate per supplier, or an empty list if no reorder is due.

        ``issues`` collects data-gap notices (missing lead time) when given.
        """

        sku = inventory.sku
        daily_demand, confidence = average_daily_demand(forecasts)
        safety_factor = self.config.safety_factor(confidence)
        current_quantity = float(inventory.quantity)

        offers = [lt for lt in lead_times if lt.sku == sku]
        assumed_default = not offers
        if assumed_default:
            LOGGER.warning(
                "No lead time for SKU %s; assuming default of %.0f days",
                sku,
                self.default_lead_time_days,
            )
            if issues is not None:
                issues.append(
                    Issue(
                        kind=DATA_GAP,
                        message=(
                            "Missing supplier lead time; default of "
                            f"{self.default_lead_time_days:g} days assumed"
                        ),
                        sku=sku,
                    )
                )

        plans: List[Tuple[str | None, float]] = (
            [(None, self.default_lead_time_days)]
            if assumed_default
            else [(lt.supplier_id, float(lt.lead_time_days)) for lt in offers]
        )

        candidates: List[ReorderCandidate] = []
        for supplier_id, lead_time in plans:
            reorder_point = calculate_reorder_point(daily_demand, lead_time, safety_factor)
            quantity = calculate_order_quantity(reorder_point, daily_demand, lead_time, current_quantity)
            if quantity == 0 and self._is_sufficiently_stocked(current_quantity, reorder_point):
                continue

            notes: List[str] = []
            if assumed_default:
                notes.append(f"Lead time unknown; assumed default of {lead_time:g} days")
            if quantity == 0:
                notes.append("Stock is close to the reorder point; monitor before ordering")
            if confidence == "Low":
                notes.append("Low forecast confidence; extra safety stock included")

            candidates.append(
                ReorderCandidate(
                    sku=sku,
                    product_name=inventory.name or sku,
                    current_quantity=current_quantity,
                    current_reorder_point=float(inventory.reorder_point),
                    optimized_reorder_point=reorder_point,
                    quantity=quantity,
                    unit_cost=float(inventory.unit_cost),
                    supplier_id=supplier_id,
                    lead_time_days=lead_time,
                    confidence=confidence,
                    notes=notes,
                )
            )

        LOGGER.info(
            "Reorder candidates for %s: daily=%.3f confidence=%s safety=%.2f candidates=%d",
            sku,
            daily_demand,
            confidence,
            safety_factor,
            len(candidates),
        )
        return candidates

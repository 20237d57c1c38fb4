from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.inventory_engine.core.config import EngineConfig
from backend.inventory_engine.core.errors import InputError
from backend.inventory_engine.models.schemas import ForecastResult, InventorySnapshot, LeadTime
from backend.inventory_engine.services.reorder_calculator import (
    ReorderCalculator,
    average_daily_demand,
    calculate_order_quantity,
    calculate_reorder_point,
)


def _forecasts(demand_30: float, confidence: str = "High", sku: str = "SKU001") -> list[ForecastResult]:
    return [
        ForecastResult(
            sku=sku,
            horizon_days=horizon,
            predicted_demand=demand_30 * horizon / 30,
            confidence=confidence,
        )
        for horizon in (30, 60, 90)
    ]


def _item(quantity: float, reorder_point: float = 20, unit_cost: float = 10.0) -> InventorySnapshot:
    return InventorySnapshot(
        sku="SKU001",
        name="Widget",
        quantity=quantity,
        unit_cost=unit_cost,
        reorder_point=reorder_point,
    )


def test_low_stock_scenario_produces_positive_order() -> None:
    calculator = ReorderCalculator()

    candidates = calculator.compute_reorder(
        _item(5),
        _forecasts(60),
        [LeadTime(sku="SKU001", supplier_id="SUP-A", lead_time_days=14)],
    )

    assert len(candidates) == 1
    candidate = candidates[0]
    # 2/day x 14 days x 1.1 = 30.8 -> 31; 31 + 28 - 5 = 54
    assert candidate.optimized_reorder_point == 31
    assert candidate.quantity == 54
    assert candidate.supplier_id == "SUP-A"
    assert candidate.confidence == "High"


def test_well_stocked_item_needs_no_reorder() -> None:
    candidates = ReorderCalculator().compute_reorder(
        _item(500),
        _forecasts(5),
        [LeadTime(sku="SKU001", supplier_id="SUP-A", lead_time_days=14)],
    )

    assert candidates == []


def test_one_candidate_per_supplier() -> None:
    lead_times = [
        LeadTime(sku="SKU001", supplier_id="SUP-A", lead_time_days=7),
        LeadTime(sku="SKU001", supplier_id="SUP-B", lead_time_days=21),
        LeadTime(sku="SKU999", supplier_id="SUP-C", lead_time_days=3),
    ]

    candidates = ReorderCalculator().compute_reorder(_item(0), _forecasts(30), lead_times)

    assert [c.supplier_id for c in candidates] == ["SUP-A", "SUP-B"]
    assert candidates[0].optimized_reorder_point < candidates[1].optimized_reorder_point


def test_missing_lead_time_uses_default_and_reports_gap() -> None:
    issues = []

    candidates = ReorderCalculator().compute_reorder(_item(0), _forecasts(30), [], issues)

    assert len(candidates) == 1
    assert candidates[0].supplier_id is None
    assert candidates[0].lead_time_days == 14
    assert any("default" in note for note in candidates[0].notes)
    assert [issue.kind for issue in issues] == ["data_gap"]


def test_low_confidence_uses_larger_safety_factor() -> None:
    lead_times = [LeadTime(sku="SKU001", supplier_id="SUP-A", lead_time_days=10)]
    calculator = ReorderCalculator()

    high = calculator.compute_reorder(_item(0), _forecasts(30, "High"), lead_times)[0]
    low = calculator.compute_reorder(_item(0), _forecasts(30, "Low"), lead_times)[0]

    assert high.optimized_reorder_point == 11
    assert low.optimized_reorder_point == 16
    assert any("Low forecast confidence" in note for note in low.notes)


@pytest.mark.parametrize("confidence", ["High", "Medium", "Low"])
def test_reorder_point_monotonic_in_lead_time(confidence: str) -> None:
    config = EngineConfig()
    factor = config.safety_factor(confidence)
    daily = 37 / 30

    points = [calculate_reorder_point(daily, lead_time, factor) for lead_time in range(1, 120)]

    assert points == sorted(points)
    assert all(point >= 0 for point in points)


def test_zero_demand_and_zero_stock_needs_no_order() -> None:
    candidates = ReorderCalculator().compute_reorder(
        _item(0, reorder_point=0),
        _forecasts(0, "Low"),
        [LeadTime(sku="SKU001", supplier_id="SUP-A", lead_time_days=14)],
    )

    assert candidates == []


def test_order_quantity_ignores_float_noise() -> None:
    # 2.0 x 10 x 1.1 evaluates to 22.000000000000004
    assert calculate_reorder_point(2.0, 10, 1.1) == 22
    assert calculate_order_quantity(22, 2.0, 10, 42) == 0


def test_average_daily_demand_prefers_30_day_horizon() -> None:
    daily, confidence = average_daily_demand(list(reversed(_forecasts(60, "Medium"))))

    assert daily == pytest.approx(2.0)
    assert confidence == "Medium"


def test_average_daily_demand_requires_forecasts() -> None:
    with pytest.raises(InputError):
        average_daily_demand([])

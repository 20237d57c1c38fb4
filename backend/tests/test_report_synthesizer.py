from __future__ import annotations

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.inventory_engine.models.schemas import (
    InventorySnapshot,
    LeadTime,
    ReorderRecommendation,
    SalesRecord,
)
from backend.inventory_engine.services.report_synthesizer import (
    ReportSynthesizer,
    abc_categorize,
    validate_findings,
)

AS_OF = date(2024, 6, 30)


def _item(sku: str, quantity: float, unit_cost: float, reorder_point: float = 10) -> InventorySnapshot:
    return InventorySnapshot(
        sku=sku,
        name=f"Item {sku}",
        quantity=quantity,
        unit_cost=unit_cost,
        reorder_point=reorder_point,
    )


def _daily_sales(sku: str, days: int, qty: float = 1.0) -> list[SalesRecord]:
    return [
        SalesRecord(sku=sku, date=AS_OF - timedelta(days=offset), quantity_sold=qty)
        for offset in range(days)
    ]


def _recommendation(sku: str, quantity: int, cost: float, notes: str | None = None) -> ReorderRecommendation:
    return ReorderRecommendation(
        sku=sku,
        product_name=f"Item {sku}",
        current_quantity=0,
        current_reorder_point=10,
        optimized_reorder_point=12,
        optimal_reorder_quantity=quantity,
        selected_supplier_id="SUP-A",
        estimated_cost=cost,
        notes=notes,
    )


def test_empty_inventory_gives_degenerate_report() -> None:
    report = ReportSynthesizer().synthesize([], [])

    assert report.health_score == 0
    assert report.opportunities == []
    assert report.risk_alerts == []
    assert report.suggested_actions == []
    assert report.abc_categorization == {"A": [], "B": [], "C": []}


def test_healthy_portfolio_scores_100() -> None:
    inventory = [_item("A1", 50, 2.0), _item("B1", 40, 1.0)]
    sales = _daily_sales("A1", 90, 2.0) + _daily_sales("B1", 90, 2.0)

    report = ReportSynthesizer().synthesize(inventory, [], sales_history=sales)

    assert report.health_score == 100
    assert report.risk_alerts == []
    assert report.report_date == AS_OF
    assert report.total_inventory_value == pytest.approx(140.0)


def test_health_score_penalties() -> None:
    inventory = [
        _item("OUT", 0, 5.0),
        _item("LOW", 5, 5.0),
        _item("DEAD", 20, 5.0),
        _item("OK", 20, 5.0),
    ]
    sales = _daily_sales("OUT", 30) + _daily_sales("LOW", 30) + _daily_sales("OK", 30)
    recommendations = [
        _recommendation("OUT", 30, 150.0, notes="budget-limited: cost 150.00 exceeds budget 50.00"),
        _recommendation("LOW", 10, 50.0),
    ]

    report = ReportSynthesizer().synthesize(inventory, recommendations, sales_history=sales)

    # below 2/4 * 40, dead 1/4 * 30, budget 1/4 * 20, stockout 1/4 * 10
    assert report.health_score == pytest.approx(100 - 20 - 7.5 - 5 - 2.5)
    severities = {(alert.sku, alert.severity) for alert in report.risk_alerts}
    assert ("OUT", "Critical") in severities
    assert ("LOW", "Warning") in severities
    assert any(alert.sku == "OUT" and "budget" in alert.message for alert in report.risk_alerts)
    assert [(o.sku, o.kind) for o in report.opportunities] == [("DEAD", "dead_stock")]
    assert report.suggested_actions[0].startswith("Order 30 units of OUT")


def test_score_is_clamped_with_heavy_weights() -> None:
    from backend.inventory_engine.core.config import EngineConfig

    config = EngineConfig(weight_below_reorder_point=90, weight_stockout=90)
    report = ReportSynthesizer(config).synthesize([_item("OUT", 0, 1.0)], [])

    assert report.health_score == 0


def test_abc_categorisation_by_value() -> None:
    inventory = [
        _item("A", 100, 8.6),  # 86% of value
        _item("B", 100, 1.0),  # cumulative 96%
        _item("C", 100, 0.25),
        _item("D", 100, 0.15),
    ]

    classes = abc_categorize(inventory)

    assert classes == {"A": ["A"], "B": ["B"], "C": ["C", "D"]}


def test_overstock_with_low_turnover() -> None:
    inventory = [_item("SLOW", 1000, 1.0, reorder_point=10)]
    sales = _daily_sales("SLOW", 10)

    report = ReportSynthesizer().synthesize(inventory, [], sales_history=sales)

    assert len(report.opportunities) == 1
    opportunity = report.opportunities[0]
    assert opportunity.kind == "overstock"
    assert opportunity.value == pytest.approx(970.0)
    assert any("Pause reorders for SLOW" in action for action in report.suggested_actions)


def test_fast_movers_are_not_overstock() -> None:
    inventory = [_item("FAST", 100, 1.0, reorder_point=10)]
    sales = _daily_sales("FAST", 90, 5.0)

    report = ReportSynthesizer().synthesize(inventory, [], sales_history=sales)

    assert report.opportunities == []


def test_without_sales_history_dead_stock_is_not_scored() -> None:
    inventory = [_item("X", 100, 1.0, reorder_point=10)]

    report = ReportSynthesizer().synthesize(inventory, [])

    assert report.health_score == 100
    assert [o.kind for o in report.opportunities] == ["overstock"]
    assert "turnover unknown" in report.opportunities[0].message


def test_narrative_replaces_findings_when_valid() -> None:
    synthesizer = ReportSynthesizer(narrator=lambda context: ["Stock is healthy.", "  ", "Reorder A1."])

    report = synthesizer.synthesize([_item("A1", 50, 2.0)], [], narrative=True)

    assert report.key_findings == ["Stock is healthy.", "Reorder A1."]


def test_invalid_narrative_is_discarded() -> None:
    synthesizer = ReportSynthesizer(narrator=lambda context: {"summary": "not a list"})

    report = synthesizer.synthesize([_item("A1", 50, 2.0)], [], narrative=True)

    assert report.key_findings[0].startswith("Health score")


def test_narrator_not_called_unless_requested() -> None:
    calls = []
    synthesizer = ReportSynthesizer(narrator=lambda context: calls.append(context) or ["x"])

    synthesizer.synthesize([_item("A1", 50, 2.0)], [])

    assert calls == []


def test_validate_findings() -> None:
    assert validate_findings(["a", "b"]) == ["a", "b"]
    assert validate_findings([]) is None
    assert validate_findings("text") is None
    assert validate_findings([1, 2]) is None


def test_top_item_is_always_class_a() -> None:
    inventory = [_item("BIG", 1, 960.0), _item("SMALL", 10, 4.0)]

    classes = abc_categorize(inventory)

    assert classes["A"] == ["BIG"]
    assert classes["B"] == []
    assert classes["C"] == ["SMALL"]


def _lead(sku: str, supplier: str, days: float = 14) -> LeadTime:
    return LeadTime(sku=sku, supplier_id=supplier, lead_time_days=days)


def test_reorder_needs_split_urgent_and_upcoming() -> None:
    inventory = [
        _item("OUT", 0, 1.0),
        _item("AT", 10, 1.0),
        _item("NEAR", 11, 1.0),
        _item("SAFE", 12, 1.0),
        _item("NO-ROP", 1, 1.0, reorder_point=0),
    ]

    report = ReportSynthesizer().synthesize(inventory, [])

    assert report.urgent_reorders == ["OUT", "AT"]
    assert report.upcoming_reorders == ["NEAR"]
    assert "1 SKU(s) approaching their reorder point." in report.key_findings
    assert any("Plan the next orders for NEAR" in action for action in report.suggested_actions)
    # No risk alert for SKUs only approaching their reorder point.
    assert {alert.sku for alert in report.risk_alerts} == {"OUT", "AT"}


def test_dead_stock_reports_days_since_last_sale() -> None:
    inventory = [_item("STALE", 20, 2.0), _item("NEVER", 20, 2.0), _item("LIVE", 20, 2.0)]
    sales = [
        SalesRecord(sku="STALE", date=AS_OF - timedelta(days=120), quantity_sold=3),
        SalesRecord(sku="STALE", date=AS_OF - timedelta(days=100), quantity_sold=0),
    ] + _daily_sales("LIVE", 30)

    report = ReportSynthesizer().synthesize(inventory, [], sales_history=sales)

    dead = {o.sku: o for o in report.opportunities if o.kind == "dead_stock"}
    assert set(dead) == {"STALE", "NEVER"}
    assert dead["STALE"].days_since_last_sale == 120
    assert "last sale 120 days ago" in dead["STALE"].message
    assert dead["NEVER"].days_since_last_sale is None
    assert "no recorded sales" in dead["NEVER"].message


def test_supplier_insights_flag_concentration_and_sole_sources() -> None:
    inventory = [
        _item("BIG", 100, 9.0),
        _item("LOW", 5, 10.0),
        _item("SHARED", 50, 1.0),
    ]
    lead_times = [
        _lead("BIG", "SUP-A"),
        _lead("LOW", "SUP-B", days=45),
        _lead("SHARED", "SUP-A"),
        _lead("SHARED", "SUP-C"),
    ]

    report = ReportSynthesizer().synthesize(inventory, [], lead_times=lead_times)

    insights = {insight.supplier_id: insight for insight in report.supplier_insights}
    assert [insight.supplier_id for insight in report.supplier_insights] == ["SUP-A", "SUP-B", "SUP-C"]

    sup_a = insights["SUP-A"]
    assert sup_a.skus == ["BIG", "SHARED"]
    assert sup_a.value_share == pytest.approx(0.95)
    assert sup_a.sole_source_skus == ["BIG"]
    assert sup_a.rating == "Needs Attention"
    assert any(line.startswith("High concentration") for line in sup_a.observations)

    sup_b = insights["SUP-B"]
    assert sup_b.sole_source_skus == ["LOW"]
    assert sup_b.rating == "Needs Attention"
    assert "Lead times reach 45 days" in sup_b.observations
    assert any("at or below reorder point" in line for line in sup_b.observations)

    sup_c = insights["SUP-C"]
    assert sup_c.sole_source_skus == []
    assert sup_c.rating == "Good"

    assert "Qualify an alternative supplier to SUP-A" in report.suggested_actions
    assert "Supplier exposure needs attention: SUP-A, SUP-B." in report.key_findings


def test_without_lead_times_there_are_no_supplier_insights() -> None:
    report = ReportSynthesizer().synthesize([_item("A1", 50, 2.0)], [])

    assert report.supplier_insights == []


def test_skus_with_unknown_sales_are_not_dead_stock() -> None:
    inventory = [_item("SOLD", 20, 1.0), _item("FAILED", 100, 1.0)]
    sales = _daily_sales("SOLD", 30)

    report = ReportSynthesizer().synthesize(
        inventory, [], sales_history=sales, sales_unknown=["FAILED"]
    )

    assert report.health_score == 100
    assert [(o.sku, o.kind) for o in report.opportunities] == [("FAILED", "overstock")]
    assert "turnover unknown" in report.opportunities[0].message

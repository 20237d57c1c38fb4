r"""backend\inventory_engine\services\report_synthesizer.py

Portfolio-level analysis built from inventory snapshots and recommendations.

The report combines:

* a health score starting at 100 and penalised by the share of SKUs at or
  below their reorder point, dead stock, budget-limited recommendations and
  stockouts (weights from ``thresholds.yaml``), clamped to [0, 100];
* ABC categorisation by inventory value: a SKU is class A while the
  cumulative value share *before* it is below ``abc_a_threshold`` (80%),
  class B while below ``abc_b_threshold`` (95%), class C otherwise;
* reorder needs split into urgent (at or below the reorder point) and
  upcoming (within ``upcoming_reorder_ratio`` of it);
* supplier insights built from the lead-time mapping;
* rule-based opportunities, risk alerts and suggested actions.

An empty portfolio is a valid degenerate state and yields a zero score with
empty sections.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from pydantic import TypeAdapter, ValidationError

from ..core.config import EngineConfig
from ..models.schemas import (
    AnalysisReport,
    InventorySnapshot,
    LeadTime,
    Opportunity,
    ReorderRecommendation,
    RiskAlert,
    SalesRecord,
    SupplierInsight,
)

LOGGER = logging.getLogger(__name__)

MAX_KEY_FINDINGS = 8
_FINDINGS_ADAPTER = TypeAdapter(List[str])

Narrator = Callable[[Dict[str, Any]], Any]


# ---------------------------------------------------------------------------
def inventory_value(item: InventorySnapshot) -> float:
    return float(item.quantity) * float(item.unit_cost)


def abc_categorize(
    inventory: Sequence[InventorySnapshot],
    a_threshold: float = 0.80,
    b_threshold: float = 0.95,
) -> Dict[str, List[str]]:
    """Partition SKUs into A/B/C by descending inventory value."""

    classes: Dict[str, List[str]] = {"A": [], "B": [], "C": []}
    total = sum(inventory_value(item) for item in inventory)
    ranked = sorted(inventory, key=lambda item: (-inventory_value(item), item.sku))
    if total <= 0:
        classes["C"] = [item.sku for item in ranked]
        return classes

    cumulative = 0.0
    for item in ranked:
        share_before = cumulative / total
        if share_before < a_threshold:
            classes["A"].append(item.sku)
        elif share_before < b_threshold:
            classes["B"].append(item.sku)
        else:
            classes["C"].append(item.sku)
        cumulative += inventory_value(item)
    return classes


def units_sold_in_window(
    sales_history: Iterable[SalesRecord],
    as_of: date,
    lookback_days: int,
) -> Dict[str, float]:
    """Units sold per SKU within ``lookback_days`` ending at ``as_of``."""

    start = as_of - timedelta(days=max(lookback_days, 1) - 1)
    sold: Dict[str, float] = {}
    for record in sales_history:
        if start <= record.date <= as_of:
            sold[record.sku] = sold.get(record.sku, 0.0) + float(record.quantity_sold)
    return sold


def last_sale_dates(sales_history: Iterable[SalesRecord], as_of: date) -> Dict[str, date]:
    """Most recent date with a positive sale per SKU, ignoring dates after ``as_of``."""

    last: Dict[str, date] = {}
    for record in sales_history:
        if record.quantity_sold <= 0 or record.date > as_of:
            continue
        if record.sku not in last or record.date > last[record.sku]:
            last[record.sku] = record.date
    return last


def validate_findings(raw: Any) -> Optional[List[str]]:
    """Accept generated findings only if they form a non-empty list of strings."""

    try:
        findings = _FINDINGS_ADAPTER.validate_python(raw)
    except ValidationError:
        return None
    findings = [line.strip() for line in findings if line and line.strip()]
    return findings[:MAX_KEY_FINDINGS] or None


class ReportSynthesizer:
    """Aggregate per-SKU results into an :class:`AnalysisReport`."""

    def __init__(self, config: EngineConfig | None = None, narrator: Narrator | None = None) -> None:
        self.config = config or EngineConfig()
        self.narrator = narrator

    # ------------------------------------------------------------------
    def _is_below_reorder_point(self, item: InventorySnapshot) -> bool:
        return float(item.quantity) <= float(item.reorder_point)

    def _is_approaching_reorder_point(self, item: InventorySnapshot) -> bool:
        reorder_point = float(item.reorder_point)
        if reorder_point <= 0:
            return False
        return reorder_point < float(item.quantity) <= reorder_point * self.config.upcoming_reorder_ratio

    # ------------------------------------------------------------------
    def synthesize(
        self,
        inventory: Sequence[InventorySnapshot],
        recommendations: Sequence[ReorderRecommendation],
        sales_history: Optional[Sequence[SalesRecord]] = None,
        as_of: Optional[date] = None,
        narrative: bool = False,
        lead_times: Optional[Sequence[LeadTime]] = None,
        sales_unknown: Iterable[str] = (),
    ) -> AnalysisReport:
        """Build the report.

        ``sales_unknown`` lists SKUs whose sales could not be obtained; they
        are never classed as dead stock and their turnover is reported as
        unknown.
        """

        cfg = self.config
        if as_of is None and sales_history:
            as_of = max(record.date for record in sales_history)

        if not inventory:
            LOGGER.info("Empty inventory supplied; returning degenerate report")
            return AnalysisReport(health_score=0.0, report_date=as_of)

        count = len(inventory)
        total_value = sum(inventory_value(item) for item in inventory)
        inventory_skus = {item.sku for item in inventory}
        unknown = set(sales_unknown)

        sold: Optional[Dict[str, float]] = None
        last_sale: Dict[str, date] = {}
        if sales_history and as_of is not None:
            sold = units_sold_in_window(sales_history, as_of, cfg.dead_stock_lookback_days)
            last_sale = last_sale_dates(sales_history, as_of)

        below = [item for item in inventory if self._is_below_reorder_point(item)]
        upcoming = [item for item in inventory if self._is_approaching_reorder_point(item)]
        stockouts = [item for item in inventory if float(item.quantity) == 0]
        dead = (
            [
                item
                for item in inventory
                if float(item.quantity) > 0
                and item.sku not in unknown
                and sold.get(item.sku, 0.0) <= 0
            ]
            if sold is not None
            else []
        )
        dead_skus = {item.sku for item in dead}
        budget_limited_skus = sorted(
            {rec.sku for rec in recommendations if rec.budget_limited and rec.sku in inventory_skus}
        )

        score = 100.0
        score -= cfg.weight_below_reorder_point * len(below) / count
        score -= cfg.weight_dead_stock * len(dead) / count
        score -= cfg.weight_budget_limited * len(budget_limited_skus) / count
        score -= cfg.weight_stockout * len(stockouts) / count
        score = round(min(max(score, 0.0), 100.0), 1)

        abc = abc_categorize(inventory, cfg.abc_a_threshold, cfg.abc_b_threshold)

        # Risk alerts
        risk_alerts: List[RiskAlert] = []
        for item in inventory:
            if float(item.quantity) == 0:
                risk_alerts.append(
                    RiskAlert(sku=item.sku, severity="Critical", message=f"{item.sku} is out of stock")
                )
            elif self._is_below_reorder_point(item):
                risk_alerts.append(
                    RiskAlert(
                        sku=item.sku,
                        severity="Warning",
                        message=(
                            f"{item.sku} is at or below its reorder point "
                            f"({item.quantity:g} <= {item.reorder_point:g})"
                        ),
                    )
                )
        for sku in budget_limited_skus:
            risk_alerts.append(
                RiskAlert(
                    sku=sku,
                    severity="Warning",
                    message=f"Recommended order for {sku} exceeds the available budget",
                )
            )

        # Opportunities
        opportunities: List[Opportunity] = []
        annualise = 365.0 / max(cfg.dead_stock_lookback_days, 1)
        for item in inventory:
            if item.sku in dead_skus:
                days_idle = (as_of - last_sale[item.sku]).days if item.sku in last_sale else None
                last_note = f"last sale {days_idle} days ago" if days_idle is not None else "no recorded sales"
                opportunities.append(
                    Opportunity(
                        sku=item.sku,
                        kind="dead_stock",
                        value=round(inventory_value(item), 2),
                        message=(
                            f"No sales of {item.sku} in the last {cfg.dead_stock_lookback_days} days "
                            f"({last_note}); {inventory_value(item):.2f} tied up in stock"
                        ),
                        days_since_last_sale=days_idle,
                    )
                )
                continue
            ceiling = cfg.overstock_multiple * float(item.reorder_point)
            if item.reorder_point <= 0 or float(item.quantity) <= ceiling:
                continue
            if sold is None or item.sku in unknown:
                turnover_note = "turnover unknown"
            else:
                turnover = sold.get(item.sku, 0.0) * annualise / float(item.quantity)
                if turnover >= cfg.low_turnover_ratio:
                    continue
                turnover_note = f"annual turnover {turnover:.1f}x"
            excess = float(item.quantity) - ceiling
            opportunities.append(
                Opportunity(
                    sku=item.sku,
                    kind="overstock",
                    value=round(excess * float(item.unit_cost), 2),
                    message=(
                        f"{item.sku} holds {item.quantity:g} units, more than "
                        f"{cfg.overstock_multiple:g}x its reorder point ({turnover_note})"
                    ),
                )
            )

        supplier_insights = self._supplier_insights(
            inventory, lead_times or [], {item.sku for item in below}, total_value
        )

        # Suggested actions
        actions: List[str] = []
        ordered = sorted(
            (rec for rec in recommendations if rec.optimal_reorder_quantity > 0),
            key=lambda rec: (-rec.estimated_cost, rec.sku),
        )
        for rec in ordered:
            supplier = f" from {rec.selected_supplier_id}" if rec.selected_supplier_id else ""
            actions.append(
                f"Order {rec.optimal_reorder_quantity} units of {rec.sku} ({rec.product_name}){supplier} "
                f"for an estimated {rec.estimated_cost:.2f}"
            )
        if upcoming:
            actions.append(
                "Plan the next orders for "
                + ", ".join(item.sku for item in upcoming)
                + "; stock is close to the reorder point"
            )
        for opportunity in opportunities:
            if opportunity.kind == "dead_stock":
                actions.append(f"Consider discounting, bundling or liquidating {opportunity.sku}")
            else:
                actions.append(
                    f"Pause reorders for {opportunity.sku} until stock falls below "
                    f"{cfg.overstock_multiple:g}x its reorder point"
                )
        for insight in supplier_insights:
            if insight.rating == "Needs Attention":
                actions.append(f"Qualify an alternative supplier to {insight.supplier_id}")

        findings = self._key_findings(
            score,
            count,
            total_value,
            stockouts,
            below,
            upcoming,
            dead,
            recommendations,
            abc,
            inventory,
            supplier_insights,
        )
        if narrative and self.narrator is not None:
            findings = self._narrate(findings, score, risk_alerts, opportunities, actions)

        LOGGER.info(
            "Report synthesised: skus=%d score=%.1f below=%d upcoming=%d dead=%d budget_limited=%d",
            count,
            score,
            len(below),
            len(upcoming),
            len(dead),
            len(budget_limited_skus),
        )
        return AnalysisReport(
            health_score=score,
            opportunities=opportunities,
            risk_alerts=risk_alerts,
            urgent_reorders=[item.sku for item in below],
            upcoming_reorders=[item.sku for item in upcoming],
            supplier_insights=supplier_insights,
            abc_categorization=abc,
            suggested_actions=actions,
            key_findings=findings,
            total_inventory_value=round(total_value, 2),
            report_date=as_of,
        )

    # ------------------------------------------------------------------
    def _supplier_insights(
        self,
        inventory: Sequence[InventorySnapshot],
        lead_times: Sequence[LeadTime],
        urgent_skus: Set[str],
        total_value: float,
    ) -> List[SupplierInsight]:
        cfg = self.config
        items = {item.sku: item for item in inventory}
        supplied: Dict[str, Dict[str, float]] = {}
        sources: Dict[str, Set[str]] = {}
        for lead_time in lead_times:
            if lead_time.sku not in items:
                continue
            skus = supplied.setdefault(lead_time.supplier_id, {})
            skus[lead_time.sku] = max(skus.get(lead_time.sku, 0.0), float(lead_time.lead_time_days))
            sources.setdefault(lead_time.sku, set()).add(lead_time.supplier_id)

        insights: List[SupplierInsight] = []
        for supplier_id, lead_by_sku in supplied.items():
            skus = sorted(lead_by_sku)
            value = sum(inventory_value(items[sku]) for sku in skus)
            share = min(round(value / total_value, 4), 1.0) if total_value > 0 else 0.0
            sole_source = [sku for sku in skus if sources[sku] == {supplier_id}]
            urgent = [sku for sku in skus if sku in urgent_skus]
            longest = max(lead_by_sku.values())

            concentrated = share >= cfg.supplier_concentration_threshold
            slow = longest >= cfg.long_lead_time_days
            observations = [f"Supplies {len(skus)} SKU(s) holding {share:.0%} of inventory value"]
            if concentrated:
                observations.append(
                    f"High concentration: {share:.0%} of inventory value depends on {supplier_id}"
                )
            if sole_source:
                observations.append(
                    f"Sole source for {len(sole_source)} SKU(s): {', '.join(sole_source)}"
                )
            if slow:
                observations.append(f"Lead times reach {longest:g} days")
            if urgent:
                observations.append(
                    f"{len(urgent)} SKU(s) at or below reorder point rely on it: {', '.join(urgent)}"
                )

            if concentrated or (sole_source and urgent):
                rating = "Needs Attention"
            elif sole_source or urgent or slow:
                rating = "Fair"
            else:
                rating = "Good"
            insights.append(
                SupplierInsight(
                    supplier_id=supplier_id,
                    skus=skus,
                    value_share=share,
                    sole_source_skus=sole_source,
                    observations=observations,
                    rating=rating,
                )
            )
        insights.sort(key=lambda insight: (-insight.value_share, insight.supplier_id))
        return insights

    # ------------------------------------------------------------------
    def _key_findings(
        self,
        score: float,
        count: int,
        total_value: float,
        stockouts: Sequence[InventorySnapshot],
        below: Sequence[InventorySnapshot],
        upcoming: Sequence[InventorySnapshot],
        dead: Sequence[InventorySnapshot],
        recommendations: Sequence[ReorderRecommendation],
        abc: Dict[str, List[str]],
        inventory: Sequence[InventorySnapshot],
        supplier_insights: Sequence[SupplierInsight],
    ) -> List[str]:
        findings = [
            f"Health score {score:.1f}/100 across {count} SKUs worth {total_value:.2f} in total."
        ]
        if stockouts:
            findings.append(
                f"{len(stockouts)} SKU(s) out of stock: {', '.join(item.sku for item in stockouts)}."
            )
        if below:
            findings.append(f"{len(below)} SKU(s) at or below their reorder point.")
        if upcoming:
            findings.append(f"{len(upcoming)} SKU(s) approaching their reorder point.")
        if dead:
            dead_value = sum(inventory_value(item) for item in dead)
            findings.append(f"{len(dead)} dead-stock SKU(s) holding {dead_value:.2f}.")
        if recommendations:
            spend = sum(rec.estimated_cost for rec in recommendations)
            findings.append(f"{len(recommendations)} reorder recommendation(s) totalling {spend:.2f}.")
        if total_value > 0 and abc["A"]:
            a_skus = set(abc["A"])
            a_value = sum(inventory_value(item) for item in inventory if item.sku in a_skus)
            findings.append(
                f"Class A: {len(abc['A'])} SKU(s) carry {a_value / total_value:.0%} of inventory value."
            )
        flagged = [insight.supplier_id for insight in supplier_insights if insight.rating == "Needs Attention"]
        if flagged:
            findings.append(f"Supplier exposure needs attention: {', '.join(flagged)}.")
        return findings[:MAX_KEY_FINDINGS]

    # ------------------------------------------------------------------
    def _narrate(
        self,
        fallback: List[str],
        score: float,
        risk_alerts: Sequence[RiskAlert],
        opportunities: Sequence[Opportunity],
        actions: Sequence[str],
    ) -> List[str]:
        context = {
            "health_score": score,
            "key_findings": list(fallback),
            "risk_alerts": [alert.model_dump() for alert in risk_alerts],
            "opportunities": [opportunity.model_dump() for opportunity in opportunities],
            "suggested_actions": list(actions),
        }
        try:
            raw = self.narrator(context)  # type: ignore[misc]
        except Exception:  # pragma: no cover - narrator failures must not fail the report
            LOGGER.exception("Narrative generation failed; keeping rule-based findings")
            return fallback
        findings = validate_findings(raw)
        if findings is None:
            LOGGER.warning("Generated narrative did not match the findings schema; discarded")
            return fallback
        return findings

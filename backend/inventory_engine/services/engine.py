r"""backend\inventory_engine\services\engine.py

Request orchestration for the reorder engine.

``ReorderEngine`` exposes the three entry points used by the API:

* :meth:`ReorderEngine.forecast_sku` - forecasts for a single SKU;
* :meth:`ReorderEngine.reorder_pass` - recommendations for a portfolio;
* :meth:`ReorderEngine.analyze` - recommendations plus an analysis report.

Per-SKU forecast and reorder work is independent and runs on a thread pool.
A SKU that times out or whose sales lookup fails is skipped with an
``upstream_failure`` issue; the rest of the batch proceeds.  Cost
optimisation runs after all per-SKU work has finished, in input order, so
that a portfolio cash budget is consumed deterministically.

The engine keeps no state between calls.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..core.config import EngineConfig, load_engine_config
from ..core.errors import (
    CANCELLED,
    COMPUTATION_INFEASIBLE,
    INPUT_ERROR,
    UPSTREAM_FAILURE,
    InputError,
    UpstreamFailure,
)
from ..core.observability import ENGINE_BATCH_SECONDS, ENGINE_SKU_OUTCOMES
from ..models.schemas import (
    AnalysisRequest,
    AnalysisResponse,
    DiscountTier,
    ForecastRequest,
    ForecastResponse,
    ForecastResult,
    InventorySnapshot,
    Issue,
    LeadTime,
    ReorderCandidate,
    ReorderRecommendation,
    ReorderRequest,
    ReorderResponse,
    SalesRecord,
)
from .cost_optimizer import CostOptimizer
from .demand_model import DemandModel, ForecastOutcome, StatisticalDemandModel
from .llm_service import summarize_report
from .reorder_calculator import ReorderCalculator
from .report_synthesizer import Narrator, ReportSynthesizer
from .validation_service import flatten_discount_tiers, validate_records

LOGGER = logging.getLogger(__name__)

HistorySource = Callable[[str], Iterable[Any]]

_POLL_SECONDS = 0.05

_AMOUNT = r"\$?\s*(\d[\d,]*(?:\.\d+)?)\s*([kKmM])?\b"
_DOLLAR_PATTERN = re.compile(r"\$\s*(\d[\d,]*(?:\.\d+)?)\s*([kKmM])?\b")
_KEYWORD_PATTERN = re.compile(
    r"(?:under|below|within|max(?:imum)?|limit(?:ed)?(?:\s+to|\s+of)?|budget(?:\s+of|\s+is)?|up\s+to|cap(?:ped)?(?:\s+at)?)\s*:?\s*"
    + _AMOUNT,
    re.IGNORECASE,
)
_SUFFIX_MULTIPLIERS = {"k": 1_000.0, "m": 1_000_000.0}


def parse_budget_notes(text: Optional[str]) -> Optional[float]:
    """Extract a cash limit from free text such as "Keep total spend under $5,000".

    Returns ``None`` when no amount can be found.
    """

    if not text:
        return None
    match = _DOLLAR_PATTERN.search(text) or _KEYWORD_PATTERN.search(text)
    if match is None:
        return None
    amount = float(match.group(1).replace(",", ""))
    suffix = (match.group(2) or "").lower()
    return amount * _SUFFIX_MULTIPLIERS.get(suffix, 1.0)


@dataclass(slots=True)
class SkuResult:
    """Outcome of the per-SKU stage for one inventory item."""

    item: InventorySnapshot
    forecasts: List[ForecastResult] = field(default_factory=list)
    candidates: List[ReorderCandidate] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)
    # Sales fetched from the history source, when the request carried none.
    fetched_sales: List[SalesRecord] = field(default_factory=list)


@dataclass(slots=True)
class _Unit:
    item: InventorySnapshot
    started: threading.Event = field(default_factory=threading.Event)
    started_at: float = 0.0
    future: Optional[Future] = None


@dataclass(slots=True)
class _BatchInputs:
    inventory: List[InventorySnapshot]
    sales_by_sku: Dict[str, List[SalesRecord]]
    lead_times: List[LeadTime]
    discount_tiers: List[DiscountTier]
    issues: List[Issue]


class ReorderEngine:
    """Coordinate demand model, reorder calculator, cost optimizer and report."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        demand_model: DemandModel | None = None,
        history_source: HistorySource | None = None,
        narrator: Narrator | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.demand_model = demand_model or StatisticalDemandModel(self.config)
        self.history_source = history_source
        self.calculator = ReorderCalculator(self.config)
        self.optimizer = CostOptimizer()
        self.synthesizer = ReportSynthesizer(self.config, narrator=narrator)

    # ------------------------------------------------------------------
    # Single SKU
    def _forecast(
        self,
        sku: str,
        history: Sequence[Any],
        seasonality_notes: Optional[str],
        model_type: Optional[str],
    ) -> ForecastOutcome:
        diagnostics = getattr(self.demand_model, "forecast_with_diagnostics", None)
        if diagnostics is not None:
            return diagnostics(sku, history, seasonality_notes, model_type)
        forecasts = self.demand_model.forecast(sku, history, seasonality_notes)
        return ForecastOutcome(
            sku=sku,
            forecasts=list(forecasts),
            model_used=model_type or self.config.model_type,
        )

    def forecast_sku(self, request: ForecastRequest) -> ForecastResponse:
        """Forecast one SKU; an empty SKU raises :class:`InputError`."""

        sku = (request.sku or "").strip()
        if not sku:
            raise InputError("sku must be a non-empty string", skus=[request.sku or ""])
        history: Sequence[Any] = request.sales_history
        if not history and self.history_source is not None:
            history = self._fetch_history(sku)
        outcome = self._forecast(sku, history, request.seasonality_notes, request.model_type)
        ENGINE_SKU_OUTCOMES.labels("forecast", "forecasted").inc()
        return ForecastResponse(
            sku=sku,
            model_used=outcome.model_used,
            forecasts=outcome.forecasts,
            model_explanation=outcome.model_explanation,
            accuracy_score=outcome.accuracy_score,
            issues=outcome.issues,
        )

    # ------------------------------------------------------------------
    # Batch helpers
    def _fetch_history(self, sku: str) -> List[Any]:
        try:
            return list(self.history_source(sku) or [])  # type: ignore[misc]
        except UpstreamFailure:
            raise
        except Exception as exc:
            raise UpstreamFailure(f"sales history lookup failed: {exc}", skus=[sku]) from exc

    def _validate_batch(self, request: ReorderRequest) -> _BatchInputs:
        issues: List[Issue] = []
        inventory, rejected = validate_records(InventorySnapshot, request.inventory, label="inventory")
        issues.extend(rejected)

        unique: List[InventorySnapshot] = []
        seen: set[str] = set()
        for item in inventory:
            if item.sku in seen:
                message = f"Duplicate inventory snapshot for SKU '{item.sku}' ignored"
                LOGGER.warning(message)
                issues.append(Issue(kind=INPUT_ERROR, message=message, sku=item.sku))
                continue
            seen.add(item.sku)
            unique.append(item)

        sales, rejected = validate_records(SalesRecord, request.sales_history, label="sales")
        issues.extend(rejected)
        sales_by_sku: Dict[str, List[SalesRecord]] = {}
        for record in sales:
            sales_by_sku.setdefault(record.sku, []).append(record)

        lead_times, rejected = validate_records(LeadTime, request.lead_times, label="lead_times")
        issues.extend(rejected)
        tiers, rejected = validate_records(
            DiscountTier, flatten_discount_tiers(request.discount_tiers), label="discount_tiers"
        )
        issues.extend(rejected)
        return _BatchInputs(unique, sales_by_sku, lead_times, tiers, issues)

    def _evaluate_sku(
        self,
        item: InventorySnapshot,
        inputs: _BatchInputs,
        request: ReorderRequest,
    ) -> SkuResult:
        sku = item.sku
        issues: List[Issue] = []
        fetched: List[SalesRecord] = []
        history: Sequence[Any] = inputs.sales_by_sku.get(sku, [])
        if not history and self.history_source is not None:
            history, rejected = validate_records(
                SalesRecord, self._fetch_history(sku), label="sales", defaults={"sku": sku}
            )
            issues.extend(rejected)
            fetched = [record for record in history if record.sku == sku]
        notes = (request.seasonality_notes or {}).get(sku)
        outcome = self._forecast(sku, history, notes, request.model_type)
        issues.extend(outcome.issues)
        lead_times = [lt for lt in inputs.lead_times if lt.sku == sku]
        candidates = self.calculator.compute_reorder(item, outcome.forecasts, lead_times, issues)
        return SkuResult(
            item=item,
            forecasts=outcome.forecasts,
            candidates=candidates,
            issues=issues,
            fetched_sales=fetched,
        )

    @staticmethod
    def _workers_stalled(units: Sequence[_Unit], timeout: float, workers: int) -> bool:
        """True when every worker is held by a unit past its timeout."""

        now = time.monotonic()
        stuck = sum(
            1
            for unit in units
            if unit.started.is_set() and not unit.future.done() and now - unit.started_at >= timeout
        )
        return stuck >= workers

    def _await_unit(
        self,
        unit: _Unit,
        units: Sequence[_Unit],
        timeout: float,
        workers: int,
        cancel_event: Optional[threading.Event],
    ) -> Optional[SkuResult]:
        """Wait for ``unit``; ``None`` means it was cancelled before starting.

        A queued unit raises ``TimeoutError`` once no worker can pick it up
        any more, i.e. all of them are stuck in timed-out lookups.
        """

        while not unit.started.wait(_POLL_SECONDS):
            if cancel_event is not None and cancel_event.is_set() and unit.future.cancel():
                return None
            if self._workers_stalled(units, timeout, workers) and unit.future.cancel():
                raise FutureTimeout()
        remaining = max(unit.started_at + timeout - time.monotonic(), 0.0)
        return unit.future.result(timeout=remaining)

    def _run_units(
        self,
        mode: str,
        inputs: _BatchInputs,
        request: ReorderRequest,
        cancel_event: Optional[threading.Event],
    ) -> tuple[List[SkuResult], List[Issue], bool]:
        timeout = float(request.per_sku_timeout_seconds or self.config.per_sku_timeout_seconds)
        results: List[SkuResult] = []
        issues: List[Issue] = []
        cancelled = False

        def run(unit: _Unit) -> Optional[SkuResult]:
            unit.started_at = time.monotonic()
            unit.started.set()
            if cancel_event is not None and cancel_event.is_set():
                return None
            return self._evaluate_sku(unit.item, inputs, request)

        workers = max(1, int(self.config.max_workers))
        executor = ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix=f"engine-{mode}",
        )
        try:
            units = [_Unit(item=item) for item in inputs.inventory]
            for unit in units:
                unit.future = executor.submit(run, unit)

            for unit in units:
                sku = unit.item.sku
                try:
                    result = self._await_unit(unit, units, timeout, workers, cancel_event)
                except FutureTimeout:
                    if unit.started.is_set():
                        message = f"Per-SKU work exceeded {timeout:g}s and was skipped"
                    else:
                        message = (
                            f"Not started: all {workers} workers are held by lookups "
                            f"that exceeded {timeout:g}s"
                        )
                    LOGGER.warning("SKU %s skipped: %s", sku, message)
                    issues.append(Issue(kind=UPSTREAM_FAILURE, message=message, sku=sku))
                    ENGINE_SKU_OUTCOMES.labels(mode, "timeout").inc()
                    continue
                except UpstreamFailure as exc:
                    LOGGER.warning("SKU %s skipped: %s", sku, exc.message)
                    issues.append(Issue(kind=UPSTREAM_FAILURE, message=exc.message, sku=sku))
                    ENGINE_SKU_OUTCOMES.labels(mode, "upstream_failure").inc()
                    continue
                except CancelledError:
                    result = None
                except InputError as exc:
                    LOGGER.warning("SKU %s rejected: %s", sku, exc.message)
                    issues.append(Issue(kind=exc.code, message=exc.message, sku=sku))
                    ENGINE_SKU_OUTCOMES.labels(mode, "rejected").inc()
                    continue
                except Exception as exc:
                    LOGGER.exception("Unexpected failure while evaluating SKU %s", sku)
                    issues.append(
                        Issue(kind=COMPUTATION_INFEASIBLE, message=f"Evaluation failed: {exc}", sku=sku)
                    )
                    ENGINE_SKU_OUTCOMES.labels(mode, "failed").inc()
                    continue

                if result is None:
                    cancelled = True
                    issues.append(
                        Issue(kind=CANCELLED, message="Batch cancelled before this SKU started", sku=sku)
                    )
                    ENGINE_SKU_OUTCOMES.labels(mode, "cancelled").inc()
                    continue
                results.append(result)
        finally:
            # Timed-out units may still be running; do not wait for them.
            executor.shutdown(wait=False, cancel_futures=True)

        if cancelled:
            LOGGER.warning(
                "Batch %s cancelled: %d of %d SKUs evaluated",
                mode,
                len(results),
                len(inputs.inventory),
            )
        return results, issues, cancelled

    def _cash_budget(self, request: ReorderRequest) -> Optional[float]:
        if request.cash_budget is not None:
            return float(request.cash_budget)
        parsed = parse_budget_notes(request.cash_flow_constraints)
        if request.cash_flow_constraints and parsed is None:
            LOGGER.info("No cash amount found in cash flow constraints %r", request.cash_flow_constraints)
        return parsed

    def _optimize(
        self,
        mode: str,
        results: Sequence[SkuResult],
        inputs: _BatchInputs,
        request: ReorderRequest,
        issues: List[Issue],
    ) -> List[ReorderRecommendation]:
        remaining = self._cash_budget(request)
        recommendations: List[ReorderRecommendation] = []
        for result in results:
            issues.extend(result.issues)
            budget = request.budget_constraint
            if remaining is not None:
                budget = remaining if budget is None else min(budget, remaining)
            recommendation = self.optimizer.select_best_offer(
                result.candidates, inputs.discount_tiers, budget
            )
            if recommendation is None:
                ENGINE_SKU_OUTCOMES.labels(mode, "no_action").inc()
                continue
            if recommendation.budget_limited:
                issues.append(
                    Issue(
                        kind=COMPUTATION_INFEASIBLE,
                        message=(
                            f"No offer fits the available budget of {budget:.2f}; "
                            f"cheapest offer costs {recommendation.estimated_cost:.2f}"
                        ),
                        sku=recommendation.sku,
                    )
                )
                ENGINE_SKU_OUTCOMES.labels(mode, "budget_limited").inc()
            else:
                if remaining is not None:
                    remaining = max(remaining - recommendation.estimated_cost, 0.0)
                ENGINE_SKU_OUTCOMES.labels(mode, "recommended").inc()
            recommendations.append(recommendation)
        return recommendations

    def _reorder(
        self,
        mode: str,
        request: ReorderRequest,
        cancel_event: Optional[threading.Event],
    ) -> tuple[_BatchInputs, List[SkuResult], List[ReorderRecommendation], List[Issue], bool]:
        inputs = self._validate_batch(request)
        LOGGER.info(
            "Engine %s pass received: skus=%d sales=%d lead_times=%d tiers=%d rejected=%d",
            mode,
            len(inputs.inventory),
            sum(len(records) for records in inputs.sales_by_sku.values()),
            len(inputs.lead_times),
            len(inputs.discount_tiers),
            len(inputs.issues),
        )
        results, unit_issues, cancelled = self._run_units(mode, inputs, request, cancel_event)
        issues = list(inputs.issues) + unit_issues
        recommendations = self._optimize(mode, results, inputs, request, issues)
        return inputs, results, recommendations, issues, cancelled

    def _sales_unknown(self, inputs: _BatchInputs, results: Sequence[SkuResult]) -> set[str]:
        """SKUs whose sales were neither supplied nor fetched."""

        if self.history_source is None:
            return set()
        evaluated = {result.item.sku for result in results}
        return {
            item.sku
            for item in inputs.inventory
            if item.sku not in inputs.sales_by_sku and item.sku not in evaluated
        }

    # ------------------------------------------------------------------
    # Portfolio entry points
    def reorder_pass(
        self,
        request: ReorderRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReorderResponse:
        """Recommendations for every inventory item that needs reordering."""

        with ENGINE_BATCH_SECONDS.labels("reorder").time():
            _, results, recommendations, issues, cancelled = self._reorder(
                "reorder", request, cancel_event
            )
        return ReorderResponse(
            recommendations=recommendations,
            forecasts={result.item.sku: result.forecasts for result in results},
            total_estimated_cost=round(sum(rec.estimated_cost for rec in recommendations), 2),
            cancelled=cancelled,
            issues=issues,
        )

    def analyze(
        self,
        request: AnalysisRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> AnalysisResponse:
        """Full pass followed by the portfolio report."""

        with ENGINE_BATCH_SECONDS.labels("analysis").time():
            inputs, results, recommendations, issues, cancelled = self._reorder(
                "analysis", request, cancel_event
            )
            sales = [record for records in inputs.sales_by_sku.values() for record in records]
            sales.extend(record for result in results for record in result.fetched_sales)
            report = self.synthesizer.synthesize(
                inputs.inventory,
                recommendations,
                sales_history=sales,
                as_of=request.as_of,
                narrative=request.narrative,
                lead_times=inputs.lead_times,
                sales_unknown=self._sales_unknown(inputs, results),
            )
        return AnalysisResponse(
            report=report,
            recommendations=recommendations,
            cancelled=cancelled,
            issues=issues,
        )


def build_engine(config_root: str | None = None) -> ReorderEngine:
    """Engine wired with the current YAML configuration and Gemini narratives."""

    return ReorderEngine(load_engine_config(config_root), narrator=summarize_report)

r"""backend\inventory_engine\services\demand_model.py

Demand forecasting for the 30, 60 and 90 day horizons.

The sales history of a single SKU is turned into a daily demand series
(days without sales count as zero demand) and projected forward with one of
several statistical estimators:

* ``SIMPLE_MOVING_AVERAGE``: mean of the most recent window.
* ``EXPONENTIAL_SMOOTHING``: simple exponential smoothing of the level.
* ``SEASONAL_DECOMPOSITION``: recent level scaled by a day-of-week profile.
* ``REGRESSION_ANALYSIS``: linear trend fitted over the whole history.
* ``ENSEMBLE_COMBINED``: average of the four paths above (default).

Any other backend (a learned model, a call to a generative service) can be
used by the engine as long as it implements :class:`DemandModel` and keeps
the cold-start and confidence contract: zero demand with ``Low`` confidence
when no usable history exists.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from statistics import NormalDist
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import numpy as np
import pandas as pd

from ..core.config import EngineConfig
from ..core.errors import DATA_GAP, INPUT_ERROR, InputError
from ..models.schemas import (
    HORIZONS,
    ConfidenceInterval,
    ForecastResult,
    Issue,
    SalesRecord,
)
from .validation_service import validate_records

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "ENSEMBLE_COMBINED"


class DemandModel(Protocol):
    """Capability interface: produce one forecast per horizon from sales."""

    def forecast(
        self,
        sku: str,
        sales_history: Iterable[Any],
        seasonality_notes: Optional[str] = None,
    ) -> List[ForecastResult]:
        ...


@dataclass(slots=True)
class ForecastOutcome:
    """Forecasts for one SKU together with the diagnostics behind them."""

    sku: str
    forecasts: List[ForecastResult]
    model_used: str
    model_explanation: Optional[str] = None
    accuracy_score: Optional[float] = None
    history_days: int = 0
    issues: List[Issue] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helper utilities (kept top-level for straightforward unit testing)


def build_daily_series(records: Sequence[SalesRecord]) -> pd.Series:
    """Return daily demand indexed by date, summing duplicate days.

    The index spans the first to the last recorded day; gaps are zero demand.
    """

    if not records:
        return pd.Series(dtype=float)

    frame = pd.DataFrame(
        {
            "date": pd.to_datetime([record.date for record in records]),
            "qty": [float(record.quantity_sold) for record in records],
        }
    )
    daily = frame.groupby("date")["qty"].sum().sort_index()
    full_index = pd.date_range(daily.index.min(), daily.index.max(), freq="D")
    return daily.reindex(full_index, fill_value=0.0).astype(float)


def coefficient_of_variation(series: pd.Series) -> float:
    """Population CV of daily demand; an all-zero series counts as stable."""

    if series.empty:
        return math.inf
    mean = float(series.mean())
    if mean <= 0:
        return 0.0
    return float(series.std(ddof=0)) / mean


def find_disruption(notes: Optional[str], keywords: Sequence[str]) -> Optional[str]:
    """Return the first disruption keyword mentioned in ``notes``."""

    if not notes:
        return None
    text = notes.lower()
    for keyword in keywords:
        if keyword.lower() in text:
            return keyword
    return None


def moving_average_path(history: np.ndarray, horizon: int, window: int) -> np.ndarray:
    recent = history[-max(window, 1):]
    return np.full(horizon, float(recent.mean()))


def exponential_smoothing_path(history: np.ndarray, horizon: int, alpha: float) -> np.ndarray:
    level = float(history[0])
    for value in history[1:]:
        level = alpha * float(value) + (1.0 - alpha) * level
    return np.full(horizon, level)


def seasonal_path(
    history: np.ndarray,
    horizon: int,
    window: int,
    first_weekday: int,
) -> np.ndarray:
    """Recent level scaled by the average demand of each weekday."""

    level_path = moving_average_path(history, horizon, window)
    overall = float(history.mean())
    if len(history) < 14 or overall <= 0:
        return level_path

    weekdays = (first_weekday + np.arange(len(history))) % 7
    factors = np.ones(7)
    for day in range(7):
        mask = weekdays == day
        if mask.any():
            factors[day] = float(history[mask].mean()) / overall

    future_weekdays = (first_weekday + len(history) + np.arange(horizon)) % 7
    return level_path * factors[future_weekdays]


def regression_path(history: np.ndarray, horizon: int) -> np.ndarray:
    n = len(history)
    if n < 2:
        return np.full(horizon, float(history.mean()))
    slope, intercept = np.polyfit(np.arange(n, dtype=float), history, 1)
    future_t = np.arange(n, n + horizon, dtype=float)
    return np.clip(intercept + slope * future_t, 0.0, None)


def assign_confidence(
    span_days: int,
    cv: float,
    horizon: int,
    config: EngineConfig,
    disruption: Optional[str] = None,
) -> Tuple[str, str]:
    """Return ``(confidence, reason)`` for one horizon."""

    if disruption:
        return "Low", f"seasonality notes mention '{disruption}', which cannot be quantified"
    if span_days < config.min_history_days:
        return "Low", f"only {span_days} day(s) of history"
    if cv > config.volatile_cv:
        return "Low", f"daily demand is highly volatile (CV {cv:.2f})"
    if span_days >= 2 * horizon and cv <= config.moderate_cv:
        return "High", f"{span_days} days of stable history (CV {cv:.2f})"
    if span_days < 2 * horizon:
        return "Medium", f"{span_days} days of history is short for a {horizon}-day horizon"
    return "Medium", f"daily demand is moderately noisy (CV {cv:.2f})"


def _confidence_from_mape(actual: np.ndarray, predicted: np.ndarray) -> Optional[float]:
    mask = actual != 0
    if not mask.any():
        return None
    mape = float(np.mean(np.abs((actual[mask] - predicted[mask]) / actual[mask])))
    if np.isnan(mape):
        return None
    return float(max(0.1, min(0.99, 1.0 - min(mape, 1.5))))


# ---------------------------------------------------------------------------
# Core model implementation


class StatisticalDemandModel:
    """Deterministic demand estimator over a daily sales series."""

    MODEL_TYPES: Tuple[str, ...] = (
        "SIMPLE_MOVING_AVERAGE",
        "EXPONENTIAL_SMOOTHING",
        "SEASONAL_DECOMPOSITION",
        "REGRESSION_ANALYSIS",
        "ENSEMBLE_COMBINED",
    )
    MIN_BACKTEST_DAYS: int = 28

    def __init__(self, config: EngineConfig | None = None, model_type: str | None = None) -> None:
        self.config = config or EngineConfig()
        if self.config.moving_average_window <= 0:
            raise ValueError("moving_average_window must be a positive integer")
        self.model_type = self._resolve_model(model_type or self.config.model_type)
        service_level = min(max(float(self.config.service_level), 0.5), 0.995)
        self.z_value = NormalDist().inv_cdf(service_level)

    # ------------------------------------------------------------------
    def _resolve_model(self, requested: str | None) -> str:
        if requested in self.MODEL_TYPES:
            return str(requested)
        LOGGER.warning("Unknown model type %r; using %s", requested, DEFAULT_MODEL)
        return DEFAULT_MODEL

    # ------------------------------------------------------------------
    def _paths(self, model_type: str) -> Dict[str, Callable[[np.ndarray, int, int], np.ndarray]]:
        window = self.config.moving_average_window
        alpha = self.config.smoothing_alpha
        builders: Dict[str, Callable[[np.ndarray, int, int], np.ndarray]] = {
            "SIMPLE_MOVING_AVERAGE": lambda hist, n, wd: moving_average_path(hist, n, window),
            "EXPONENTIAL_SMOOTHING": lambda hist, n, wd: exponential_smoothing_path(hist, n, alpha),
            "SEASONAL_DECOMPOSITION": lambda hist, n, wd: seasonal_path(hist, n, window, wd),
            "REGRESSION_ANALYSIS": lambda hist, n, wd: regression_path(hist, n),
        }
        if model_type == "ENSEMBLE_COMBINED":
            return builders
        return {model_type: builders[model_type]}

    # ------------------------------------------------------------------
    def _predict_path(
        self,
        model_type: str,
        history: np.ndarray,
        horizon: int,
        first_weekday: int,
    ) -> np.ndarray:
        paths = [build(history, horizon, first_weekday) for build in self._paths(model_type).values()]
        path = np.mean(np.vstack(paths), axis=0)
        return np.clip(path, 0.0, None)

    # ------------------------------------------------------------------
    def _accuracy_score(self, model_type: str, history: np.ndarray, first_weekday: int) -> Optional[float]:
        if len(history) < self.MIN_BACKTEST_DAYS:
            return None
        holdout = min(14, len(history) // 4)
        train, actual = history[:-holdout], history[-holdout:]
        predicted = self._predict_path(model_type, train, holdout, first_weekday)
        score = _confidence_from_mape(actual, predicted)
        return None if score is None else round(score * 100.0, 1)

    # ------------------------------------------------------------------
    def _clean_history(self, sku: str, sales_history: Iterable[Any]) -> Tuple[List[SalesRecord], List[Issue]]:
        records, issues = validate_records(
            SalesRecord, sales_history, label="sales", defaults={"sku": sku}
        )
        matching: List[SalesRecord] = []
        for record in records:
            if record.sku != sku:
                message = f"Ignored sales record for SKU '{record.sku}' while forecasting '{sku}'"
                LOGGER.warning(message)
                issues.append(Issue(kind=INPUT_ERROR, message=message, sku=sku))
                continue
            matching.append(record)
        return matching, issues

    # ------------------------------------------------------------------
    def _cold_start(self, sku: str, model_type: str, issues: List[Issue]) -> ForecastOutcome:
        LOGGER.info("No usable sales history for SKU %s; applying cold-start forecast", sku)
        issues.append(
            Issue(
                kind=DATA_GAP,
                message="No usable sales history; forecast defaults to zero demand with Low confidence",
                sku=sku,
            )
        )
        forecasts = [
            ForecastResult(
                sku=sku,
                horizon_days=horizon,
                predicted_demand=0.0,
                confidence="Low",
                explanation="No usable sales history (cold start); demand assumed to be zero.",
                confidence_interval=ConfidenceInterval(lower_bound=0.0, upper_bound=0.0),
            )
            for horizon in HORIZONS
        ]
        return ForecastOutcome(
            sku=sku,
            forecasts=forecasts,
            model_used=model_type,
            model_explanation="Cold start: no history available for any estimator.",
            issues=issues,
        )

    # ------------------------------------------------------------------
    def forecast_with_diagnostics(
        self,
        sku: str,
        sales_history: Iterable[Any],
        seasonality_notes: Optional[str] = None,
        model_type: Optional[str] = None,
    ) -> ForecastOutcome:
        """Forecast ``sku`` and report the model, accuracy and rejected records."""

        sku = (sku or "").strip() if isinstance(sku, str) else ""
        if not sku:
            raise InputError("sku must be a non-empty string", skus=[""])

        chosen = self._resolve_model(model_type) if model_type else self.model_type
        records, issues = self._clean_history(sku, sales_history)
        series = build_daily_series(records)
        if series.empty:
            return self._cold_start(sku, chosen, issues)

        history = series.to_numpy(dtype=float)
        first_weekday = int(series.index[0].dayofweek)
        span_days = len(history)
        cv = coefficient_of_variation(series)
        sigma_daily = float(np.std(history))
        disruption = find_disruption(seasonality_notes, self.config.disruption_keywords)
        if disruption:
            LOGGER.info("Seasonality notes for %s mention %r; confidence lowered", sku, disruption)

        forecasts: List[ForecastResult] = []
        for horizon in HORIZONS:
            path = self._predict_path(chosen, history, horizon, first_weekday)
            predicted = max(float(path.sum()), 0.0)
            spread = self.z_value * sigma_daily * math.sqrt(horizon)
            confidence, reason = assign_confidence(span_days, cv, horizon, self.config, disruption)
            forecasts.append(
                ForecastResult(
                    sku=sku,
                    horizon_days=horizon,
                    predicted_demand=round(predicted, 2),
                    confidence=confidence,
                    explanation=(
                        f"{chosen} projects {predicted:.1f} units over {horizon} days "
                        f"({predicted / horizon:.2f}/day); {reason}."
                    ),
                    confidence_interval=ConfidenceInterval(
                        lower_bound=round(max(predicted - spread, 0.0), 2),
                        upper_bound=round(predicted + spread, 2),
                    ),
                )
            )

        accuracy = self._accuracy_score(chosen, history, first_weekday)
        LOGGER.info(
            "Forecast for %s: model=%s history_days=%d cv=%.2f demand_30=%.2f",
            sku,
            chosen,
            span_days,
            cv,
            forecasts[0].predicted_demand,
        )
        return ForecastOutcome(
            sku=sku,
            forecasts=forecasts,
            model_used=chosen,
            model_explanation=(
                f"{chosen} applied to {span_days} days of daily demand "
                f"(mean {float(series.mean()):.2f}, CV {cv:.2f})."
            ),
            accuracy_score=accuracy,
            history_days=span_days,
            issues=issues,
        )

    # ------------------------------------------------------------------
    def forecast(
        self,
        sku: str,
        sales_history: Iterable[Any],
        seasonality_notes: Optional[str] = None,
    ) -> List[ForecastResult]:
        """Return the 30, 60 and 90 day forecasts for ``sku``."""

        return self.forecast_with_diagnostics(sku, sales_history, seasonality_notes).forecasts

r"""backend\inventory_engine\models\schemas.py

Pydantic models used throughout the engine and the API.

These models serve as both request payload validators and response
serialisation schemas.  Python attributes are snake_case while the JSON
form uses camelCase aliases, matching the records exchanged with the
inventory application (``quantitySold``, ``unitCost``, ...).
"""

from __future__ import annotations

import datetime
from datetime import date
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Confidence = Literal["High", "Medium", "Low"]
ModelType = Literal[
    "SIMPLE_MOVING_AVERAGE",
    "EXPONENTIAL_SMOOTHING",
    "SEASONAL_DECOMPOSITION",
    "REGRESSION_ANALYSIS",
    "ENSEMBLE_COMBINED",
]
IssueKind = Literal[
    "input_error",
    "data_gap",
    "computation_infeasible",
    "upstream_failure",
    "cancelled",
]
HORIZONS: tuple[int, ...] = (30, 60, 90)
BUDGET_LIMITED_NOTE = "budget-limited"


class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON with snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _require_sku(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("sku must be a non-empty string")
    return value


Sku = Annotated[str, AfterValidator(_require_sku)]


# ---------------------------------------------------------------------------
# Input records


class SalesRecord(CamelModel):
    """Units of one SKU sold on one day."""

    sku: Sku
    date: datetime.date
    quantity_sold: float = Field(..., ge=0)


class InventorySnapshot(CamelModel):
    """On-hand state of a SKU at evaluation time."""

    sku: Sku
    name: str = ""
    quantity: float = Field(..., ge=0)
    unit_cost: float = Field(..., ge=0)
    reorder_point: float = Field(0, ge=0)
    category: Optional[str] = None


class LeadTime(CamelModel):
    """Supplier offer for a SKU and its replenishment lead time."""

    sku: Sku
    supplier_id: str = Field(..., min_length=1)
    lead_time_days: float = Field(..., gt=0)


class DiscountTier(CamelModel):
    """Percentage discount unlocked at ``min_quantity`` units."""

    supplier_id: str = Field(..., min_length=1)
    sku: Sku
    min_quantity: int = Field(..., ge=1)
    discount_percentage: float = Field(..., ge=0, lt=100)


# ---------------------------------------------------------------------------
# Outputs


class Issue(CamelModel):
    """A record- or SKU-level problem surfaced next to the results."""

    kind: IssueKind
    message: str
    sku: Optional[str] = None
    record_index: Optional[int] = None


class ConfidenceInterval(CamelModel):
    lower_bound: float = Field(..., ge=0)
    upper_bound: float = Field(..., ge=0)


class ForecastResult(CamelModel):
    """Predicted demand for one SKU over one horizon."""

    sku: Sku
    horizon_days: int
    predicted_demand: float = Field(..., ge=0)
    confidence: Confidence
    explanation: Optional[str] = None
    confidence_interval: Optional[ConfidenceInterval] = None

    @field_validator("horizon_days")
    @classmethod
    def _known_horizon(cls, value: int) -> int:
        if value not in HORIZONS:
            raise ValueError(f"horizon_days must be one of {HORIZONS}")
        return value


class ReorderCandidate(CamelModel):
    """Quantity needed for one SKU if bought from one supplier."""

    sku: Sku
    product_name: str
    current_quantity: float
    current_reorder_point: float
    optimized_reorder_point: int = Field(..., ge=0)
    quantity: int = Field(..., ge=0)
    unit_cost: float = Field(..., ge=0)
    supplier_id: Optional[str] = None
    lead_time_days: float
    confidence: Confidence
    notes: List[str] = Field(default_factory=list)


class ReorderRecommendation(CamelModel):
    """Purchase recommendation for a SKU that needs action."""

    sku: Sku
    product_name: str
    current_quantity: float
    current_reorder_point: float
    optimized_reorder_point: int = Field(..., ge=0)
    optimal_reorder_quantity: int = Field(..., ge=0)
    selected_supplier_id: Optional[str] = None
    estimated_cost: float = Field(..., ge=0)
    notes: Optional[str] = None

    @property
    def budget_limited(self) -> bool:
        return bool(self.notes) and BUDGET_LIMITED_NOTE in self.notes


class Opportunity(CamelModel):
    sku: Sku
    kind: Literal["overstock", "dead_stock"]
    value: float
    message: str
    days_since_last_sale: Optional[int] = None


class RiskAlert(CamelModel):
    sku: Sku
    severity: Literal["Critical", "Warning"]
    message: str


class SupplierInsight(CamelModel):
    """Exposure of the portfolio to one supplier."""

    supplier_id: str
    skus: List[str]
    value_share: float = Field(..., ge=0, le=1)
    sole_source_skus: List[str] = Field(default_factory=list)
    observations: List[str] = Field(default_factory=list)
    rating: Literal["Good", "Fair", "Needs Attention"] = "Good"


class AnalysisReport(CamelModel):
    """Portfolio snapshot derived from inventory and recommendations."""

    health_score: float = Field(..., ge=0, le=100)
    opportunities: List[Opportunity] = Field(default_factory=list)
    risk_alerts: List[RiskAlert] = Field(default_factory=list)
    urgent_reorders: List[str] = Field(default_factory=list)
    upcoming_reorders: List[str] = Field(default_factory=list)
    supplier_insights: List[SupplierInsight] = Field(default_factory=list)
    abc_categorization: Dict[str, List[str]] = Field(
        default_factory=lambda: {"A": [], "B": [], "C": []}
    )
    suggested_actions: List[str] = Field(default_factory=list)
    key_findings: List[str] = Field(default_factory=list)
    total_inventory_value: float = 0.0
    report_date: Optional[date] = None


# ---------------------------------------------------------------------------
# Requests and envelopes


class ForecastRequest(CamelModel):
    """Single-SKU forecast request (invocation mode a)."""

    sku: str
    sales_history: List[Dict[str, Any]] = Field(default_factory=list)
    seasonality_notes: Optional[str] = None
    model_type: Optional[ModelType] = None


class ForecastResponse(CamelModel):
    sku: Sku
    model_used: ModelType
    forecasts: List[ForecastResult]
    model_explanation: Optional[str] = None
    accuracy_score: Optional[float] = Field(None, ge=0, le=100)
    issues: List[Issue] = Field(default_factory=list)


class ReorderRequest(CamelModel):
    """Portfolio-wide reorder request (invocation mode b).

    Records are accepted as raw mappings so that each one can be validated
    and rejected on its own instead of failing the whole request.
    """

    inventory: List[Dict[str, Any]]
    sales_history: List[Dict[str, Any]] = Field(default_factory=list)
    lead_times: List[Dict[str, Any]] = Field(default_factory=list)
    discount_tiers: List[Dict[str, Any]] = Field(default_factory=list)
    budget_constraint: Optional[float] = Field(None, ge=0)
    cash_budget: Optional[float] = Field(None, ge=0)
    cash_flow_constraints: Optional[str] = None
    seasonality_notes: Optional[Dict[str, str]] = None
    model_type: Optional[ModelType] = None
    per_sku_timeout_seconds: Optional[float] = Field(None, gt=0)


class ReorderResponse(CamelModel):
    recommendations: List[ReorderRecommendation]
    forecasts: Dict[str, List[ForecastResult]] = Field(default_factory=dict)
    total_estimated_cost: float = 0.0
    cancelled: bool = False
    issues: List[Issue] = Field(default_factory=list)


class AnalysisRequest(ReorderRequest):
    """Full analysis request (invocation mode c)."""

    as_of: Optional[date] = None
    narrative: bool = False


class AnalysisResponse(CamelModel):
    report: AnalysisReport
    recommendations: List[ReorderRecommendation]
    cancelled: bool = False
    issues: List[Issue] = Field(default_factory=list)

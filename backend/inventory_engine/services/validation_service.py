r"""backend\inventory_engine\services\validation_service.py

Boundary validation for the raw records supplied by callers.

Each record is validated on its own; a bad record is reported as an
``input_error`` issue and dropped while the rest of the batch proceeds.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..core.errors import INPUT_ERROR
from ..models.schemas import (
    DiscountTier,
    InventorySnapshot,
    Issue,
    LeadTime,
    SalesRecord,
)

LOGGER = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)


def validate_records(
    model: Type[RecordT],
    raw_records: Iterable[Any],
    *,
    label: str,
    defaults: Mapping[str, Any] | None = None,
) -> Tuple[List[RecordT], List[Issue]]:
    """Validate ``raw_records`` one by one against ``model``.

    ``defaults`` fills keys missing from mapping records (used to stamp the
    request SKU onto bare ``{date, quantitySold}`` sales rows).
    """

    valid: List[RecordT] = []
    issues: List[Issue] = []
    for index, raw in enumerate(raw_records):
        if isinstance(raw, model):
            valid.append(raw)
            continue
        payload = raw
        if isinstance(raw, BaseModel):
            payload = raw.model_dump()
        if isinstance(payload, Mapping) and defaults:
            payload = {**defaults, **payload}
        sku = payload.get("sku") if isinstance(payload, Mapping) else None
        try:
            valid.append(model.model_validate(payload))
        except ValidationError as exc:
            message = f"Rejected {label} record {index}: {_describe(exc)}"
            LOGGER.warning(message)
            issues.append(
                Issue(
                    kind=INPUT_ERROR,
                    message=message,
                    sku=str(sku) if sku not in (None, "") else None,
                    record_index=index,
                )
            )
    return valid, issues


def flatten_discount_tiers(raw_tiers: Iterable[Any]) -> List[Any]:
    """Expand ``{supplierId, sku, thresholds: [...]}`` entries into flat tiers."""

    flat: List[Any] = []
    for raw in raw_tiers:
        if isinstance(raw, Mapping) and isinstance(raw.get("thresholds"), list):
            base = {k: v for k, v in raw.items() if k != "thresholds"}
            for threshold in raw["thresholds"]:
                if isinstance(threshold, Mapping):
                    flat.append({**base, **threshold})
                else:
                    flat.append(threshold)
        else:
            flat.append(raw)
    return flat


class ValidationService:
    """Validate a full request snapshot without running any computation."""

    def run(
        self,
        inventory: Sequence[Any] = (),
        sales_history: Sequence[Any] = (),
        lead_times: Sequence[Any] = (),
        discount_tiers: Sequence[Any] = (),
    ) -> dict:
        checks = []
        all_issues: List[Issue] = []

        def add(name: str, model: Type[BaseModel], records: Sequence[Any]) -> None:
            valid, issues = validate_records(model, records, label=name)
            all_issues.extend(issues)
            checks.append(
                {
                    "name": name,
                    "ok": not issues,
                    "accepted": len(valid),
                    "rejected": len(issues),
                }
            )

        add("inventory", InventorySnapshot, inventory)
        add("sales_history", SalesRecord, sales_history)
        add("lead_times", LeadTime, lead_times)
        add("discount_tiers", DiscountTier, flatten_discount_tiers(discount_tiers))

        overall = all(x["ok"] for x in checks)
        return {
            "ok": overall,
            "checks": checks,
            "issues": [issue.model_dump(by_alias=True, exclude_none=True) for issue in all_issues],
        }

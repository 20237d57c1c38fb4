r"""backend\inventory_engine\api\v1\data.py"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter
from pydantic import Field

from ...models.schemas import CamelModel
from ...services.validation_service import ValidationService

router = APIRouter()
_validation_service = ValidationService()


class ValidateRequest(CamelModel):
    inventory: List[Dict[str, Any]] = Field(default_factory=list)
    sales_history: List[Dict[str, Any]] = Field(default_factory=list)
    lead_times: List[Dict[str, Any]] = Field(default_factory=list)
    discount_tiers: List[Dict[str, Any]] = Field(default_factory=list)


@router.post("/data/validate")
def validate(body: ValidateRequest) -> dict:
    return _validation_service.run(
        inventory=body.inventory,
        sales_history=body.sales_history,
        lead_times=body.lead_times,
        discount_tiers=body.discount_tiers,
    )

r"""backend/inventory_engine/api/v1/analysis.py

Routes for the full inventory analysis report."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status

from ...models import schemas
from ...services import engine as engine_module
from .reorder import _error_payload, run_until_disconnect

LOGGER = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/analysis/report",
    response_model=schemas.AnalysisResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def post_analysis_report(
    body: schemas.AnalysisRequest,
    request: Request,
) -> schemas.AnalysisResponse:
    """Run a reorder pass and summarise the portfolio."""

    LOGGER.info(
        "Analysis request received: inventory=%d sales=%d narrative=%s",
        len(body.inventory),
        len(body.sales_history),
        body.narrative,
    )
    engine = engine_module.build_engine()
    try:
        result = await run_until_disconnect(request, engine.analyze, body)
    except Exception as exc:  # pragma: no cover - surfaced as 500
        LOGGER.exception("Unexpected error during analysis")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_error_payload("engine_failed", "An unexpected error occurred while building the report."),
        ) from exc

    LOGGER.info(
        "Analysis finished: health_score=%.1f recommendations=%d cancelled=%s",
        result.report.health_score,
        len(result.recommendations),
        result.cancelled,
    )
    return result

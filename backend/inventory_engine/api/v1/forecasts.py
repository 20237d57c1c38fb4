"""Routes for demand forecasting."""

from __future__ import annotations

import logging
from typing import Sequence

from fastapi import APIRouter, HTTPException, Response, status

from ...core.errors import InputError, UpstreamFailure
from ...models import schemas
from ...services import engine as engine_module

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _error_payload(code: str, message: str, skus: Sequence[str] = ()) -> dict:
    """Return a standardised error payload."""

    payload: dict = {"error": code, "message": message}
    if skus:
        payload["skus"] = list(skus)
    return payload


@router.post(
    "/forecasts",
    response_model=schemas.ForecastResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
def post_forecast(body: schemas.ForecastRequest, response: Response) -> schemas.ForecastResponse:
    """Return 30, 60 and 90 day demand forecasts for one SKU."""

    LOGGER.info(
        "Forecast request received for sku=%s records=%d model=%s",
        body.sku,
        len(body.sales_history),
        body.model_type,
    )
    try:
        result = engine_module.build_engine().forecast_sku(body)
    except InputError as exc:
        LOGGER.warning("Forecast rejected for sku=%r: %s", body.sku, exc.message)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_error_payload("invalid_request", exc.message, exc.skus),
        ) from exc
    except UpstreamFailure as exc:
        LOGGER.warning("Sales history unavailable for sku=%s: %s", body.sku, exc.message)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=_error_payload("upstream_failure", exc.message, exc.skus),
        ) from exc
    except Exception as exc:  # pragma: no cover - surfaced as 500
        LOGGER.exception("Unexpected error while forecasting sku=%s", body.sku)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_error_payload("engine_failed", "An unexpected error occurred while forecasting."),
        ) from exc

    response.headers["model_used"] = result.model_used
    return result

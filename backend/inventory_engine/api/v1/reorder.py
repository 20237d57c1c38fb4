r"""backend/inventory_engine/api/v1/reorder.py

Routes for portfolio reorder recommendations."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Sequence, TypeVar

from fastapi import APIRouter, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from ...models import schemas
from ...services import engine as engine_module

LOGGER = logging.getLogger(__name__)

router = APIRouter()

DISCONNECT_POLL_SECONDS = 0.1

ResultT = TypeVar("ResultT")


def _error_payload(code: str, message: str, skus: Sequence[str] = ()) -> dict:
    """Return a standardised error payload."""

    payload: dict = {"error": code, "message": message}
    if skus:
        payload["skus"] = list(skus)
    return payload


async def run_until_disconnect(
    request: Request,
    func: Callable[[Any, threading.Event], ResultT],
    body: Any,
) -> ResultT:
    """Run ``func`` in a worker thread, cancelling it if the client goes away.

    Cancellation is cooperative: SKUs not yet started are skipped and the
    partial result is still returned.
    """

    cancel_event = threading.Event()
    task = asyncio.ensure_future(run_in_threadpool(func, body, cancel_event))
    while True:
        done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
        if done:
            return task.result()
        if not cancel_event.is_set() and await request.is_disconnected():
            LOGGER.warning("Client disconnected from %s; cancelling remaining SKUs", request.url.path)
            cancel_event.set()


@router.post(
    "/reorder/recommendations",
    response_model=schemas.ReorderResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def post_reorder_recommendations(
    body: schemas.ReorderRequest,
    request: Request,
) -> schemas.ReorderResponse:
    """Return purchase recommendations for every SKU that needs reordering."""

    LOGGER.info(
        "Reorder request received: inventory=%d sales=%d lead_times=%d tiers=%d",
        len(body.inventory),
        len(body.sales_history),
        len(body.lead_times),
        len(body.discount_tiers),
    )
    engine = engine_module.build_engine()
    try:
        result = await run_until_disconnect(request, engine.reorder_pass, body)
    except Exception as exc:  # pragma: no cover - surfaced as 500
        LOGGER.exception("Unexpected error during reorder pass")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_error_payload("engine_failed", "An unexpected error occurred while computing reorders."),
        ) from exc

    LOGGER.info(
        "Reorder pass finished: recommendations=%d total_cost=%.2f issues=%d cancelled=%s",
        len(result.recommendations),
        result.total_estimated_cost,
        len(result.issues),
        result.cancelled,
    )
    return result

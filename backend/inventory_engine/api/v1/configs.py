"""API endpoints for reading and updating the engine configuration YAML files."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from typing import Any, Callable, Dict, Literal, Optional

import yaml
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from ...core import config as app_config
from ...core.config import EngineConfig

LOGGER = logging.getLogger(__name__)

router = APIRouter()

CONFIG_DIR = app_config.get_settings().config_dir
SETTINGS_FILE = "settings.yaml"
THRESHOLDS_FILE = "thresholds.yaml"


def _config_path(filename: str) -> str:
    return os.path.join(CONFIG_DIR, filename)


def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _safe_write_yaml(path: str, payload: Dict[str, Any]) -> None:
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        prefix=".tmp-", suffix=".yaml", dir=directory
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            yaml.safe_dump(payload, handle, sort_keys=False)
        shutil.move(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


class SettingsUpdate(BaseModel):
    model_type: Optional[
        Literal[
            "SIMPLE_MOVING_AVERAGE",
            "EXPONENTIAL_SMOOTHING",
            "SEASONAL_DECOMPOSITION",
            "REGRESSION_ANALYSIS",
            "ENSEMBLE_COMBINED",
        ]
    ] = None
    moving_average_window: Optional[int] = Field(None, ge=1, le=365)
    smoothing_alpha: Optional[float] = Field(None, gt=0.0, le=1.0)
    service_level: Optional[float] = Field(None, ge=0.5, le=0.999)
    min_history_days: Optional[int] = Field(None, ge=1, le=365)
    moderate_cv: Optional[float] = Field(None, gt=0.0)
    volatile_cv: Optional[float] = Field(None, gt=0.0)
    default_lead_time_days: Optional[int] = Field(None, ge=1, le=365)
    safety_factor_high: Optional[float] = Field(None, ge=1.0, le=5.0)
    safety_factor_medium: Optional[float] = Field(None, ge=1.0, le=5.0)
    safety_factor_low: Optional[float] = Field(None, ge=1.0, le=5.0)
    stock_safety_margin: Optional[float] = Field(None, ge=0.0, le=1.0)
    max_workers: Optional[int] = Field(None, ge=1, le=64)
    per_sku_timeout_seconds: Optional[float] = Field(None, gt=0.0, le=600.0)


class ThresholdsUpdate(BaseModel):
    abc_a_threshold: Optional[float] = Field(None, gt=0.0, lt=1.0)
    abc_b_threshold: Optional[float] = Field(None, gt=0.0, lt=1.0)
    weight_below_reorder_point: Optional[float] = Field(None, ge=0.0, le=100.0)
    weight_dead_stock: Optional[float] = Field(None, ge=0.0, le=100.0)
    weight_budget_limited: Optional[float] = Field(None, ge=0.0, le=100.0)
    weight_stockout: Optional[float] = Field(None, ge=0.0, le=100.0)
    dead_stock_lookback_days: Optional[int] = Field(None, ge=1, le=730)
    overstock_multiple: Optional[float] = Field(None, ge=1.0)
    low_turnover_ratio: Optional[float] = Field(None, ge=0.0)
    upcoming_reorder_ratio: Optional[float] = Field(None, ge=1.0, le=5.0)
    supplier_concentration_threshold: Optional[float] = Field(None, gt=0.0, le=1.0)
    long_lead_time_days: Optional[float] = Field(None, gt=0.0, le=365.0)


def _merge_updates(original: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    result = original.copy()
    result.update({k: v for k, v in updates.items() if v is not None})
    return result



def _read_config(filename: str) -> Dict[str, Any]:
    try:
        return _load_yaml(_config_path(filename))
    except FileNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": f"{filename} not found"},
        ) from exc


def _update_config(
    filename: str,
    body: BaseModel,
    check: Callable[[Dict[str, Any]], Optional[str]] | None = None,
) -> Dict[str, Any]:
    path = _config_path(filename)
    try:
        current = _load_yaml(path)
    except FileNotFoundError:
        current = {}

    updated = _merge_updates(current, body.model_dump(exclude_none=True))
    if updated == current:
        return current

    problem = check(updated) if check is not None else None
    if problem:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_config", "message": problem},
        )

    try:
        _safe_write_yaml(path, updated)
    except OSError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "write_failed", "message": str(exc)},
        ) from exc
    LOGGER.info("Updated %s keys=%s", filename, sorted(body.model_dump(exclude_none=True)))
    return updated


def _check_abc_order(values: Dict[str, Any]) -> Optional[str]:
    defaults = EngineConfig()
    a = float(values.get("abc_a_threshold", defaults.abc_a_threshold))
    b = float(values.get("abc_b_threshold", defaults.abc_b_threshold))
    if a >= b:
        return "abc_a_threshold must be lower than abc_b_threshold"
    return None


def _check_cv_order(values: Dict[str, Any]) -> Optional[str]:
    defaults = EngineConfig()
    moderate = float(values.get("moderate_cv", defaults.moderate_cv))
    volatile = float(values.get("volatile_cv", defaults.volatile_cv))
    if moderate > volatile:
        return "moderate_cv must not exceed volatile_cv"
    return None


@router.get("/configs/settings")
def get_settings() -> Dict[str, Any]:
    return _read_config(SETTINGS_FILE)


@router.put("/configs/settings")
def put_settings(body: SettingsUpdate) -> Dict[str, Any]:
    return _update_config(SETTINGS_FILE, body, _check_cv_order)


@router.get("/configs/thresholds")
def get_thresholds() -> Dict[str, Any]:
    return _read_config(THRESHOLDS_FILE)


@router.put("/configs/thresholds")
def put_thresholds(body: ThresholdsUpdate) -> Dict[str, Any]:
    return _update_config(THRESHOLDS_FILE, body, _check_abc_order)

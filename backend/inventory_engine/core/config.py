"""
Application configuration utilities.

This module defines the ``Settings`` class used throughout the service for
environment variables, the ``EngineConfig`` container holding the business
parameters of the reorder engine, and helper functions to load the YAML
files in ``configs/`` that carry those parameters.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from functools import lru_cache
from typing import Any, Dict, Tuple

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API server configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_token: str | None = None
    cors_origins: str = ""
    rate_limit_per_min: int = 60
    log_level: str = "INFO"

    # Directory holding settings.yaml / thresholds.yaml
    config_dir: str = "configs"

    # GEMINI API key (optional; only used for report narratives)
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-flash"


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return a cached instance of ``Settings``.

    Using a cache ensures that environment variables are only read once.
    """
    return Settings()


def load_yaml(file_path: str) -> dict:
    """Load a YAML file from the given path and return its contents.

    If the file does not exist, an empty dictionary is returned.
    """
    if not os.path.exists(file_path):
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return data if isinstance(data, dict) else {}


_DISRUPTION_KEYWORDS: Tuple[str, ...] = (
    "promotion",
    "promo",
    "launch",
    "new product",
    "clearance",
    "disruption",
    "shortage",
    "recall",
    "strike",
)


@dataclass(frozen=True)
class EngineConfig:
    """Business parameters for the forecasting and reorder pipeline."""

    # demand model
    model_type: str = "ENSEMBLE_COMBINED"
    moving_average_window: int = 28
    smoothing_alpha: float = 0.3
    service_level: float = 0.95
    min_history_days: int = 14
    moderate_cv: float = 0.75
    volatile_cv: float = 1.5
    disruption_keywords: Tuple[str, ...] = _DISRUPTION_KEYWORDS

    # reorder calculator
    default_lead_time_days: int = 14
    safety_factor_high: float = 1.1
    safety_factor_medium: float = 1.3
    safety_factor_low: float = 1.6
    stock_safety_margin: float = 0.10

    # orchestration
    max_workers: int = 4
    per_sku_timeout_seconds: float = 10.0

    # report synthesizer
    abc_a_threshold: float = 0.80
    abc_b_threshold: float = 0.95
    weight_below_reorder_point: float = 40.0
    weight_dead_stock: float = 30.0
    weight_budget_limited: float = 20.0
    weight_stockout: float = 10.0
    dead_stock_lookback_days: int = 90
    overstock_multiple: float = 3.0
    low_turnover_ratio: float = 2.0
    upcoming_reorder_ratio: float = 1.10
    supplier_concentration_threshold: float = 0.50
    long_lead_time_days: float = 30.0

    extras: Dict[str, Any] = field(default_factory=dict)

    def safety_factor(self, confidence: str) -> float:
        return {
            "High": self.safety_factor_high,
            "Medium": self.safety_factor_medium,
        }.get(confidence, self.safety_factor_low)


def _coerce(value: Any, default: Any) -> Any:
    if isinstance(default, tuple):
        if isinstance(value, str):
            return (value,)
        return tuple(str(item) for item in value or ())
    if isinstance(default, bool):
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


def load_engine_config(config_root: str | None = None) -> EngineConfig:
    """Build an ``EngineConfig`` from ``settings.yaml`` and ``thresholds.yaml``.

    Unknown keys are kept in ``extras``; keys that are missing keep their
    defaults. ``config_root`` defaults to ``Settings.config_dir``
    (``CONFIG_DIR`` in the environment).
    """

    root = config_root or get_settings().config_dir
    merged: Dict[str, Any] = {}
    merged.update(load_yaml(os.path.join(root, "settings.yaml")))
    merged.update(load_yaml(os.path.join(root, "thresholds.yaml")))

    defaults = EngineConfig()
    known = {f.name for f in fields(EngineConfig)} - {"extras"}
    values: Dict[str, Any] = {}
    extras: Dict[str, Any] = {}
    for key, value in merged.items():
        if value is None:
            continue
        if key in known:
            values[key] = _coerce(value, getattr(defaults, key))
        else:
            extras[key] = value

    return EngineConfig(**values, extras=extras)

r"""backend/tests/test_forecast_api.py"""

from __future__ import annotations

import sys
from datetime import date, timedelta
from pathlib import Path

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.inventory_engine.main import app

client = TestClient(app)


def _history(days: int = 90, qty: float = 3.0) -> list[dict]:
    start = date(2024, 1, 1)
    return [
        {"date": (start + timedelta(days=i)).isoformat(), "quantitySold": qty}
        for i in range(days)
    ]


def test_forecast_returns_three_horizons() -> None:
    response = client.post(
        "/api/v1/forecasts",
        json={"sku": "SKU001", "salesHistory": _history(), "modelType": "SIMPLE_MOVING_AVERAGE"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["sku"] == "SKU001"
    assert payload["modelUsed"] == "SIMPLE_MOVING_AVERAGE"
    assert response.headers["model_used"] == "SIMPLE_MOVING_AVERAGE"
    assert [fc["horizonDays"] for fc in payload["forecasts"]] == [30, 60, 90]
    assert payload["forecasts"][0]["predictedDemand"] == 90.0
    assert payload["forecasts"][0]["confidence"] == "High"
    assert set(payload["forecasts"][0]["confidenceInterval"]) == {"lowerBound", "upperBound"}


def test_cold_start_forecast() -> None:
    response = client.post("/api/v1/forecasts", json={"sku": "NEW-SKU"})

    assert response.status_code == 200
    payload = response.json()
    assert all(fc["predictedDemand"] == 0 for fc in payload["forecasts"])
    assert all(fc["confidence"] == "Low" for fc in payload["forecasts"])
    assert payload["issues"][0]["kind"] == "data_gap"


def test_blank_sku_is_bad_request() -> None:
    response = client.post("/api/v1/forecasts", json={"sku": "  ", "salesHistory": _history()})

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "invalid_request"


def test_missing_sku_is_unprocessable() -> None:
    response = client.post("/api/v1/forecasts", json={"salesHistory": _history()})

    assert response.status_code == 422


def test_unknown_model_type_is_unprocessable() -> None:
    response = client.post("/api/v1/forecasts", json={"sku": "SKU001", "modelType": "MAGIC"})

    assert response.status_code == 422


def test_bad_rows_are_reported() -> None:
    history = _history(30)
    history.append({"date": "not-a-date", "quantitySold": 1})

    response = client.post("/api/v1/forecasts", json={"sku": "SKU001", "salesHistory": history})

    assert response.status_code == 200
    issues = response.json()["issues"]
    assert issues[0]["kind"] == "input_error"
    assert issues[0]["recordIndex"] == 30

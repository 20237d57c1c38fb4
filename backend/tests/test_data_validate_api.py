r"""backend/tests/test_data_validate_api.py"""

from __future__ import annotations

import sys
from pathlib import Path

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.inventory_engine.main import app  # noqa: E402

client = TestClient(app)


def test_validate_ok() -> None:
    response = client.post(
        "/api/v1/data/validate",
        json={
            "inventory": [{"sku": "A", "quantity": 1, "unitCost": 2.5}],
            "salesHistory": [{"sku": "A", "date": "2024-01-01", "quantitySold": 3}],
            "leadTimes": [{"sku": "A", "supplierId": "S1", "leadTimeDays": 5}],
            "discountTiers": [{"sku": "A", "supplierId": "S1", "minQuantity": 10, "discountPercentage": 5}],
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert [check["name"] for check in payload["checks"]] == [
        "inventory",
        "sales_history",
        "lead_times",
        "discount_tiers",
    ]
    assert payload["issues"] == []


def test_validate_reports_each_bad_record() -> None:
    response = client.post(
        "/api/v1/data/validate",
        json={
            "inventory": [
                {"sku": "A", "quantity": 1, "unitCost": 2.5},
                {"sku": "", "quantity": 1, "unitCost": 2.5},
            ],
            "salesHistory": [{"sku": "A", "date": "2024-01-01", "quantitySold": -3}],
            "discountTiers": [
                {
                    "sku": "A",
                    "supplierId": "S1",
                    "thresholds": [
                        {"minQuantity": 10, "discountPercentage": 5},
                        {"minQuantity": 20, "discountPercentage": 120},
                    ],
                }
            ],
        },
    )

    payload = response.json()
    assert payload["ok"] is False
    checks = {check["name"]: check for check in payload["checks"]}
    assert checks["inventory"]["accepted"] == 1
    assert checks["inventory"]["rejected"] == 1
    assert checks["sales_history"]["rejected"] == 1
    assert checks["lead_times"]["ok"] is True
    assert checks["discount_tiers"]["accepted"] == 1
    assert [issue["recordIndex"] for issue in payload["issues"]] == [1, 0, 1]

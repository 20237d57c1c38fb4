from __future__ import annotations

import sys
from pathlib import Path

import yaml
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.inventory_engine.core.config import EngineConfig, load_engine_config  # noqa: E402
from backend.inventory_engine.main import app  # noqa: E402

client = TestClient(app)

CFG_MODULE = "backend.inventory_engine.api.v1.configs"


def test_configs_get_put(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(f"{CFG_MODULE}.CONFIG_DIR", str(tmp_path))
    (tmp_path / "settings.yaml").write_text(
        yaml.safe_dump({"service_level": 0.95, "default_lead_time_days": 14})
    )
    (tmp_path / "thresholds.yaml").write_text(yaml.safe_dump({"abc_a_threshold": 0.8}))

    response = client.get("/api/v1/configs/settings")
    assert response.status_code == 200
    assert response.json()["default_lead_time_days"] == 14

    response = client.put("/api/v1/configs/settings", json={"default_lead_time_days": 10})
    assert response.status_code == 200
    settings = yaml.safe_load((tmp_path / "settings.yaml").read_text())
    assert settings["default_lead_time_days"] == 10
    assert settings["service_level"] == 0.95

    response = client.put("/api/v1/configs/thresholds", json={"weight_dead_stock": 25})
    assert response.status_code == 200
    thresholds = yaml.safe_load((tmp_path / "thresholds.yaml").read_text())
    assert thresholds == {"abc_a_threshold": 0.8, "weight_dead_stock": 25.0}

    config = load_engine_config(str(tmp_path))
    assert config.default_lead_time_days == 10
    assert config.weight_dead_stock == 25.0


def test_configs_reject_out_of_range(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(f"{CFG_MODULE}.CONFIG_DIR", str(tmp_path))

    response = client.put("/api/v1/configs/settings", json={"service_level": 1.5})
    assert response.status_code == 422

    response = client.put("/api/v1/configs/thresholds", json={"abc_a_threshold": 0.97})
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_config"
    assert not (tmp_path / "thresholds.yaml").exists()


def test_missing_config_file_is_404(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(f"{CFG_MODULE}.CONFIG_DIR", str(tmp_path))

    response = client.get("/api/v1/configs/thresholds")

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "not_found"


def test_engine_config_defaults_without_files(tmp_path: Path) -> None:
    config = load_engine_config(str(tmp_path))

    assert config == EngineConfig()
    assert config.safety_factor("High") == 1.1
    assert config.safety_factor("Medium") == 1.3
    assert config.safety_factor("Low") == 1.6


def test_engine_config_keeps_unknown_keys(tmp_path: Path) -> None:
    (tmp_path / "settings.yaml").write_text(
        yaml.safe_dump({"max_workers": "2", "disruption_keywords": "holiday", "custom_flag": True})
    )

    config = load_engine_config(str(tmp_path))

    assert config.max_workers == 2
    assert config.disruption_keywords == ("holiday",)
    assert config.extras == {"custom_flag": True}


def test_shipped_yaml_matches_defaults() -> None:
    assert load_engine_config(str(ROOT / "configs")) == EngineConfig()

r"""backend/tests/conftest.py"""

from __future__ import annotations

import sys
from collections import defaultdict, deque
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.inventory_engine.core import observability as obs  # noqa: E402
from backend.inventory_engine.core.config import get_settings  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    """Fresh rate-limit windows, default configuration and no Gemini key."""

    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_buckets", defaultdict(deque), raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_last_sweep", 0.0, raising=False)
    monkeypatch.setenv("CONFIG_DIR", str(ROOT / "configs"))
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()

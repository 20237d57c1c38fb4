r"""backend\inventory_engine\core\errors.py

Error taxonomy shared by the engine and the API layer.

``InputError`` and ``UpstreamFailure`` are raised; data gaps, infeasible
budgets and cancellations are not exceptions but issue kinds attached to the
output (see ``models.schemas.Issue``).
"""

from __future__ import annotations

from typing import Sequence

INPUT_ERROR = "input_error"
DATA_GAP = "data_gap"
COMPUTATION_INFEASIBLE = "computation_infeasible"
UPSTREAM_FAILURE = "upstream_failure"
CANCELLED = "cancelled"


class EngineError(Exception):
    """Base class for errors raised by the reorder engine."""

    code = "engine_error"

    def __init__(self, message: str, skus: Sequence[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.skus = list(skus or [])


class InputError(EngineError, ValueError):
    """Malformed or missing required fields."""

    code = INPUT_ERROR


class UpstreamFailure(EngineError, RuntimeError):
    """An external data source was unavailable for a unit of work."""

    code = UPSTREAM_FAILURE

r"""backend\inventory_engine\main.py

Main entrypoint for the FastAPI application.

The API exposes the reorder engine's three entry points: single-SKU demand
forecasts, portfolio reorder recommendations and the full analysis report.
Boundary validation, configuration and health endpoints are provided next to
them.  Configuration is read from environment variables and YAML files in
`configs/`.
"""


import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from .api.v1 import analysis, configs, data, forecasts, health, reorder
from .core.config import get_settings
from .core.observability import TokenAndRateLimitMiddleware, metrics_endpoint

# Load .env from repo root
BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(BASE_DIR / ".env")

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logging.getLogger(__name__).info(
    "LLM narratives enabled: %s model=%s",
    bool(settings.gemini_api_key),
    settings.gemini_model,
)

app = FastAPI(title="Inventory Reorder Engine API", version="0.1.0")

origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TokenAndRateLimitMiddleware)

# Include versioned routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(forecasts.router, prefix="/api/v1")
app.include_router(reorder.router, prefix="/api/v1")
app.include_router(analysis.router, prefix="/api/v1")
app.include_router(data.router, prefix="/api/v1")
app.include_router(configs.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
def _root() -> RedirectResponse:
    """Redirect the root path to the interactive docs."""

    return RedirectResponse(url="/docs")


@app.get("/metrics", include_in_schema=False)
async def _metrics() -> Response:
    """Expose Prometheus metrics."""

    return metrics_endpoint()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)

r"""backend\app\main.py

Main entrypoint for the FastAPI application.

The API accepts sales data uploads, runs the parameter-optimization queue in
the background and serves per-SKU forecasts built from the resolved model
parameters.  A health endpoint is also provided for readiness/liveness
checks.  Configuration is read from environment variables and
`configs/settings.yaml`.
"""


from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
import os
import logging
from pathlib import Path

from dotenv import load_dotenv

# Load .env from repo root before settings are read
BASE_DIR = Path(__file__).resolve().parents[2]  # repo root
load_dotenv(BASE_DIR / ".env")

from .api.v1 import (  # noqa: E402
    configs,
    data,
    forecasts,
    health,
    models,
    optimizations,
)
from .core.observability import TokenAndRateLimitMiddleware, metrics_endpoint  # noqa: E402
from .services.optimization_engine import get_engine  # noqa: E402


logging.getLogger(__name__).info(
    "AI search key configured: %s model=%s",
    bool(os.getenv("GEMINI_API_KEY")),
    os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
)

app = FastAPI(title="Sales Forecast Optimizer API", version="0.1.0")

# Allow cross-origin requests from the Streamlit UI (and others).
origins_env = os.getenv("CORS_ORIGINS", "")
origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,  # In production specify your UI domain(s)
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TokenAndRateLimitMiddleware)

# Include versioned routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(data.router, prefix="/api/v1")
app.include_router(forecasts.router, prefix="/api/v1")
app.include_router(models.router, prefix="/api/v1")
app.include_router(optimizations.router, prefix="/api/v1")
app.include_router(configs.router, prefix="/api/v1")


@app.on_event("startup")
async def _resume_queue() -> None:
    """Best-effort resume of jobs persisted by a previous run."""

    get_engine().schedule_processing()


@app.get("/", include_in_schema=False)
def _root() -> RedirectResponse:
    """Redirect the root path to the interactive docs."""

    return RedirectResponse(url="/docs")


@app.get("/metrics", include_in_schema=False)
async def _metrics() -> Response:
    """Expose Prometheus metrics."""

    return metrics_endpoint()

r"""backend/tests/test_optimizations_api.py"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pandas as pd
import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.core import observability as obs  # noqa: E402
from backend.app.core.config import OptimizationSettings, Settings  # noqa: E402
from backend.app.main import app  # noqa: E402
from backend.app.models.schemas import SearchResult  # noqa: E402
from backend.app.services import optimization_engine  # noqa: E402
from backend.app.services.optimization_engine import OptimizationEngine  # noqa: E402
from backend.app.services.sales_data import SalesDataStore  # noqa: E402

client = TestClient(app)

OPTIMIZABLE = {"moving_average", "exponential_smoothing", "seasonal_moving_average", "holt_winters"}


async def _good_ai(model, series, sku, business_context, api_key=None, enabled=True):
    return SearchResult(parameters=dict(model.parameters), confidence=88, reasoning="stub", method="ai")


async def _broken_ai(model, series, sku, business_context, api_key=None, enabled=True):
    raise RuntimeError("gemini unavailable")


def _frame(periods: int = 14) -> pd.DataFrame:
    dates = pd.date_range("2023-01-01", periods=periods, freq="MS")
    return pd.DataFrame({"sku": "S1", "date": dates, "sales": [float(40 + (i % 4) * 3) for i in range(periods)]})


def _engine(tmp_path: Path, ai=_good_ai, threshold: int = 5) -> OptimizationEngine:
    settings = Settings(
        state_dir=str(tmp_path / "state"),
        config_dir=str(tmp_path),
        data_dir=str(tmp_path / "data"),
        gemini_api_key=None,
    )
    return OptimizationEngine(
        settings=settings,
        optimization=OptimizationSettings(ai_failure_threshold=threshold),
        data=SalesDataStore(_frame()),
        ai_search=ai,
        persist_data=False,
    )


def _drain(engine: OptimizationEngine) -> int:
    engine.queue.resume()
    return asyncio.run(engine.processor.process())


@pytest.fixture(autouse=True)
def _open_middleware(monkeypatch):
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_token", None, raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_per_minute", 0, raising=False)


@pytest.fixture()
def engine(monkeypatch, tmp_path: Path) -> OptimizationEngine:
    instance = _engine(tmp_path)
    instance.pause()
    monkeypatch.setattr(optimization_engine, "_ENGINE", instance)
    return instance


def test_enqueue_and_queue_status(engine: OptimizationEngine) -> None:
    response = client.post("/api/v1/optimizations/jobs", json={"skus": ["S1"]})
    assert response.status_code == 200
    queued = response.json()["queued"]
    assert {item["model_id"] for item in queued} == OPTIMIZABLE
    assert {item["method"] for item in queued} == {"grid", "ai"}

    again = client.post("/api/v1/optimizations/jobs", json={"skus": ["S1"]})
    assert again.json()["queued"] == []
    assert len(again.json()["skipped"]) == len(queued)

    status_resp = client.get("/api/v1/optimizations/queue")
    assert status_resp.status_code == 200
    body = status_resp.json()
    assert body["paused"] is True
    assert body["queued"] == len(queued)
    assert body["ai_enabled"] is True


def test_enqueue_unknown_sku_or_model(engine: OptimizationEngine) -> None:
    response = client.post("/api/v1/optimizations/jobs", json={"skus": ["NOPE"]})
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "sku_not_found"

    response = client.post("/api/v1/optimizations/jobs", json={"skus": ["S1"], "model_ids": ["prophet"]})
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "model_not_found"


def test_pause_resume_and_clear(engine: OptimizationEngine) -> None:
    client.post("/api/v1/optimizations/jobs", json={"skus": ["S1"], "methods": ["grid"]})

    paused = client.post("/api/v1/optimizations/queue/pause")
    assert paused.json()["paused"] is True

    cleared = client.post("/api/v1/optimizations/queue/clear")
    assert cleared.status_code == 200
    assert cleared.json() == {"removed": len(OPTIMIZABLE)}
    assert len(engine.queue) == 0

    resumed = client.post("/api/v1/optimizations/queue/resume")
    assert resumed.json()["paused"] is False


def test_cache_view_after_processing(engine: OptimizationEngine) -> None:
    client.post("/api/v1/optimizations/jobs", json={"skus": ["S1"]})
    processed = _drain(engine)
    assert processed == len(OPTIMIZABLE) * 2

    response = client.get("/api/v1/optimizations/cache/S1")
    assert response.status_code == 200
    view = response.json()
    assert view["data_hash"] == engine.data.digest_for("S1")
    assert set(view["entries"]) == OPTIMIZABLE
    entry = view["entries"]["moving_average"]
    assert entry["grid"] is not None and entry["ai"] is not None
    assert entry["manual"]["confidence"] == 70
    assert view["effective"]["moving_average"] == "ai"
    # models without tunable parameters fall back to manual
    assert view["effective"]["linear_trend"] == "manual"

    titles = [note["title"] for note in client.get("/api/v1/optimizations/notifications").json()]
    assert "Optimization Complete" in titles


def test_explicit_selection_and_manual_parameters(engine: OptimizationEngine) -> None:
    client.post("/api/v1/optimizations/jobs", json={"skus": ["S1"]})
    _drain(engine)

    chosen = client.put("/api/v1/optimizations/cache/S1/moving_average/selected", json={"method": "grid"})
    assert chosen.status_code == 200
    assert chosen.json()["selected"] == "grid"
    view = client.get("/api/v1/optimizations/cache/S1").json()
    assert view["effective"]["moving_average"] == "grid"

    saved = client.put(
        "/api/v1/optimizations/cache/S1/moving_average/manual",
        json={"parameters": {"window": 4}},
    )
    assert saved.status_code == 200
    assert saved.json()["parameters"] == {"window": 4.0}

    models = {m["id"]: m for m in client.get("/api/v1/models/S1").json()}
    assert models["moving_average"]["parameters"] == {"window": 4.0}
    assert models["moving_average"]["optimization_method"] == "manual"

    bad = client.put(
        "/api/v1/optimizations/cache/S1/moving_average/manual",
        json={"parameters": {"alpha": 0.5}},
    )
    assert bad.status_code == 400
    assert bad.json()["detail"]["error"] == "invalid_parameters"

    missing = client.put("/api/v1/optimizations/cache/S1/prophet/selected", json={"method": "ai"})
    assert missing.status_code == 404


def test_cache_view_unknown_sku(engine: OptimizationEngine) -> None:
    response = client.get("/api/v1/optimizations/cache/NOPE")
    assert response.status_code == 404


def test_breaker_trip_and_reenable(monkeypatch, tmp_path: Path) -> None:
    instance = _engine(tmp_path, ai=_broken_ai, threshold=1)
    instance.pause()
    monkeypatch.setattr(optimization_engine, "_ENGINE", instance)

    client.post("/api/v1/optimizations/jobs", json={"skus": ["S1"]})
    _drain(instance)

    status_body = client.get("/api/v1/optimizations/queue").json()
    assert status_body["ai_enabled"] is False
    assert all(item["method"] != "ai" for item in status_body["items"])
    titles = [note["title"] for note in client.get("/api/v1/optimizations/notifications").json()]
    assert titles.count("AI Optimization Disabled") == 1

    enabled = client.post("/api/v1/optimizations/ai/enable")
    assert enabled.status_code == 200
    assert enabled.json()["ai_enabled"] is True
    assert enabled.json()["ai_failure_count"] == 0

    last_id = client.get("/api/v1/optimizations/notifications").json()[-1]["id"]
    assert client.get("/api/v1/optimizations/notifications", params={"after": last_id}).json() == []


def test_metrics_expose_job_counters(engine: OptimizationEngine) -> None:
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "optimization_jobs_total" in response.text

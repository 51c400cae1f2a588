r"""backend/tests/test_data_api.py"""

from __future__ import annotations

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
from backend.app.models.schemas import OptimizationRecord  # noqa: E402
from backend.app.services import optimization_engine  # noqa: E402
from backend.app.services.optimization_engine import OptimizationEngine  # noqa: E402
from backend.app.services.sales_data import SalesDataStore  # noqa: E402

client = TestClient(app)


async def _no_ai(model, series, sku, business_context, api_key=None, enabled=True):
    return None


def _csv(rows: int = 6, skus: tuple[str, ...] = ("A", "B")) -> str:
    lines = ["sku,date,sales"]
    for sku in skus:
        for i in range(rows):
            lines.append(f"{sku},2024-{i + 1:02d}-01,{10 + i}")
    return "\n".join(lines) + "\n"


@pytest.fixture(autouse=True)
def _open_middleware(monkeypatch):
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_token", None, raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_per_minute", 0, raising=False)


@pytest.fixture()
def engine(monkeypatch, tmp_path: Path) -> OptimizationEngine:
    settings = Settings(
        state_dir=str(tmp_path / "state"),
        config_dir=str(tmp_path),
        data_dir=str(tmp_path / "data"),
        gemini_api_key=None,
    )
    instance = OptimizationEngine(
        settings=settings,
        optimization=OptimizationSettings(ai_enabled=False),
        data=SalesDataStore(),
        ai_search=_no_ai,
    )
    instance.pause()
    monkeypatch.setattr(optimization_engine, "_ENGINE", instance)
    return instance


def test_validate_reports_missing_data(engine: OptimizationEngine) -> None:
    response = client.get("/api/v1/data/validate")
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is False
    assert payload["checks"][0]["name"] == "data_loaded"


def test_upload_replaces_data_and_queues_grid_jobs(engine: OptimizationEngine, tmp_path: Path) -> None:
    response = client.post(
        "/api/v1/data/upload",
        files={"file": ("sales.csv", _csv(), "text/csv")},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["rows"] == 12
    assert body["skus"] == 2
    assert body["changed_skus"] == ["A", "B"]
    queued = body["jobs"]["queued"]
    assert {item["sku"] for item in queued} == {"A", "B"}
    assert {item["method"] for item in queued} == {"grid"}
    assert {item["reason"] for item in queued} == {"csv_upload"}
    assert (tmp_path / "data" / "sales.csv").exists()

    skus = client.get("/api/v1/data/skus").json()["skus"]
    assert skus == [{"sku": "A", "points": 6}, {"sku": "B", "points": 6}]

    checks = {c["name"]: c["ok"] for c in client.get("/api/v1/data/validate").json()["checks"]}
    assert checks == {
        "data_loaded": True,
        "min_points_per_sku": True,
        "non_negative_sales": True,
        "regular_spacing": True,
    }


def test_reupload_only_requeues_changed_skus(engine: OptimizationEngine) -> None:
    client.post("/api/v1/data/upload", files={"file": ("sales.csv", _csv(), "text/csv")})
    engine.clear_queue()

    changed = _csv().replace("B,2024-03-01,12", "B,2024-03-01,99")
    response = client.post("/api/v1/data/upload", files={"file": ("sales.csv", changed, "text/csv")})

    body = response.json()
    assert body["changed_skus"] == ["B"]
    assert {item["sku"] for item in body["jobs"]["queued"]} == {"B"}


def test_upload_rejects_bad_csv(engine: OptimizationEngine) -> None:
    response = client.post(
        "/api/v1/data/upload",
        files={"file": ("sales.csv", "item,when\nA,2024-01-01\n", "text/csv")},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_csv"
    assert engine.data.loaded is False


def test_point_edit_invalidates_cache_and_requeues(engine: OptimizationEngine) -> None:
    client.post("/api/v1/data/upload", files={"file": ("sales.csv", _csv(), "text/csv")})
    engine.clear_queue()
    digest = engine.data.digest_for("A")
    engine.store.set("A", "moving_average", "grid", OptimizationRecord(parameters={"window": 4}, data_hash=digest))

    response = client.put("/api/v1/data/A/points", json={"date": "2024-02-01", "value": 50})
    assert response.status_code == 200
    queued = response.json()["queued"]
    assert queued and {item["reason"] for item in queued} == {"manual_edit_data_cleaning"}
    assert engine.store.get("A", "moving_average", "grid") is None
    assert engine.data.digest_for("A") != digest

    unchanged = client.put("/api/v1/data/A/points", json={"date": "2024-02-01", "value": 50})
    assert unchanged.json() == {"queued": [], "skipped": []}


def test_point_edit_errors(engine: OptimizationEngine) -> None:
    client.post("/api/v1/data/upload", files={"file": ("sales.csv", _csv(), "text/csv")})

    missing = client.put("/api/v1/data/ZZZ/points", json={"date": "2024-02-01", "value": 5})
    assert missing.status_code == 404
    assert missing.json()["detail"]["error"] == "sku_not_found"

    negative = client.put("/api/v1/data/A/points", json={"date": "2024-02-01", "value": -1})
    assert negative.status_code == 422

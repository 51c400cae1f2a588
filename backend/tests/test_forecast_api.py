r"""backend/tests/test_forecast_api.py"""

from __future__ import annotations

import sys
from datetime import date
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
from backend.app.models import schemas  # noqa: E402
from backend.app.services import optimization_engine  # noqa: E402
from backend.app.services.optimization_engine import OptimizationEngine  # noqa: E402
from backend.app.services.sales_data import SalesDataStore  # noqa: E402

client = TestClient(app)


async def _no_ai(model, series, sku, business_context, api_key=None, enabled=True):
    return None


def _data() -> SalesDataStore:
    dates = pd.date_range("2022-01-01", periods=24, freq="MS")
    return SalesDataStore(
        pd.DataFrame({"sku": "ITEM_1", "date": dates, "sales": [float(30 + (i % 6) * 2) for i in range(24)]})
    )


def _install(monkeypatch, tmp_path: Path, data: SalesDataStore) -> OptimizationEngine:
    settings = Settings(
        state_dir=str(tmp_path / "state"),
        config_dir=str(tmp_path),
        data_dir=str(tmp_path / "data"),
        gemini_api_key=None,
    )
    engine = OptimizationEngine(
        settings=settings,
        optimization=OptimizationSettings(forecast_periods=6),
        data=data,
        ai_search=_no_ai,
        persist_data=False,
    )
    monkeypatch.setattr(optimization_engine, "_ENGINE", engine)
    return engine


@pytest.fixture(autouse=True)
def _open_middleware(monkeypatch):
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_token", None, raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_per_minute", 0, raising=False)


def test_forecast_api_returns_expected_payload(monkeypatch, tmp_path: Path) -> None:
    engine = _install(monkeypatch, tmp_path, _data())

    response = client.get("/api/v1/forecasts/ITEM_1", params={"periods": 3})
    assert response.status_code == 200

    payload = schemas.ForecastResponse.model_validate(response.json())
    assert payload.sku == "ITEM_1"
    assert payload.periods == 3
    assert payload.data_hash == engine.data.digest_for("ITEM_1")
    assert {m.model_id for m in payload.models} == {m.id for m in engine.catalogue()}
    for model in payload.models:
        assert [p.date for p in model.forecast] == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]


def test_forecast_defaults_to_configured_periods(monkeypatch, tmp_path: Path) -> None:
    _install(monkeypatch, tmp_path, _data())

    response = client.get("/api/v1/forecasts/ITEM_1")
    assert response.status_code == 200
    assert response.json()["periods"] == 6


def test_forecast_uses_cached_grid_parameters(monkeypatch, tmp_path: Path) -> None:
    engine = _install(monkeypatch, tmp_path, _data())
    digest = engine.data.digest_for("ITEM_1")
    engine.store.set(
        "ITEM_1",
        "moving_average",
        "grid",
        schemas.OptimizationRecord(parameters={"window": 6}, confidence=77, data_hash=digest),
    )

    payload = client.get("/api/v1/forecasts/ITEM_1", params={"periods": 2}).json()
    by_id = {m["model_id"]: m for m in payload["models"]}
    assert by_id["moving_average"]["method"] == "grid"
    assert by_id["moving_average"]["parameters"] == {"window": 6.0}
    assert by_id["moving_average"]["confidence"] == 77


def test_forecast_errors(monkeypatch, tmp_path: Path) -> None:
    _install(monkeypatch, tmp_path, _data())

    bad_periods = client.get("/api/v1/forecasts/ITEM_1", params={"periods": 0})
    assert bad_periods.status_code == 400
    assert bad_periods.json()["detail"]["error"] == "invalid_periods"

    unknown = client.get("/api/v1/forecasts/NOPE")
    assert unknown.status_code == 404
    assert unknown.json()["detail"]["error"] == "sku_not_found"

    _install(monkeypatch, tmp_path / "empty", SalesDataStore())
    no_data = client.get("/api/v1/forecasts/ITEM_1")
    assert no_data.status_code == 503
    assert no_data.json()["detail"]["error"] == "data_unavailable"


def test_model_catalogue_and_toggle(monkeypatch, tmp_path: Path) -> None:
    engine = _install(monkeypatch, tmp_path, _data())

    catalogue = client.get("/api/v1/models").json()
    assert [m["id"] for m in catalogue][:2] == ["moving_average", "exponential_smoothing"]
    assert all(m["optimized_parameters"] is None for m in catalogue)

    toggled = client.put("/api/v1/models/seasonal_naive/enabled", json={"enabled": False})
    assert toggled.status_code == 200
    assert toggled.json()["enabled"] is False

    payload = client.get("/api/v1/forecasts/ITEM_1", params={"periods": 2}).json()
    assert "seasonal_naive" not in {m["model_id"] for m in payload["models"]}
    assert engine.catalogue()[-1].enabled is False

    missing = client.put("/api/v1/models/prophet/enabled", json={"enabled": True})
    assert missing.status_code == 404


def test_sku_models_unknown_sku(monkeypatch, tmp_path: Path) -> None:
    _install(monkeypatch, tmp_path, _data())

    response = client.get("/api/v1/models/NOPE")
    assert response.status_code == 404

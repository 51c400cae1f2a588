"""frontend/pages/2_Forecasts.py

Streamlit page for per-SKU sales forecasts and optimization choices."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import altair as alt
import pandas as pd
import requests
import streamlit as st

from utils.api import api_request, error_detail

METHOD_OPTIONS = ["automatic", "ai", "grid", "manual"]


@st.cache_data(ttl=60)
def _get_skus(api_token: str = "") -> List[str]:
    try:
        return [row["sku"] for row in api_request("GET", "/data/skus", timeout=15)["skus"]]
    except requests.RequestException:
        return []


def _forecast_frame(payload: Dict[str, Any]) -> pd.DataFrame:
    """Flatten the per-model forecasts into one long frame."""

    rows: List[Dict[str, Any]] = []
    for model in payload.get("models", []):
        for point in model["forecast"]:
            rows.append({"model": model["model_id"], "method": model["method"], **point})
    df = pd.DataFrame(rows)
    if not df.empty:
        df["date"] = pd.to_datetime(df["date"], errors="coerce")
    return df


st.title("🔮 Forecasts")
st.caption("Each enabled model forecasts with the parameters of its effective optimization method.")

skus = _get_skus(st.session_state.get("api_token", ""))
if not skus:
    st.info("No sales data yet. Upload a CSV on the **Data** page.")
    st.stop()

with st.form(key="forecast_form", clear_on_submit=False):
    sku = st.selectbox("SKU", skus, index=skus.index(st.session_state.get("sku", skus[0])) if st.session_state.get("sku") in skus else 0)
    periods = st.slider("Periods ahead", min_value=1, max_value=120, value=12, step=1)
    st.form_submit_button("Get forecast")
st.session_state["sku"] = sku

payload: Optional[Dict[str, Any]] = None
try:
    with st.spinner("Fetching forecast from API…"):
        payload = api_request("GET", f"/forecasts/{sku}", params={"periods": int(periods)})
except requests.Timeout:
    st.error("The forecast request timed out. Please try again.")
except requests.RequestException as exc:
    st.error(f"API error: {error_detail(exc)}")

if payload:
    df = _forecast_frame(payload)
    if df.empty:
        st.warning("No enabled model produced a forecast.")
    else:
        chart = (
            alt.Chart(df)
            .mark_line()
            .encode(x="date:T", y="value:Q", color="model:N", tooltip=["model", "method", "date", "value"])
            .properties(height=340, title=f"Forecasts for {sku}")
        )
        st.altair_chart(chart, use_container_width=True)
        st.download_button(
            "Download CSV",
            df.to_csv(index=False).encode("utf-8"),
            file_name=f"forecast_{sku}_{periods}.csv",
            mime="text/csv",
        )

st.markdown("---")
st.subheader("Model parameters")

try:
    models = api_request("GET", f"/models/{sku}")
    cache = api_request("GET", f"/optimizations/cache/{sku}")
except requests.RequestException as exc:
    st.error(f"Could not load model state: {error_detail(exc)}")
    st.stop()

for model in models:
    entry = cache["entries"].get(model["id"], {})
    effective = cache["effective"].get(model["id"], "manual")
    header = f"{model['name']} · {effective}"
    if model.get("optimization_confidence") is not None:
        header += f" · {model['optimization_confidence']:.0f}% confidence"
    with st.expander(header, expanded=False):
        if not model["enabled"]:
            st.caption("Disabled models are not forecast.")
        if model.get("optimization_reasoning"):
            st.write(model["optimization_reasoning"])
        st.json({"parameters": model["parameters"], "optimized": model.get("optimized_parameters")})

        if not model["parameters"]:
            continue

        current = entry.get("selected") or "automatic"
        choice = st.selectbox(
            "Method",
            METHOD_OPTIONS,
            index=METHOD_OPTIONS.index(current),
            key=f"method::{sku}::{model['id']}",
        )
        if choice != current and st.button("Apply method", key=f"apply::{sku}::{model['id']}"):
            try:
                api_request(
                    "PUT",
                    f"/optimizations/cache/{sku}/{model['id']}/selected",
                    json={"method": None if choice == "automatic" else choice},
                )
                st.rerun()
            except requests.RequestException as exc:
                st.error(error_detail(exc))

        with st.form(key=f"manual::{sku}::{model['id']}"):
            edited = {
                name: st.number_input(name, value=float(value), key=f"p::{sku}::{model['id']}::{name}")
                for name, value in model["parameters"].items()
            }
            if st.form_submit_button("Save manual parameters"):
                try:
                    api_request("PUT", f"/optimizations/cache/{sku}/{model['id']}/manual", json={"parameters": edited})
                    st.rerun()
                except requests.RequestException as exc:
                    st.error(error_detail(exc))

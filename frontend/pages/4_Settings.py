"""
Settings page for the optimization business rules.

Values are read from and written to ``configs/settings.yaml`` through the
backend, which applies them to the running optimizer immediately.
"""

import requests
import streamlit as st

from utils.api import api_request, error_detail

st.title("⚙️ Settings")

try:
    settings_data = api_request("GET", "/configs/settings")
except requests.RequestException as exc:
    st.error(f"Settings unavailable: {error_detail(exc)}")
    st.stop()

st.subheader("Current settings (settings.yaml)")
st.json(settings_data)

LEVELS = ["low", "medium", "high"]
HORIZONS = ["short", "medium", "long"]
FREQUENCIES = ["daily", "weekly", "monthly"]
context = settings_data.get("business_context", {})
weights = settings_data.get("metric_weights", {})

st.markdown("---")
with st.form("edit_settings"):
    col1, col2, col3 = st.columns(3)
    with col1:
        ai_enabled = st.checkbox("AI optimization enabled", value=bool(settings_data.get("ai_enabled", True)))
        threshold = st.number_input(
            "AI failures before disabling",
            value=int(settings_data.get("ai_failure_threshold", 5)),
            min_value=1,
            max_value=100,
            step=1,
        )
        ttl = st.number_input(
            "Cache lifetime (hours)",
            value=float(settings_data.get("cache_ttl_hours", 24.0)),
            min_value=1.0,
            step=1.0,
        )
        periods = st.number_input(
            "Default forecast periods",
            value=int(settings_data.get("forecast_periods", 12)),
            min_value=1,
            max_value=120,
            step=1,
        )
    with col2:
        st.markdown("**Grid search metric weights (%)**")
        mape = st.slider("MAPE", 0, 100, int(weights.get("mape", 40)))
        rmse = st.slider("RMSE", 0, 100, int(weights.get("rmse", 30)))
        mae = st.slider("MAE", 0, 100, int(weights.get("mae", 20)))
        accuracy = st.slider("Accuracy", 0, 100, int(weights.get("accuracy", 10)))
    with col3:
        st.markdown("**Business context for AI search**")
        cost = st.selectbox("Cost of error", LEVELS, index=LEVELS.index(context.get("cost_of_error", "medium")))
        horizon = st.selectbox(
            "Forecast horizon", HORIZONS, index=HORIZONS.index(context.get("forecast_horizon", "medium"))
        )
        frequency = st.selectbox(
            "Update frequency", FREQUENCIES, index=FREQUENCIES.index(context.get("update_frequency", "weekly"))
        )
        interpretability = st.selectbox(
            "Interpretability needs", LEVELS, index=LEVELS.index(context.get("interpretability_needs", "medium"))
        )

    submitted = st.form_submit_button("Save")
    if submitted:
        payload = {
            "ai_enabled": ai_enabled,
            "ai_failure_threshold": int(threshold),
            "cache_ttl_hours": float(ttl),
            "forecast_periods": int(periods),
            "metric_weights": {"mape": mape, "rmse": rmse, "mae": mae, "accuracy": accuracy},
            "business_context": {
                "cost_of_error": cost,
                "forecast_horizon": horizon,
                "update_frequency": frequency,
                "interpretability_needs": interpretability,
            },
        }
        try:
            api_request("PUT", "/configs/settings", json=payload)
            st.success("Saved to backend.")
        except requests.RequestException as exc:
            st.error(f"Backend did not accept updates: {error_detail(exc)}")

st.markdown("---")
st.subheader("Models")
try:
    catalogue = api_request("GET", "/models")
except requests.RequestException:
    catalogue = []
for model in catalogue:
    enabled = st.checkbox(model["name"], value=model["enabled"], key=f"enabled::{model['id']}", help=model["description"])
    if enabled != model["enabled"]:
        try:
            api_request("PUT", f"/models/{model['id']}/enabled", json={"enabled": enabled})
        except requests.RequestException as exc:
            st.error(error_detail(exc))

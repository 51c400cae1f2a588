r"""frontend/app.py

Streamlit multipage application for the Sales Forecast Optimizer.

This file configures global options and provides a simple welcome page.
Individual pages live in the ``pages/`` subdirectory; Streamlit will
automatically load them.  To run the app locally use:

```bash
streamlit run app.py
```
"""

import requests
import streamlit as st

from utils.api import API_URL, get_headers

st.set_page_config(page_title="Sales Forecast Optimizer", layout="wide")

st.title("Sales Forecast Optimizer")

health = None
try:
    response = requests.get(f"{API_URL}/health", headers=get_headers(), timeout=5)
    if response.ok:
        health = response.json()
except requests.RequestException:
    health = None

status = "✅ healthy" if health else "⚠️ not reachable"
st.caption(f"Backend API: {status} · {API_URL}  ·  Set `API_URL` if needed.")

if health:
    c1, c2, c3 = st.columns(3)
    c1.metric("Sales data", "loaded" if health.get("data_loaded") else "missing")
    c2.metric("AI optimization", "enabled" if health.get("ai_enabled") else "disabled")
    c3.metric("Jobs queued", health.get("queue_size", 0))

with st.sidebar.expander("Auth", expanded=False):
    default_token = st.session_state.get("api_token", "")
    token = st.text_input("API token", value=default_token, type="password")
    st.session_state["api_token"] = token

st.markdown(
    """
    Upload a `sku,date,sales` CSV on the **Data** page.  Every SKU whose
    history changed is queued for Grid Search (and AI search when a Gemini
    key is configured).  The **Forecasts** page shows each model's forecast
    with the parameters chosen by the best available optimization, and lets
    you pin a method or save your own parameters.  Follow progress on the
    **Optimization Queue** page and adjust business rules under **Settings**.
    """
)

"""
Data page: upload the sales history and apply cleaning edits.

Uploading a new CSV, or editing a single period, invalidates the cached
optimization results of the affected SKUs; the backend re-queues them
automatically.
"""

from datetime import date

import pandas as pd
import requests
import streamlit as st

from utils.api import api_request, error_detail

st.title("📁 Data")

st.write(
    "Upload a long-format CSV with `sku`, `date` and `sales` columns. "
    "SKUs whose history changed are re-optimized in the background."
)

uploaded = st.file_uploader("Sales CSV", type=["csv"])
if uploaded is not None and st.button("Upload"):
    try:
        with st.spinner("Uploading…"):
            result = api_request(
                "POST",
                "/data/upload",
                files={"file": (uploaded.name, uploaded.getvalue(), "text/csv")},
                timeout=120,
            )
        st.success(
            f"Loaded {result['rows']} rows for {result['skus']} SKUs; "
            f"{len(result['changed_skus'])} changed, {len(result['jobs']['queued'])} jobs queued."
        )
    except requests.RequestException as exc:
        st.error(f"Upload failed: {error_detail(exc)}")

st.markdown("---")
st.subheader("Validation")
try:
    report = api_request("GET", "/data/validate")
    st.table(pd.DataFrame(report["checks"]))
except requests.RequestException as exc:
    report = None
    st.info(f"Validation unavailable: {error_detail(exc)}")

try:
    skus = api_request("GET", "/data/skus")["skus"]
except requests.RequestException:
    skus = []

if skus:
    st.subheader("SKUs")
    st.dataframe(pd.DataFrame(skus), use_container_width=True)

    st.subheader("Cleaning edit")
    with st.form("edit_point"):
        sku = st.selectbox("SKU", [row["sku"] for row in skus])
        when = st.date_input("Period", value=date.today())
        value = st.number_input("Sales", min_value=0.0, step=1.0)
        submitted = st.form_submit_button("Save value")
    if submitted:
        try:
            jobs = api_request(
                "PUT",
                f"/data/{sku}/points",
                json={"date": when.isoformat(), "value": value},
            )
            if jobs["queued"]:
                st.success(f"Saved. {len(jobs['queued'])} optimization jobs queued for {sku}.")
            else:
                st.info("Saved. The series did not change, nothing to re-optimize.")
        except requests.RequestException as exc:
            st.error(f"Edit failed: {error_detail(exc)}")

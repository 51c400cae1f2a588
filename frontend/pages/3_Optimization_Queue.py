"""frontend/pages/3_Optimization_Queue.py

Queue status, queue controls and optimization notifications."""

from __future__ import annotations

from datetime import datetime

import pandas as pd
import requests
import streamlit as st

from utils.api import api_request, error_detail

st.title("🧮 Optimization Queue")


def _status() -> dict | None:
    try:
        return api_request("GET", "/optimizations/queue")
    except requests.RequestException as exc:
        st.error(f"Queue status unavailable: {error_detail(exc)}")
        return None


status = _status()
if status:
    c1, c2, c3, c4, c5 = st.columns(5)
    c1.metric("Queued", status["queued"])
    c2.metric("Running", status["active"])
    c3.metric("Completed", status["completed"])
    c4.metric("Failed", status["failed"])
    c5.metric("Skipped", status["skipped"])

    if status["ai_enabled"]:
        st.caption(f"AI optimization enabled · consecutive failures: {status['ai_failure_count']}")
    else:
        st.warning("AI optimization is disabled. Only Grid Search results are used.")
        if st.button("Re-enable AI optimization"):
            try:
                api_request("POST", "/optimizations/ai/enable")
                st.rerun()
            except requests.RequestException as exc:
                st.error(error_detail(exc))

    b1, b2, b3, b4 = st.columns(4)
    actions = {
        "Optimize all": ("POST", "/optimizations/jobs", {"json": {}}),
        "Pause" if not status["paused"] else "Resume": (
            "POST",
            "/optimizations/queue/pause" if not status["paused"] else "/optimizations/queue/resume",
            {},
        ),
        "Clear queue": ("POST", "/optimizations/queue/clear", {}),
        "Refresh": None,
    }
    for column, (label, action) in zip((b1, b2, b3, b4), actions.items()):
        if column.button(label):
            if action is not None:
                method, path, kwargs = action
                try:
                    api_request(method, path, **kwargs)
                except requests.RequestException as exc:
                    st.error(error_detail(exc))
            st.rerun()

    if status["items"]:
        items = pd.DataFrame(status["items"])
        items["timestamp"] = pd.to_datetime(items["timestamp"], unit="s")
        st.dataframe(items[["sku", "model_id", "method", "reason", "timestamp"]], use_container_width=True)
    else:
        st.info("The queue is empty.")

st.markdown("---")
st.subheader("Notifications")
last_seen = int(st.session_state.get("last_notification_id", 0))
try:
    fresh = api_request("GET", "/optimizations/notifications", params={"after": last_seen})
except requests.RequestException:
    fresh = []
for note in fresh:
    icon = "⚠️" if note["variant"] == "destructive" else "✅"
    st.toast(f"{note['title']}: {note['description']}", icon=icon)
if fresh:
    st.session_state["last_notification_id"] = fresh[-1]["id"]

try:
    history = api_request("GET", "/optimizations/notifications")
except requests.RequestException:
    history = []
for note in reversed(history[-20:]):
    when = datetime.fromtimestamp(note["timestamp"]).strftime("%H:%M:%S")
    st.write(f"`{when}` **{note['title']}** {note['description']}")

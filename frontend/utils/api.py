r"""frontend\utils\api.py"""

import os
from typing import Any, Optional

import requests
import streamlit as st

API_URL = os.getenv("API_URL", "http://localhost:8000/api/v1")


def get_api_token() -> str:
    """Return the API token from session state or the environment."""

    return (st.session_state.get("api_token") or os.getenv("API_TOKEN", "")).strip()


def get_headers(token: Optional[str] = None) -> dict:
    """Return default headers for API requests.

    If an API token is present in Streamlit's session state or the
    ``API_TOKEN`` environment variable, include it as a bearer token in the
    ``Authorization`` header.

    Parameters
    ----------
    token:
        Optional explicit token to use. When ``None`` (the default), the token
        is looked up via :func:`get_api_token` so callers can decide whether the
        token should influence cache keys.
    """

    resolved_token = token.strip() if isinstance(token, str) else get_api_token()
    return {"Authorization": f"Bearer {resolved_token}"} if resolved_token else {}


def api_request(method: str, path: str, timeout: float = 30, **kwargs: Any) -> Any:
    """Call the backend and return the decoded JSON body.

    Raises ``requests.HTTPError`` for non-2xx responses so pages can show the
    ``detail`` payload.
    """

    response = requests.request(
        method,
        f"{API_URL}{path}",
        headers=get_headers(),
        timeout=timeout,
        **kwargs,
    )
    response.raise_for_status()
    return response.json() if response.content else None


def error_detail(exc: Exception) -> str:
    """Best-effort human message for a failed request."""

    response = getattr(exc, "response", None)
    if response is None:
        return str(exc)
    try:
        detail = response.json().get("detail")
    except ValueError:
        return response.text or str(exc)
    if isinstance(detail, dict):
        return detail.get("message") or str(detail)
    return str(detail)

"""
Application configuration utilities.

This module defines the ``Settings`` class used throughout the service for
environment variables and provides helper functions to load the YAML file
holding the optimization rules (failure threshold, cache lifetime, scoring
weights and business context).
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration loaded from environment variables or a .env file."""

    # API server configuration
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # GEMINI API key (optional; required for AI parameter search)
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")

    # Where the JSON state slots (cache, queue, breaker) live
    state_dir: str = os.getenv("STATE_DIR", os.path.join("data", "state"))
    config_dir: str = os.getenv("CONFIG_DIR", "configs")
    data_dir: str = os.getenv("DATA_DIR", "data")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return a cached instance of ``Settings``.

    Using a cache ensures that environment variables are only read once.
    """
    return Settings()


def load_yaml(file_path: str) -> dict:
    """Load a YAML file from the given path and return its contents.

    If the file does not exist, an empty dictionary is returned.
    """
    if not os.path.exists(file_path):
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


class MetricWeights(BaseModel):
    """Relative weight (percent) of each validation metric in the grid score."""

    mape: float = Field(40.0, ge=0.0, le=100.0)
    rmse: float = Field(30.0, ge=0.0, le=100.0)
    mae: float = Field(20.0, ge=0.0, le=100.0)
    accuracy: float = Field(10.0, ge=0.0, le=100.0)


class BusinessContext(BaseModel):
    """Planning context forwarded to the AI parameter search."""

    cost_of_error: Literal["low", "medium", "high"] = "medium"
    forecast_horizon: Literal["short", "medium", "long"] = "medium"
    update_frequency: Literal["daily", "weekly", "monthly"] = "weekly"
    interpretability_needs: Literal["low", "medium", "high"] = "medium"


class OptimizationSettings(BaseModel):
    """Business rules for the optimization engine (``configs/settings.yaml``)."""

    ai_enabled: bool = True
    ai_failure_threshold: int = Field(5, ge=1)
    cache_ttl_hours: float = Field(24.0, gt=0.0)
    forecast_periods: int = Field(12, ge=1, le=120)
    metric_weights: MetricWeights = Field(default_factory=MetricWeights)
    business_context: BusinessContext = Field(default_factory=BusinessContext)


def load_optimization_settings(config_dir: str | None = None) -> OptimizationSettings:
    """Read ``settings.yaml`` from ``config_dir`` and return typed settings.

    Missing keys fall back to their defaults; unknown keys are ignored.
    """
    root = config_dir or get_settings().config_dir
    raw = load_yaml(os.path.join(root, "settings.yaml"))
    known = {key: raw[key] for key in OptimizationSettings.model_fields if key in raw}
    return OptimizationSettings.model_validate(known)

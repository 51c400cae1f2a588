"""Domain exceptions raised by the optimization services."""

from __future__ import annotations


class DataUnavailableError(LookupError):
    """The SKU series or model configuration is missing at processing time."""

    def __init__(self, sku: str, model_id: str | None = None, message: str | None = None) -> None:
        self.sku = sku
        self.model_id = model_id
        super().__init__(message or f"No cleaned data available for SKU '{sku}'")


class SearchFailedError(RuntimeError):
    """A parameter search collaborator threw or produced an unusable result."""

    def __init__(self, method: str, sku: str, model_id: str, reason: str) -> None:
        self.method = method
        self.sku = sku
        self.model_id = model_id
        super().__init__(f"{method} search failed for {sku}:{model_id}: {reason}")

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from querybridge.datasets.schemas import Dataset
from querybridge.shared.schemas import QueryResult


class FanoutItem(BaseModel):
    """One dashboard tile to fetch: an inline dataset or a dataset id, plus its filters."""

    key: str
    dataset: Optional[Dataset] = None
    dataset_id: Optional[str] = None
    filter_context: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _needs_dataset(self) -> "FanoutItem":
        if self.dataset is None and not self.dataset_id:
            raise ValueError("either dataset or dataset_id is required")
        return self


class FanoutOutcome(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str
    result: Optional[QueryResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = Field(default=None, alias="errorCode")

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_contract(self) -> dict:
        payload: dict[str, Any] = {"key": self.key}
        if self.result is not None:
            payload.update(self.result.to_contract())
        if self.error is not None:
            payload["error"] = self.error
            payload["errorCode"] = self.error_code
        return payload

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

from unleashed_sync.services.credentials import clean_domain


class SyncRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    domain: str
    dry_run: bool = False
    strategy: Literal["direct", "queue", "bulk", "auto"] | None = None
    background: bool = False

    @field_validator("domain", mode="before")
    @classmethod
    def _normalize_domain(cls, value):
        if not isinstance(value, str):
            raise ValueError("domain must be a string")
        cleaned = clean_domain(value)
        if not cleaned:
            raise ValueError("domain is required")
        return cleaned

    @field_validator("strategy", mode="before")
    @classmethod
    def _normalize_strategy(cls, value):
        if isinstance(value, str):
            return value.strip().lower() or None
        return value


class SyncQueuedResponse(BaseModel):
    status: Literal["queued"] = "queued"
    domain: str
    task_id: str

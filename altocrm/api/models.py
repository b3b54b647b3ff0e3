"""Pydantic request models for the AltoCRM API."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def is_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value or ""))


# Values arrive as JSON scalars; the DAL normalizes them per field type.
# Strict types keep JSON booleans from being coerced to 1 or 0.
FieldValue = StrictStr | StrictInt | StrictFloat | None


# ─── Leads ───────────────────────────────────────────────────────────────


class CreateLeadRequest(BaseModel):
    values: dict[str, FieldValue] = Field(default_factory=dict)
    stage: str = "new"
    source: str = "manual"


class UpdateLeadRequest(BaseModel):
    values: dict[str, FieldValue]
    source: str = "manual"


class MoveStageRequest(BaseModel):
    stage: str


# ─── Fields ──────────────────────────────────────────────────────────────


class CreateFieldRequest(BaseModel):
    key: str
    label: str
    type: str = "text"
    editable: bool = True
    enrichable: bool = False
    position: int | None = None


class UpdateFieldRequest(BaseModel):
    label: str | None = None
    type: str | None = None
    editable: bool | None = None
    enrichable: bool | None = None
    position: int | None = None


# ─── Jobs ────────────────────────────────────────────────────────────────


class EnqueueJobRequest(BaseModel):
    jobType: str
    payload: dict[str, Any] = Field(default_factory=dict)

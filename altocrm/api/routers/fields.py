"""Lead field metadata routes."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from altocrm.api.models import CreateFieldRequest, UpdateFieldRequest
from altocrm.crm.fields import create_field, list_fields, update_field

router = APIRouter(prefix="/api/fields", tags=["fields"])


@router.get("")
async def api_list_fields():
    return {"fields": list_fields()}


@router.post("", status_code=201)
async def api_create_field(body: CreateFieldRequest):
    return create_field(
        body.key,
        body.label,
        field_type=body.type,
        editable=body.editable,
        enrichable=body.enrichable,
        position=body.position,
    )


@router.patch("/{key}")
async def api_update_field(key: str, body: UpdateFieldRequest):
    result = update_field(
        key,
        label=body.label,
        field_type=body.type,
        editable=body.editable,
        enrichable=body.enrichable,
        position=body.position,
    )
    if result is None:
        return JSONResponse({"error": "field not found"}, status_code=404)
    return result

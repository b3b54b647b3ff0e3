"""Lead CRUD, stage moves, field locks, history and undo."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from altocrm.api.deps import get_actor
from altocrm.api.models import CreateLeadRequest, MoveStageRequest, UpdateLeadRequest, is_uuid
from altocrm.audit.logger import list_changes, undo_last
from altocrm.crm.dal import (
    create_lead,
    delete_lead,
    get_lead,
    list_leads,
    lock_field,
    move_stage,
    restore_lead,
    unlock_field,
    update_lead,
)

router = APIRouter(prefix="/api/leads", tags=["leads"])


def _not_found() -> JSONResponse:
    return JSONResponse({"error": "lead not found"}, status_code=404)


@router.get("")
async def api_list_leads(
    search: str | None = Query(None),
    stage: str | None = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
    includeDeleted: bool = Query(False),
):
    result = list_leads(search, stage, limit, offset, include_deleted=includeDeleted)
    return {"leads": result, "count": len(result)}


@router.post("", status_code=201)
async def api_create_lead(body: CreateLeadRequest, actor: str = Depends(get_actor)):
    return create_lead(body.values, stage=body.stage, source=body.source, actor=actor)


@router.get("/{lead_id}")
async def api_get_lead(lead_id: str, includeDeleted: bool = Query(False)):
    if not is_uuid(lead_id):
        return _not_found()
    result = get_lead(lead_id, include_deleted=includeDeleted)
    if not result:
        return _not_found()
    return result


@router.patch("/{lead_id}")
async def api_update_lead(lead_id: str, body: UpdateLeadRequest, actor: str = Depends(get_actor)):
    if not is_uuid(lead_id):
        return _not_found()
    if not body.values:
        return JSONResponse({"error": "values required"}, status_code=400)
    result = update_lead(lead_id, body.values, source=body.source, actor=actor)
    return {**result, "lead": get_lead(lead_id)}


@router.delete("/{lead_id}")
async def api_delete_lead(lead_id: str, actor: str = Depends(get_actor)):
    if is_uuid(lead_id) and delete_lead(lead_id, actor=actor):
        return {"success": True, "id": lead_id}
    return _not_found()


@router.post("/{lead_id}/restore")
async def api_restore_lead(lead_id: str, actor: str = Depends(get_actor)):
    if is_uuid(lead_id) and restore_lead(lead_id, actor=actor):
        return {"success": True, "id": lead_id}
    return JSONResponse({"error": "deleted lead not found"}, status_code=404)


@router.post("/{lead_id}/stage")
async def api_move_stage(lead_id: str, body: MoveStageRequest, actor: str = Depends(get_actor)):
    if not is_uuid(lead_id):
        return _not_found()
    moved = move_stage(lead_id, body.stage, actor=actor)
    return {"success": True, "id": lead_id, "stage": body.stage, "moved": moved}


@router.post("/{lead_id}/locks/{field_key}")
async def api_lock_field(lead_id: str, field_key: str, actor: str = Depends(get_actor)):
    if not is_uuid(lead_id):
        return _not_found()
    changed = lock_field(lead_id, field_key, actor=actor)
    return {"success": True, "field": field_key, "locked": True, "changed": changed}


@router.delete("/{lead_id}/locks/{field_key}")
async def api_unlock_field(lead_id: str, field_key: str, actor: str = Depends(get_actor)):
    if not is_uuid(lead_id):
        return _not_found()
    changed = unlock_field(lead_id, field_key, actor=actor)
    return {"success": True, "field": field_key, "locked": False, "changed": changed}


@router.get("/{lead_id}/history")
async def api_lead_history(
    lead_id: str,
    limit: int = Query(50),
    includeUndone: bool = Query(True),
):
    if not is_uuid(lead_id):
        return _not_found()
    changes = list_changes(lead_id, limit=limit, include_undone=includeUndone)
    return {"changes": changes, "count": len(changes)}


@router.post("/{lead_id}/undo")
async def api_undo(lead_id: str, actor: str = Depends(get_actor)):
    if not is_uuid(lead_id):
        return _not_found()
    reverted = undo_last(lead_id, actor=actor)
    if reverted is None:
        return JSONResponse({"error": "nothing to undo"}, status_code=409)
    return {"success": True, "reverted": reverted, "lead": get_lead(lead_id)}

"""Pipeline kanban board."""

from __future__ import annotations

from fastapi import APIRouter, Query

from altocrm.crm.dal import pipeline_board
from altocrm.crm.validation import PIPELINE_STAGES

router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])


@router.get("")
async def api_pipeline_board(limit: int = Query(100)):
    columns = pipeline_board(limit_per_stage=limit)
    return {"stages": list(PIPELINE_STAGES), "columns": columns}

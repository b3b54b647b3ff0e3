"""
CRM Data Access Layer — PostgreSQL CRUD for leads.

A lead is a ``crm_leads`` row (identity, pipeline stage, soft delete) plus its
``crm_lead_values`` rows, one per field. Every value write passes through
``altocrm.crm.locks.apply_field_write`` and is audit-logged in the same
transaction. Deletes are soft (``deleted_at``) until purged.

Usage:
    from altocrm.crm.dal import create_lead, list_leads, move_stage

    lead = create_lead({"full_name": "Jane Smith", "email": "jane@example.com"})
    move_stage(lead["id"], "contacted", actor="jane")
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from altocrm.audit.logger import log_event, record_change
from altocrm.crm.errors import InvalidValueError, LeadNotFoundError, UnknownFieldError
from altocrm.crm.fields import fields_by_key
from altocrm.crm.locks import apply_field_write, set_lock
from altocrm.crm.models import lead_to_dict
from altocrm.crm.validation import PIPELINE_STAGES, normalize_value, validate_stage
from altocrm.db.connection import get_cursor

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


def _require_lead(cur, lead_id: str, *, for_update: bool = False) -> dict:
    """Fetch a live lead row on an open cursor or raise LeadNotFoundError."""
    query = "SELECT * FROM crm_leads WHERE id = %s AND deleted_at IS NULL"
    if for_update:
        query += " FOR UPDATE"
    cur.execute(query, (lead_id,))
    row = cur.fetchone()
    if row is None:
        raise LeadNotFoundError(lead_id)
    return row


def _values_for(cur, lead_ids: list) -> dict[str, list[dict]]:
    """Load value rows for many leads at once, grouped by lead id, in field order."""
    if not lead_ids:
        return {}
    cur.execute(
        """
        SELECT v.lead_id, v.field_key, v.value, v.source, v.locked, v.updated_at
        FROM crm_lead_values v
        JOIN crm_fields f ON f.key = v.field_key
        WHERE v.lead_id = ANY(%s::uuid[])
        ORDER BY f.position, v.field_key
    """,
        ([str(i) for i in lead_ids],),
    )
    grouped: dict[str, list[dict]] = {}
    for r in cur.fetchall():
        grouped.setdefault(str(r["lead_id"]), []).append(r)
    return grouped


def _prepare_values(fields: dict[str, dict], values: dict[str, Any]) -> dict[str, str | None]:
    """Reject unknown keys and normalize every value by its field type."""
    unknown = sorted(set(values) - set(fields))
    if unknown:
        raise UnknownFieldError(", ".join(unknown))
    return {key: normalize_value(fields[key]["field_type"], v) for key, v in values.items()}


def _write_values(
    cur, lead_id: str, fields: dict[str, dict], prepared: dict[str, str | None], source: str, actor: str
) -> tuple[list[str], dict[str, str]]:
    applied: list[str] = []
    skipped: dict[str, str] = {}
    for key, value in prepared.items():
        reason = apply_field_write(cur, lead_id, fields[key], value, source, actor)
        if reason:
            skipped[key] = reason
        else:
            applied.append(key)
    return applied, skipped


# ─── Leads ───────────────────────────────────────────────────────────────


def create_lead(
    values: dict[str, Any] | None = None,
    stage: str = "new",
    source: str = "manual",
    actor: str = "system",
) -> dict:
    """Create a lead with initial values. Returns the lead dict."""
    valid, reason = validate_stage(stage)
    if not valid:
        raise InvalidValueError(reason)

    lead_id = str(uuid.uuid4())
    with get_cursor() as cur:
        fields = fields_by_key(cur)
        prepared = _prepare_values(fields, values or {})
        cur.execute(
            "INSERT INTO crm_leads (id, stage) VALUES (%s, %s)",
            (lead_id, stage),
        )
        record_change(cur, lead_id, None, "create", new_value=stage, actor=actor)
        applied, skipped = _write_values(cur, lead_id, fields, prepared, source, actor)

    if skipped:
        logger.info("Lead %s created with skipped fields: %s", lead_id, skipped)
    logger.info("Created lead %s (%d values, stage %s)", lead_id, len(applied), stage)
    return get_lead(lead_id)


def get_lead(lead_id: str, include_deleted: bool = False) -> dict | None:
    """Get a lead by ID with all of its values."""
    query = "SELECT * FROM crm_leads WHERE id = %s"
    if not include_deleted:
        query += " AND deleted_at IS NULL"

    with get_cursor() as cur:
        cur.execute(query, (lead_id,))
        row = cur.fetchone()
        if row is None:
            return None
        values = _values_for(cur, [row["id"]])
    return lead_to_dict(row, values.get(str(row["id"]), []))


def list_leads(
    search: str | None = None,
    stage: str | None = None,
    limit: int = 50,
    offset: int = 0,
    include_deleted: bool = False,
) -> list[dict]:
    """List leads, newest first. ``search`` matches any field value (ILIKE)."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    query = "SELECT l.* FROM crm_leads l WHERE 1=1"
    params: list[Any] = []

    if not include_deleted:
        query += " AND l.deleted_at IS NULL"
    if stage:
        query += " AND l.stage = %s"
        params.append(stage)
    if search:
        query += (
            " AND EXISTS (SELECT 1 FROM crm_lead_values v"
            " WHERE v.lead_id = l.id AND v.value ILIKE %s)"
        )
        params.append(f"%{search}%")

    query += " ORDER BY l.created_at DESC LIMIT %s OFFSET %s"
    params.extend([limit, max(offset, 0)])

    with get_cursor() as cur:
        cur.execute(query, params)
        rows = cur.fetchall()
        values = _values_for(cur, [r["id"] for r in rows])
    return [lead_to_dict(r, values.get(str(r["id"]), [])) for r in rows]


def update_lead(
    lead_id: str,
    values: dict[str, Any],
    source: str = "manual",
    actor: str = "system",
) -> dict:
    """Write several values in one transaction.

    Returns {"id", "applied": [keys], "skipped": {key: reason}}. A locked or
    non-editable field raises and rolls back the whole update.
    """
    with get_cursor() as cur:
        _require_lead(cur, lead_id, for_update=True)
        fields = fields_by_key(cur)
        prepared = _prepare_values(fields, values)
        applied, skipped = _write_values(cur, lead_id, fields, prepared, source, actor)
        if applied:
            cur.execute("UPDATE crm_leads SET updated_at = NOW() WHERE id = %s", (lead_id,))

    if applied:
        logger.info("Updated lead %s (%s): %s", lead_id, source, ", ".join(applied))
    return {"id": lead_id, "applied": applied, "skipped": skipped}


def set_field_value(
    lead_id: str,
    field_key: str,
    value: Any,
    source: str = "manual",
    actor: str = "system",
) -> str | None:
    """Write a single value. Returns the skip reason, or None when written."""
    result = update_lead(lead_id, {field_key: value}, source=source, actor=actor)
    return result["skipped"].get(field_key)


def delete_lead(lead_id: str, actor: str = "system") -> bool:
    """Soft-delete a lead."""
    with get_cursor() as cur:
        cur.execute(
            "UPDATE crm_leads SET deleted_at = NOW(), updated_at = NOW() "
            "WHERE id = %s AND deleted_at IS NULL",
            (lead_id,),
        )
        ok: bool = cur.rowcount > 0
        if ok:
            record_change(cur, lead_id, None, "delete", actor=actor)

    if ok:
        log_event("crm.delete", f"delete lead {lead_id}", actor=actor, target=f"lead:{lead_id}")
    return ok


def restore_lead(lead_id: str, actor: str = "system") -> bool:
    """Undo a soft delete."""
    with get_cursor() as cur:
        cur.execute(
            "UPDATE crm_leads SET deleted_at = NULL, updated_at = NOW() "
            "WHERE id = %s AND deleted_at IS NOT NULL",
            (lead_id,),
        )
        ok: bool = cur.rowcount > 0
        if ok:
            record_change(cur, lead_id, None, "restore", actor=actor)
    return ok


def purge_deleted_leads(older_than_days: int) -> int:
    """Hard-delete leads soft-deleted more than N days ago. Values and history cascade."""
    with get_cursor() as cur:
        cur.execute(
            """
            DELETE FROM crm_leads
            WHERE deleted_at IS NOT NULL
              AND deleted_at < NOW() - make_interval(days => %s)
        """,
            (older_than_days,),
        )
        count: int = cur.rowcount

    if count:
        logger.info("Purged %d deleted leads older than %d days", count, older_than_days)
        log_event(
            "crm.purge",
            f"purged {count} leads",
            details={"older_than_days": older_than_days, "count": count},
        )
    return count


# ─── Pipeline ────────────────────────────────────────────────────────────


def move_stage(lead_id: str, stage: str, actor: str = "system") -> bool:
    """Move a lead to another pipeline stage. Returns False if already there."""
    valid, reason = validate_stage(stage)
    if not valid:
        raise InvalidValueError(reason)

    with get_cursor() as cur:
        row = _require_lead(cur, lead_id, for_update=True)
        if row["stage"] == stage:
            return False
        cur.execute(
            "UPDATE crm_leads SET stage = %s, updated_at = NOW() WHERE id = %s",
            (stage, lead_id),
        )
        record_change(
            cur, lead_id, "stage", "stage", old_value=row["stage"], new_value=stage, actor=actor
        )

    logger.info("Lead %s moved %s -> %s by %s", lead_id, row["stage"], stage, actor)
    return True


def pipeline_board(limit_per_stage: int = 100) -> list[dict]:
    """Kanban view: every stage in order, with its total count and newest leads."""
    with get_cursor() as cur:
        cur.execute(
            "SELECT stage, COUNT(*) AS count FROM crm_leads "
            "WHERE deleted_at IS NULL GROUP BY stage"
        )
        counts = {r["stage"]: r["count"] for r in cur.fetchall()}

        cur.execute(
            """
            SELECT * FROM (
                SELECT l.*,
                       ROW_NUMBER() OVER (PARTITION BY l.stage ORDER BY l.updated_at DESC) AS rn
                FROM crm_leads l
                WHERE l.deleted_at IS NULL
            ) ranked
            WHERE rn <= %s
            ORDER BY stage, rn
        """,
            (limit_per_stage,),
        )
        rows = cur.fetchall()
        values = _values_for(cur, [r["id"] for r in rows])

    columns: dict[str, list[dict]] = {stage: [] for stage in PIPELINE_STAGES}
    for r in rows:
        # Stages outside the current vocabulary still get a column, after the known ones
        columns.setdefault(r["stage"], []).append(lead_to_dict(r, values.get(str(r["id"]), [])))

    return [
        {"stage": stage, "count": counts.get(stage, 0), "leads": leads}
        for stage, leads in columns.items()
    ]


# ─── Locks ───────────────────────────────────────────────────────────────


def _toggle_lock(lead_id: str, field_key: str, locked: bool, actor: str) -> bool:
    with get_cursor() as cur:
        _require_lead(cur, lead_id)
        if field_key not in fields_by_key(cur):
            raise UnknownFieldError(field_key)
        changed = set_lock(cur, lead_id, field_key, locked, actor)

    if changed:
        logger.info("%s %s on lead %s by %s", "Locked" if locked else "Unlocked", field_key, lead_id, actor)
    return changed


def lock_field(lead_id: str, field_key: str, actor: str = "system") -> bool:
    """Freeze a (lead, field) value against every writer. False if already locked."""
    return _toggle_lock(lead_id, field_key, True, actor)


def unlock_field(lead_id: str, field_key: str, actor: str = "system") -> bool:
    return _toggle_lock(lead_id, field_key, False, actor)


# ─── Health ──────────────────────────────────────────────────────────────


def check_health() -> dict:
    """Check CRM tables are reachable. Returns {"status", "leads", "fields"}."""
    try:
        with get_cursor() as cur:
            cur.execute("SELECT COUNT(*) AS n FROM crm_leads WHERE deleted_at IS NULL")
            leads = cur.fetchone()["n"]
            cur.execute("SELECT COUNT(*) AS n FROM crm_fields")
            fields = cur.fetchone()["n"]
        return {"status": "ok", "leads": leads, "fields": fields}
    except Exception as e:
        logger.warning("CRM health check failed: %s", e)
        return {"status": "error", "error": str(e)}

"""
AltoCRM Audit Log — per-field change history with undo, plus system events.

Two tables:
  - crm_lead_audit — one row per lead mutation (set, clear, stage, lock,
    unlock, create, delete, restore, undo). Written on the caller's cursor so
    the change and its audit row commit together.
  - audit_log — free-form system events (crm.delete, crm.purge, job.failed).
    Writes never raise; audit must not break callers.

Usage:
    from altocrm.audit.logger import list_changes, log_event, undo_last

    undo_last(lead_id, actor="jane")
    log_event("job.failed", "leads.normalize 42", details={"error": "..."})
"""

from __future__ import annotations

import logging

from psycopg2.extras import Json

from altocrm.crm.errors import FieldLockedError, LeadNotFoundError
from altocrm.crm.models import change_to_dict
from altocrm.db.connection import get_cursor

logger = logging.getLogger(__name__)

# Actions that undo_last may revert
UNDOABLE_ACTIONS = ("set", "clear", "stage")


# ─── Lead changes ────────────────────────────────────────────────────────


def record_change(
    cur,
    lead_id: str,
    field_key: str | None,
    action: str,
    *,
    old_value: str | None = None,
    new_value: str | None = None,
    old_source: str | None = None,
    new_source: str | None = None,
    actor: str = "system",
) -> None:
    """Append one crm_lead_audit row inside the caller's transaction."""
    cur.execute(
        """
        INSERT INTO crm_lead_audit
            (lead_id, field_key, action, old_value, new_value,
             old_source, new_source, actor)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
    """,
        (lead_id, field_key, action, old_value, new_value, old_source, new_source, actor),
    )


def list_changes(lead_id: str, limit: int = 50, include_undone: bool = True) -> list[dict]:
    """Return a lead's change history, newest first."""
    query = "SELECT * FROM crm_lead_audit WHERE lead_id = %s"
    if not include_undone:
        query += " AND undone_at IS NULL"
    query += " ORDER BY id DESC LIMIT %s"

    with get_cursor() as cur:
        cur.execute(query, (lead_id, limit))
        return [change_to_dict(r) for r in cur.fetchall()]


def undo_last(lead_id: str, actor: str = "system") -> dict | None:
    """Revert the newest not-yet-undone value or stage change on a lead.

    Returns the reverted change (with ``undoneAt`` set), or None when there is
    nothing left to undo. Each call steps back exactly one change.
    """
    with get_cursor() as cur:
        cur.execute(
            "SELECT id FROM crm_leads WHERE id = %s AND deleted_at IS NULL FOR UPDATE",
            (lead_id,),
        )
        if cur.fetchone() is None:
            raise LeadNotFoundError(lead_id)

        cur.execute(
            """
            SELECT * FROM crm_lead_audit
            WHERE lead_id = %s AND action IN %s AND undone_at IS NULL
            ORDER BY id DESC
            LIMIT 1
        """,
            (lead_id, UNDOABLE_ACTIONS),
        )
        change = cur.fetchone()
        if change is None:
            return None

        field_key = change["field_key"]
        if change["action"] == "stage":
            current_value, current_source = change["new_value"], None
            cur.execute(
                "UPDATE crm_leads SET stage = %s, updated_at = NOW() WHERE id = %s",
                (change["old_value"], lead_id),
            )
        else:
            cur.execute(
                """
                SELECT value, source, locked FROM crm_lead_values
                WHERE lead_id = %s AND field_key = %s
                FOR UPDATE
            """,
                (lead_id, field_key),
            )
            current = cur.fetchone()
            if current and current["locked"]:
                raise FieldLockedError(field_key)
            current_value = current["value"] if current else None
            current_source = current["source"] if current else None

            if change["old_value"] is None:
                cur.execute(
                    "DELETE FROM crm_lead_values WHERE lead_id = %s AND field_key = %s",
                    (lead_id, field_key),
                )
            else:
                cur.execute(
                    """
                    INSERT INTO crm_lead_values (lead_id, field_key, value, source)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (lead_id, field_key)
                    DO UPDATE SET value = EXCLUDED.value, source = EXCLUDED.source, updated_at = NOW()
                """,
                    (lead_id, field_key, change["old_value"], change["old_source"] or "manual"),
                )
            cur.execute("UPDATE crm_leads SET updated_at = NOW() WHERE id = %s", (lead_id,))

        cur.execute(
            "UPDATE crm_lead_audit SET undone_at = NOW() WHERE id = %s RETURNING *",
            (change["id"],),
        )
        reverted = cur.fetchone()

        record_change(
            cur,
            lead_id,
            field_key,
            "undo",
            old_value=current_value,
            new_value=change["old_value"],
            old_source=current_source,
            new_source=change["old_source"],
            actor=actor,
        )

    logger.info("Undid %s on lead %s (%s) by %s", change["action"], lead_id, field_key, actor)
    return change_to_dict(reverted)


def prune_changes(older_than_days: int) -> int:
    """Delete undone change rows older than the retention window."""
    with get_cursor() as cur:
        cur.execute(
            """
            DELETE FROM crm_lead_audit
            WHERE undone_at IS NOT NULL
              AND created_at < NOW() - make_interval(days => %s)
        """,
            (older_than_days,),
        )
        return cur.rowcount


# ─── System events ───────────────────────────────────────────────────────


def log_event(
    event_type: str,
    action: str,
    *,
    actor: str = "system",
    details: dict | None = None,
    target: str | None = None,
    status: str = "ok",
) -> dict | None:
    """Log a structured audit event.

    Returns {"id": int, "timestamp": str} on success, None on failure.
    Failures are logged but never raise.
    """
    try:
        with get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO audit_log (event_type, actor, action, details, target, status)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id, timestamp
                """,
                (
                    event_type,
                    actor,
                    action,
                    Json(details) if details else None,
                    target,
                    status,
                ),
            )
            row = cur.fetchone()
        return {"id": row["id"], "timestamp": row["timestamp"].isoformat()}
    except Exception as e:
        logger.warning("Audit log_event failed: %s", e)
        return None


def query_log(
    limit: int = 50,
    event_type: str | None = None,
    actor: str | None = None,
    target: str | None = None,
    since: str | None = None,
    status: str | None = None,
) -> list[dict]:
    """Query audit_log with filters. Returns [] on failure."""
    query = (
        "SELECT id, timestamp, event_type, actor, action, details, target, status "
        "FROM audit_log WHERE 1=1"
    )
    params: list = []

    if event_type:
        query += " AND event_type = %s"
        params.append(event_type)
    if actor:
        query += " AND actor = %s"
        params.append(actor)
    if target:
        query += " AND target LIKE %s"
        params.append(f"%{target}%")
    if since:
        query += " AND timestamp >= %s"
        params.append(since)
    if status:
        query += " AND status = %s"
        params.append(status)

    query += " ORDER BY timestamp DESC LIMIT %s"
    params.append(limit)

    try:
        with get_cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
    except Exception as e:
        logger.warning("Audit query_log failed: %s", e)
        return []

    return [
        {
            "id": r["id"],
            "timestamp": r["timestamp"].isoformat(),
            "event_type": r["event_type"],
            "actor": r["actor"],
            "action": r["action"],
            "details": r["details"],
            "target": r["target"],
            "status": r["status"],
        }
        for r in rows
    ]

"""
CRM Response Models — shape converters for database rows.

Converts RealDictCursor rows into the JSON shapes returned by the API and
stored as job results.

Usage:
    from altocrm.crm.models import lead_to_dict

    lead = lead_to_dict(lead_row, value_rows)
"""

from __future__ import annotations


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def field_to_dict(row: dict) -> dict:
    """Convert a crm_fields row to API response shape."""
    return {
        "key": row["key"],
        "label": row.get("label") or row["key"],
        "type": row.get("field_type") or "text",
        "editable": bool(row.get("editable", True)),
        "enrichable": bool(row.get("enrichable", False)),
        "position": row.get("position") or 0,
    }


def lead_to_dict(row: dict, value_rows: list[dict] | None = None) -> dict:
    """Convert a crm_leads row plus its crm_lead_values rows to API response shape.

    ``values`` holds only non-empty values; ``meta`` holds ownership for every
    row, including empty rows that exist only to carry a lock.
    """
    values: dict[str, str] = {}
    meta: dict[str, dict] = {}
    for v in value_rows or []:
        key = v["field_key"]
        if v.get("value") is not None:
            values[key] = v["value"]
        meta[key] = {
            "source": v.get("source") or "manual",
            "locked": bool(v.get("locked")),
            "updatedAt": _iso(v.get("updated_at")),
        }
    return {
        "id": str(row["id"]),
        "stage": row.get("stage") or "new",
        "values": values,
        "meta": meta,
        "createdAt": _iso(row.get("created_at")),
        "updatedAt": _iso(row.get("updated_at")),
        "deletedAt": _iso(row.get("deleted_at")),
    }


def change_to_dict(row: dict) -> dict:
    """Convert a crm_lead_audit row to API response shape."""
    return {
        "id": row["id"],  # BIGSERIAL, not UUID
        "leadId": str(row["lead_id"]),
        "field": row.get("field_key"),
        "action": row["action"],
        "oldValue": row.get("old_value"),
        "newValue": row.get("new_value"),
        "oldSource": row.get("old_source"),
        "newSource": row.get("new_source"),
        "actor": row.get("actor") or "system",
        "createdAt": _iso(row.get("created_at")),
        "undoneAt": _iso(row.get("undone_at")),
    }

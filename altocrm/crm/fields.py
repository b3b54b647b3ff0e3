"""
Lead field metadata (``crm_fields``).

A field row decides how a value is normalized (``field_type``), whether a
human may edit it (``editable``), whether enrichment may fill it
(``enrichable``), and where it sits in tables and cards (``position``).
"""

from __future__ import annotations

import logging
from typing import Any

from altocrm.crm.errors import DuplicateFieldError, InvalidValueError
from altocrm.crm.models import field_to_dict
from altocrm.crm.validation import FIELD_TYPES, validate_field_definition
from altocrm.db.connection import get_cursor

logger = logging.getLogger(__name__)


def fields_by_key(cur) -> dict[str, dict]:
    """Load every field row on an open cursor, keyed by field key, in display order."""
    cur.execute("SELECT * FROM crm_fields ORDER BY position, key")
    return {row["key"]: dict(row) for row in cur.fetchall()}


def list_fields() -> list[dict]:
    with get_cursor() as cur:
        rows = fields_by_key(cur)
    return [field_to_dict(r) for r in rows.values()]


def get_field(key: str) -> dict | None:
    with get_cursor() as cur:
        cur.execute("SELECT * FROM crm_fields WHERE key = %s", (key,))
        row = cur.fetchone()
    return field_to_dict(row) if row else None


def create_field(
    key: str,
    label: str,
    field_type: str = "text",
    editable: bool = True,
    enrichable: bool = False,
    position: int | None = None,
) -> dict:
    """Create a field. Position defaults to the end of the list."""
    valid, reason = validate_field_definition(key, label, field_type)
    if not valid:
        raise InvalidValueError(reason)

    with get_cursor() as cur:
        if position is None:
            cur.execute("SELECT COALESCE(MAX(position), 0) + 1 AS next FROM crm_fields")
            position = cur.fetchone()["next"]
        cur.execute(
            """
            INSERT INTO crm_fields (key, label, field_type, editable, enrichable, position)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (key) DO NOTHING
            RETURNING *
        """,
            (key, label.strip(), field_type, editable, enrichable, position),
        )
        row = cur.fetchone()

    if row is None:
        raise DuplicateFieldError(key)
    logger.info("Created field %s (%s, position %s)", key, field_type, position)
    return field_to_dict(row)


def update_field(key: str, **fields: Any) -> dict | None:
    """Update a field's metadata. Only sets non-None fields. The key itself is immutable."""
    if fields.get("field_type") is not None and fields["field_type"] not in FIELD_TYPES:
        raise InvalidValueError(f"rejected: type must be one of {', '.join(FIELD_TYPES)}")
    if fields.get("label") is not None and not fields["label"].strip():
        raise InvalidValueError("rejected: label is required")

    sets: list[str] = []
    vals: list[Any] = []
    for col in ("label", "field_type", "editable", "enrichable", "position"):
        if fields.get(col) is not None:
            sets.append(f"{col} = %s")
            vals.append(fields[col].strip() if col == "label" else fields[col])

    if not sets:
        return get_field(key)

    vals.append(key)
    with get_cursor() as cur:
        cur.execute(f"UPDATE crm_fields SET {', '.join(sets)} WHERE key = %s RETURNING *", vals)
        row = cur.fetchone()

    if row is None:
        return None
    logger.info("Updated field %s: %s", key, ", ".join(c.split(" ")[0] for c in sets))
    return field_to_dict(row)

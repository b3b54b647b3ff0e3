"""
Field ownership and locks for lead values.

Every ``crm_lead_values`` row records who owns the value (``source``) and
whether it is frozen (``locked``). All value writes go through
``apply_field_write`` on the caller's cursor so that the ownership check, the
write, and the audit row share one transaction.

Write rules, in order:

1. a locked value rejects every write (``FieldLockedError``)
2. manual writes need ``editable`` (``FieldNotEditableError``)
3. ai writes need ``enrichable`` (skipped otherwise)
4. ai/integration writes never replace a non-empty manual value (skipped)
5. the same value from the same source is a no-op (skipped)
"""

from __future__ import annotations

import logging

from altocrm.audit.logger import record_change
from altocrm.crm.errors import FieldLockedError, FieldNotEditableError, InvalidValueError
from altocrm.crm.validation import VALUE_SOURCES

logger = logging.getLogger(__name__)

SKIP_NOT_ENRICHABLE = "not enrichable"
SKIP_MANUAL_WINS = "manual value wins"
SKIP_UNCHANGED = "unchanged"


def check_write(field: dict, existing: dict | None, value: str | None, source: str) -> str | None:
    """Decide whether a write may proceed.

    Returns None when it may, or the reason it is skipped. Raises for writes
    that are errors rather than no-ops.
    """
    if source not in VALUE_SOURCES:
        raise InvalidValueError(f"rejected: source must be one of {', '.join(VALUE_SOURCES)}")

    key = field["key"]
    if existing and existing.get("locked"):
        raise FieldLockedError(key)
    if source == "manual" and not field.get("editable", True):
        raise FieldNotEditableError(key)
    if source == "ai" and not field.get("enrichable", False):
        return SKIP_NOT_ENRICHABLE
    if source != "manual" and existing and existing.get("source") == "manual" and existing.get("value"):
        return SKIP_MANUAL_WINS

    old_value = existing.get("value") if existing else None
    if old_value == value and (existing is None or existing.get("source") == source):
        return SKIP_UNCHANGED
    return None


def apply_field_write(
    cur,
    lead_id: str,
    field: dict,
    value: str | None,
    source: str,
    actor: str,
) -> str | None:
    """Write one already-normalized value. Returns a skip reason, or None when written.

    ``value=None`` removes the row (action ``clear``).
    """
    key = field["key"]
    cur.execute(
        """
        SELECT value, source, locked FROM crm_lead_values
        WHERE lead_id = %s AND field_key = %s
        FOR UPDATE
    """,
        (lead_id, key),
    )
    existing = cur.fetchone()

    reason = check_write(field, existing, value, source)
    if reason:
        logger.debug("Skipped %s on lead %s (%s): %s", key, lead_id, source, reason)
        return reason

    old_value = existing["value"] if existing else None
    old_source = existing["source"] if existing else None

    if value is None:
        cur.execute(
            "DELETE FROM crm_lead_values WHERE lead_id = %s AND field_key = %s",
            (lead_id, key),
        )
        action, new_source = "clear", None
    else:
        cur.execute(
            """
            INSERT INTO crm_lead_values (lead_id, field_key, value, source)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (lead_id, field_key)
            DO UPDATE SET value = EXCLUDED.value, source = EXCLUDED.source, updated_at = NOW()
        """,
            (lead_id, key, value, source),
        )
        action, new_source = "set", source

    record_change(
        cur,
        lead_id,
        key,
        action,
        old_value=old_value,
        new_value=value,
        old_source=old_source,
        new_source=new_source,
        actor=actor,
    )
    return None


def set_lock(cur, lead_id: str, field_key: str, locked: bool, actor: str) -> bool:
    """Lock or unlock one (lead, field). Returns False when already in that state.

    Locking a field with no value creates an empty manual-owned row to carry the lock.
    """
    cur.execute(
        "SELECT locked FROM crm_lead_values WHERE lead_id = %s AND field_key = %s FOR UPDATE",
        (lead_id, field_key),
    )
    row = cur.fetchone()

    if row is None:
        if not locked:
            return False
        cur.execute(
            """
            INSERT INTO crm_lead_values (lead_id, field_key, value, source, locked)
            VALUES (%s, %s, NULL, 'manual', TRUE)
        """,
            (lead_id, field_key),
        )
    elif bool(row["locked"]) == locked:
        return False
    else:
        cur.execute(
            """
            UPDATE crm_lead_values SET locked = %s, updated_at = NOW()
            WHERE lead_id = %s AND field_key = %s
        """,
            (locked, lead_id, field_key),
        )

    record_change(cur, lead_id, field_key, "lock" if locked else "unlock", actor=actor)
    return True

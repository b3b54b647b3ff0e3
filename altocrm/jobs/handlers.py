"""Built-in job handlers. Importing this module registers them."""

from __future__ import annotations

import logging

from altocrm.audit.logger import prune_changes
from altocrm.config import get_config
from altocrm.crm.dal import MAX_PAGE_SIZE, get_lead, list_leads, purge_deleted_leads, update_lead
from altocrm.crm.errors import InvalidValueError
from altocrm.crm.fields import list_fields
from altocrm.crm.validation import normalize_value
from altocrm.jobs.registry import handler

logger = logging.getLogger(__name__)

# Field types whose stored form can drift from the current normalizer
NORMALIZED_TYPES = ("email", "phone", "url", "number")


@handler("leads.purge_deleted")
def purge_deleted(payload: dict) -> dict:
    days = int(payload.get("days", get_config().jobs.purge_after_days))
    return {"purged": purge_deleted_leads(days), "days": days}


def _leads_to_normalize(payload: dict):
    """Yield the one lead named by ``lead_id``, or page through every live lead.

    ``limit`` caps the total number of leads when given.
    """
    if payload.get("lead_id"):
        lead = get_lead(payload["lead_id"])
        if lead:
            yield lead
        return

    cap = int(payload["limit"]) if payload.get("limit") is not None else None
    seen = 0
    offset = 0
    while cap is None or seen < cap:
        size = MAX_PAGE_SIZE if cap is None else min(MAX_PAGE_SIZE, cap - seen)
        page = list_leads(limit=size, offset=offset)
        for lead in page:
            yield lead
        seen += len(page)
        offset += len(page)
        if len(page) < size:
            break


@handler("leads.normalize")
def normalize_leads(payload: dict) -> dict:
    """Re-run value normalization on one lead (``lead_id``) or on all leads, newest first.

    An optional ``limit`` stops after that many leads. Writes as
    ``integration``, so manual-owned values stay as they are. Locked values
    are not touched.
    """
    types = {f["key"]: f["type"] for f in list_fields() if f["type"] in NORMALIZED_TYPES}

    scanned = 0
    updated = 0
    invalid = 0
    for lead in _leads_to_normalize(payload):
        scanned += 1
        changes: dict[str, str | None] = {}
        for key, value in lead["values"].items():
            if key not in types or lead["meta"].get(key, {}).get("locked"):
                continue
            try:
                normalized = normalize_value(types[key], value)
            except InvalidValueError:
                invalid += 1
                continue
            if normalized != value:
                changes[key] = normalized
        if not changes:
            continue
        result = update_lead(lead["id"], changes, source="integration", actor="job:leads.normalize")
        updated += len(result["applied"])

    logger.info("Normalized %d values across %d leads (%d invalid)", updated, scanned, invalid)
    return {"leads": scanned, "updated": updated, "invalid": invalid}


@handler("audit.prune")
def prune_audit(payload: dict) -> dict:
    days = int(payload.get("days", 90))
    return {"pruned": prune_changes(days), "days": days}

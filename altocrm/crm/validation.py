"""
CRM Validation — stage, field and value rules applied before every write.

Values arrive as loosely-typed strings from the API, from import jobs and from
enrichment. Everything is normalized here so the EAV table only ever holds
cleaned text (or no row at all for an empty value).

Usage:
    from altocrm.crm.validation import normalize_value, validate_stage

    normalize_value("email", "  Jane@Example.COM ")   # "jane@example.com"
    validate_stage("qualified")                       # (True, "ok")
"""

from __future__ import annotations

import re
from typing import Any

from altocrm.crm.errors import InvalidValueError

# ─── Vocabularies ────────────────────────────────────────────────────────

PIPELINE_STAGES: tuple[str, ...] = (
    "new",
    "contacted",
    "qualified",
    "proposal",
    "won",
    "lost",
)

FIELD_TYPES: tuple[str, ...] = ("text", "email", "phone", "url", "number")

# Who owns a value: a human, the enrichment pipeline, or an external sync
VALUE_SOURCES: tuple[str, ...] = ("manual", "ai", "integration")

NULL_STRINGS: set[str] = {"null", "none", "n/a", "undefined"}

_FIELD_KEY_RE = re.compile(r"^[a-z][a-z0-9_]{0,62}$")
_PHONE_STRIP_RE = re.compile(r"[^\d]")
MIN_PHONE_DIGITS = 7


def scrub_null_string(value: str | None) -> str | None:
    """Replace literal 'null'/'none'/'n/a' strings with empty string."""
    if value is None:
        return None
    if value.strip().lower() in NULL_STRINGS:
        return ""
    return value


def normalize_email(email: str | None) -> str | None:
    """Normalize email: lowercase, strip whitespace."""
    if not email:
        return None
    normalized = email.lower().strip()
    if "@" not in normalized:
        return None
    return normalized


def normalize_phone(phone: str | None) -> str | None:
    """Keep digits and a leading '+'. Returns None for too-short numbers."""
    if not phone:
        return None
    raw = phone.strip()
    digits = _PHONE_STRIP_RE.sub("", raw)
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    return f"+{digits}" if raw.startswith("+") else digits


def validate_stage(stage: str) -> tuple[bool, str]:
    if stage not in PIPELINE_STAGES:
        return False, f"rejected: stage must be one of {', '.join(PIPELINE_STAGES)}"
    return True, "ok"


def validate_field_definition(key: str, label: str, field_type: str) -> tuple[bool, str]:
    """Validate a new crm_fields row.

    Returns:
        (is_valid, reason) tuple.
    """
    if not _FIELD_KEY_RE.match(key or ""):
        return False, "rejected: key must be lowercase snake_case starting with a letter"
    if key == "stage":
        return False, "rejected: 'stage' is reserved for the pipeline stage"
    if not (label or "").strip():
        return False, "rejected: label is required"
    if field_type not in FIELD_TYPES:
        return False, f"rejected: type must be one of {', '.join(FIELD_TYPES)}"
    return True, "ok"


def validate_value(field_type: str, value: Any) -> tuple[bool, str]:
    """Check a raw value against its field type without normalizing it."""
    try:
        normalize_value(field_type, value)
    except InvalidValueError as e:
        return False, str(e)
    return True, "ok"


def normalize_value(field_type: str, value: Any) -> str | None:
    """Return the stored form of a value, or None to clear it.

    Raises InvalidValueError when the value cannot be stored as ``field_type``.
    """
    if value is None:
        return None
    text = scrub_null_string(str(value).strip())
    if not text:
        return None

    if field_type == "email":
        email = normalize_email(text)
        if email is None:
            raise InvalidValueError(f"rejected: {text[:60]!r} is not an email address")
        return email

    if field_type == "phone":
        phone = normalize_phone(text)
        if phone is None:
            raise InvalidValueError(
                f"rejected: phone needs at least {MIN_PHONE_DIGITS} digits, got {text[:60]!r}"
            )
        return phone

    if field_type == "url":
        if " " in text or "." not in text:
            raise InvalidValueError(f"rejected: {text[:60]!r} is not a URL")
        if not text.lower().startswith(("http://", "https://")):
            text = f"https://{text}"
        return text

    if field_type == "number":
        try:
            float(text.replace(",", ""))
        except ValueError:
            raise InvalidValueError(f"rejected: {text[:60]!r} is not a number") from None
        return text.replace(",", "")

    return text

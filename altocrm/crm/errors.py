"""CRM rule violations raised by the data access layer."""

from __future__ import annotations


class CrmError(Exception):
    """Base class for CRM errors that map to a client-side mistake."""


class LeadNotFoundError(CrmError):
    def __init__(self, lead_id: str) -> None:
        super().__init__(f"lead not found: {lead_id}")
        self.lead_id = lead_id


class UnknownFieldError(CrmError):
    def __init__(self, field_key: str) -> None:
        super().__init__(f"unknown field: {field_key}")
        self.field_key = field_key


class DuplicateFieldError(CrmError):
    def __init__(self, field_key: str) -> None:
        super().__init__(f"field already exists: {field_key}")
        self.field_key = field_key


class InvalidValueError(CrmError, ValueError):
    """A value, stage, or field definition failed validation."""


class FieldLockedError(CrmError):
    """The (lead, field) value is locked; nobody may change it until unlocked."""

    def __init__(self, field_key: str) -> None:
        super().__init__(f"field is locked: {field_key}")
        self.field_key = field_key


class FieldNotEditableError(CrmError):
    """Manual edits are disabled for this field in crm_fields."""

    def __init__(self, field_key: str) -> None:
        super().__init__(f"field is not editable: {field_key}")
        self.field_key = field_key

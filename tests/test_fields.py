"""Tests for altocrm.crm.fields — field metadata CRUD."""

import pytest

from altocrm.crm.errors import DuplicateFieldError, InvalidValueError
from altocrm.crm.fields import create_field, fields_by_key, get_field, list_fields, update_field


def _field_row(key="linkedin", **overrides):
    row = {
        "key": key,
        "label": "LinkedIn",
        "field_type": "url",
        "editable": True,
        "enrichable": True,
        "position": 9,
    }
    row.update(overrides)
    return row


class TestListFields:
    def test_in_display_order(self, patch_db):
        cur = patch_db("altocrm.crm.fields")
        cur.fetchall.return_value = [
            _field_row("full_name", label="Full name", field_type="text", position=1),
            _field_row("email", label="Email", field_type="email", position=3),
        ]

        fields = list_fields()
        assert [f["key"] for f in fields] == ["full_name", "email"]
        assert fields[1]["type"] == "email"
        assert "ORDER BY position" in cur.execute.call_args[0][0]

    def test_fields_by_key(self, mock_cursor):
        mock_cursor.fetchall.return_value = [_field_row("email"), _field_row("phone")]
        assert list(fields_by_key(mock_cursor)) == ["email", "phone"]


class TestGetField:
    def test_found(self, patch_db):
        cur = patch_db("altocrm.crm.fields")
        cur.fetchone.return_value = _field_row()
        assert get_field("linkedin")["label"] == "LinkedIn"

    def test_missing(self, patch_db):
        patch_db("altocrm.crm.fields")
        assert get_field("nope") is None


class TestCreateField:
    def test_appends_at_end(self, patch_db):
        cur = patch_db("altocrm.crm.fields")
        cur.fetchone.side_effect = [{"next": 9}, _field_row()]

        result = create_field("linkedin", " LinkedIn ", field_type="url", enrichable=True)
        assert result["position"] == 9
        params = cur.execute.call_args[0][1]
        assert params == ("linkedin", "LinkedIn", "url", True, True, 9)

    def test_explicit_position(self, patch_db):
        cur = patch_db("altocrm.crm.fields")
        cur.fetchone.return_value = _field_row(position=2)

        create_field("linkedin", "LinkedIn", field_type="url", position=2)
        assert cur.execute.call_count == 1

    def test_duplicate(self, patch_db):
        cur = patch_db("altocrm.crm.fields")
        cur.fetchone.side_effect = [{"next": 9}, None]

        with pytest.raises(DuplicateFieldError, match="linkedin"):
            create_field("linkedin", "LinkedIn")

    def test_invalid_definition_never_hits_db(self, patch_db):
        cur = patch_db("altocrm.crm.fields")
        with pytest.raises(InvalidValueError, match="reserved"):
            create_field("stage", "Stage")
        cur.execute.assert_not_called()


class TestUpdateField:
    def test_partial_update(self, patch_db):
        cur = patch_db("altocrm.crm.fields")
        cur.fetchone.return_value = _field_row(label="LinkedIn URL", editable=False)

        result = update_field("linkedin", label=" LinkedIn URL ", editable=False, position=None)
        assert result["label"] == "LinkedIn URL"
        sql, params = cur.execute.call_args[0]
        assert "label = %s" in sql
        assert "editable = %s" in sql
        assert "position" not in sql
        assert params == ["LinkedIn URL", False, "linkedin"]

    def test_missing_field(self, patch_db):
        patch_db("altocrm.crm.fields")
        assert update_field("nope", label="Nope") is None

    def test_bad_type(self):
        with pytest.raises(InvalidValueError, match="type must be one of"):
            update_field("linkedin", field_type="date")

    def test_blank_label(self):
        with pytest.raises(InvalidValueError, match="label"):
            update_field("linkedin", label="  ")

    def test_nothing_to_update_returns_current(self, patch_db):
        cur = patch_db("altocrm.crm.fields")
        cur.fetchone.return_value = _field_row()
        assert update_field("linkedin")["key"] == "linkedin"
        assert cur.execute.call_args[0][0].startswith("SELECT * FROM crm_fields")

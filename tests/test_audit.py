"""Tests for altocrm.audit.logger — lead change history, undo, and system events."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from altocrm.audit.logger import (
    list_changes,
    log_event,
    prune_changes,
    query_log,
    record_change,
    undo_last,
)
from altocrm.crm.errors import FieldLockedError, LeadNotFoundError

TS = datetime(2026, 3, 1, 9, 30)
LATER = datetime(2026, 3, 1, 10, 0)


def _change(lead_id, **overrides):
    row = {
        "id": 7,
        "lead_id": lead_id,
        "field_key": "email",
        "action": "set",
        "old_value": "old@example.com",
        "new_value": "new@example.com",
        "old_source": "ai",
        "new_source": "manual",
        "actor": "jane",
        "created_at": TS,
        "undone_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def cur(patch_db):
    return patch_db("altocrm.audit.logger")


class TestRecordChange:
    def test_inserts_on_callers_cursor(self, lead_id):
        cur = MagicMock()
        record_change(
            cur, lead_id, "email", "set",
            old_value=None, new_value="jane@example.com", new_source="manual", actor="jane",
        )
        sql, params = cur.execute.call_args[0]
        assert "INSERT INTO crm_lead_audit" in sql
        assert params == (lead_id, "email", "set", None, "jane@example.com", None, "manual", "jane")

    def test_default_actor(self, lead_id):
        cur = MagicMock()
        record_change(cur, lead_id, None, "create")
        assert cur.execute.call_args[0][1][-1] == "system"


class TestListChanges:
    def test_newest_first(self, cur, lead_id):
        cur.fetchall.return_value = [_change(lead_id, id=9), _change(lead_id, id=8)]
        changes = list_changes(lead_id)
        assert [c["id"] for c in changes] == [9, 8]
        sql, params = cur.execute.call_args[0]
        assert "ORDER BY id DESC" in sql
        assert "undone_at IS NULL" not in sql
        assert params == (lead_id, 50)

    def test_exclude_undone(self, cur, lead_id):
        list_changes(lead_id, limit=5, include_undone=False)
        assert "undone_at IS NULL" in cur.execute.call_args[0][0]


class TestUndoLast:
    def test_lead_missing(self, cur, lead_id):
        with pytest.raises(LeadNotFoundError):
            undo_last(lead_id)

    def test_nothing_to_undo(self, cur, lead_id):
        cur.fetchone.side_effect = [{"id": lead_id}, None]
        assert undo_last(lead_id) is None
        sql, params = cur.execute.call_args[0]
        assert "undone_at IS NULL" in sql
        assert params == (lead_id, ("set", "clear", "stage"))

    def test_restores_previous_value_and_owner(self, cur, lead_id):
        change = _change(lead_id)
        cur.fetchone.side_effect = [
            {"id": lead_id},
            change,
            {"value": "new@example.com", "source": "manual", "locked": False},
            {**change, "undone_at": LATER},
        ]

        with patch("altocrm.audit.logger.record_change") as mock_record:
            reverted = undo_last(lead_id, actor="jane")

        assert reverted["id"] == 7
        assert reverted["undoneAt"] == LATER.isoformat()

        executed = [c[0][0] for c in cur.execute.call_args_list]
        upsert = next(i for i, sql in enumerate(executed) if "ON CONFLICT" in sql)
        assert cur.execute.call_args_list[upsert][0][1] == (lead_id, "email", "old@example.com", "ai")
        assert any("SET undone_at = NOW()" in sql for sql in executed)

        args, kwargs = mock_record.call_args
        assert args[1:4] == (lead_id, "email", "undo")
        assert kwargs["old_value"] == "new@example.com"
        assert kwargs["new_value"] == "old@example.com"
        assert kwargs["actor"] == "jane"

    def test_undo_of_first_write_deletes_value(self, cur, lead_id):
        change = _change(lead_id, old_value=None, old_source=None)
        cur.fetchone.side_effect = [
            {"id": lead_id},
            change,
            {"value": "new@example.com", "source": "manual", "locked": False},
            {**change, "undone_at": LATER},
        ]

        with patch("altocrm.audit.logger.record_change"):
            undo_last(lead_id)

        executed = [c[0][0] for c in cur.execute.call_args_list]
        assert any(sql.startswith("DELETE FROM crm_lead_values") for sql in executed)
        assert not any("ON CONFLICT" in sql for sql in executed)

    def test_undo_of_clear_without_old_source_defaults_manual(self, cur, lead_id):
        change = _change(lead_id, action="clear", new_value=None, new_source=None, old_source=None)
        cur.fetchone.side_effect = [{"id": lead_id}, change, None, {**change, "undone_at": LATER}]

        with patch("altocrm.audit.logger.record_change"):
            undo_last(lead_id)

        upsert = next(c for c in cur.execute.call_args_list if "ON CONFLICT" in c[0][0])
        assert upsert[0][1][-1] == "manual"

    def test_undo_stage_move(self, cur, lead_id):
        change = _change(
            lead_id, field_key="stage", action="stage", old_value="new", new_value="contacted",
            old_source=None, new_source=None,
        )
        cur.fetchone.side_effect = [{"id": lead_id}, change, {**change, "undone_at": LATER}]

        with patch("altocrm.audit.logger.record_change") as mock_record:
            reverted = undo_last(lead_id)

        assert reverted["action"] == "stage"
        stage_update = next(
            c for c in cur.execute.call_args_list if c[0][0].startswith("UPDATE crm_leads SET stage")
        )
        assert stage_update[0][1] == ("new", lead_id)
        assert mock_record.call_args[1]["old_value"] == "contacted"

    def test_locked_field_cannot_be_undone(self, cur, lead_id):
        cur.fetchone.side_effect = [
            {"id": lead_id},
            _change(lead_id),
            {"value": "new@example.com", "source": "manual", "locked": True},
        ]
        with patch("altocrm.audit.logger.record_change") as mock_record:
            with pytest.raises(FieldLockedError):
                undo_last(lead_id)
        mock_record.assert_not_called()


class TestPruneChanges:
    def test_deletes_only_undone(self, cur):
        cur.rowcount = 4
        assert prune_changes(90) == 4
        sql, params = cur.execute.call_args[0]
        assert "undone_at IS NOT NULL" in sql
        assert params == (90,)


class TestLogEvent:
    def test_successful_log(self, cur):
        cur.fetchone.return_value = {"id": 42, "timestamp": TS}
        result = log_event("crm.delete", "delete lead x", actor="jane", target="lead:x")
        assert result == {"id": 42, "timestamp": TS.isoformat()}
        params = cur.execute.call_args[0][1]
        assert params[:3] == ("crm.delete", "jane", "delete lead x")
        assert params[3] is None
        assert params[4:] == ("lead:x", "ok")

    def test_details_wrapped_as_json(self, cur):
        cur.fetchone.return_value = {"id": 1, "timestamp": TS}
        log_event("job.failed", "leads.normalize 3", details={"error": "boom"}, status="error")
        details = cur.execute.call_args[0][1][3]
        assert details.adapted == {"error": "boom"}

    def test_log_never_raises(self):
        with patch("altocrm.audit.logger.get_cursor", side_effect=Exception("DB down")):
            assert log_event("test", "test action") is None


class TestQueryLog:
    def test_filters(self, cur):
        cur.fetchall.return_value = [
            {"id": 1, "timestamp": TS, "event_type": "crm.purge", "actor": "system",
             "action": "purged 3 leads", "details": {"count": 3}, "target": None, "status": "ok"},
        ]
        events = query_log(limit=10, event_type="crm.purge", target="lead", status="ok")
        assert events[0]["event_type"] == "crm.purge"
        assert events[0]["timestamp"] == TS.isoformat()
        sql, params = cur.execute.call_args[0]
        assert "event_type = %s" in sql
        assert "target LIKE %s" in sql
        assert params == ["crm.purge", "%lead%", "ok", 10]

    def test_failure_returns_empty(self):
        with patch("altocrm.audit.logger.get_cursor", side_effect=Exception("DB down")):
            assert query_log() == []

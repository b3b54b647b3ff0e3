"""Tests for altocrm.jobs.queue and altocrm.jobs.registry — the background_jobs table."""

from __future__ import annotations

from datetime import datetime

import pytest

from altocrm.jobs import registry
from altocrm.jobs.queue import (
    claim_next,
    enqueue,
    get_job,
    job_counts,
    job_to_dict,
    list_jobs,
    mark_done,
    mark_failed,
    requeue_stale,
    retry_job,
)
from altocrm.jobs.registry import UnknownJobTypeError, get_handler, handler, registered_types

TS = datetime(2026, 3, 1, 9, 30)


def _job_row(**overrides):
    row = {
        "id": 3,
        "job_type": "leads.normalize",
        "payload": {"limit": 10},
        "status": "processing",
        "attempts": 1,
        "last_error": None,
        "result": None,
        "created_at": TS,
        "updated_at": TS,
        "started_at": TS,
        "finished_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def cur(patch_db):
    return patch_db("altocrm.jobs.queue")


@pytest.fixture
def echo_handler():
    @handler("test.echo")
    def echo(payload):
        return payload

    yield echo
    registry.unregister("test.echo")


class TestRegistry:
    def test_builtins_registered(self):
        types = registered_types()
        assert "leads.purge_deleted" in types
        assert "leads.normalize" in types
        assert "audit.prune" in types
        assert types == sorted(types)

    def test_decorator_registers(self, echo_handler):
        assert get_handler("test.echo") is echo_handler
        assert echo_handler({"a": 1}) == {"a": 1}

    def test_unknown(self):
        assert get_handler("nope") is None

    def test_unregister(self, echo_handler):
        registry.unregister("test.echo")
        assert get_handler("test.echo") is None


class TestJobToDict:
    def test_shape(self):
        d = job_to_dict(_job_row())
        assert d["jobType"] == "leads.normalize"
        assert d["payload"] == {"limit": 10}
        assert d["startedAt"] == TS.isoformat()
        assert d["finishedAt"] is None
        assert d["lastError"] is None


class TestEnqueue:
    def test_unknown_type(self, cur):
        with pytest.raises(UnknownJobTypeError, match="nope"):
            enqueue("nope", {})
        cur.execute.assert_not_called()

    def test_inserts_pending(self, cur):
        cur.fetchone.return_value = {"id": 11}
        assert enqueue("leads.purge_deleted", {"days": 7}) == 11
        sql, params = cur.execute.call_args[0]
        assert "INSERT INTO background_jobs" in sql
        assert params[0] == "leads.purge_deleted"
        assert params[1].adapted == {"days": 7}

    def test_default_payload(self, cur):
        cur.fetchone.return_value = {"id": 12}
        enqueue("audit.prune")
        assert cur.execute.call_args[0][1][1].adapted == {}


class TestClaimNext:
    def test_empty_queue(self, cur):
        assert claim_next() is None
        assert cur.execute.call_count == 1

    def test_claims_with_skip_locked(self, cur):
        cur.fetchone.side_effect = [{"id": 3}, _job_row()]

        job = claim_next()
        assert job["id"] == 3
        assert job["status"] == "processing"
        select_sql = cur.execute.call_args_list[0][0][0]
        assert "status = 'pending'" in select_sql
        assert "FOR UPDATE SKIP LOCKED" in select_sql
        assert "ORDER BY id" in select_sql
        update_sql, params = cur.execute.call_args_list[1][0]
        assert "attempts = attempts + 1" in update_sql
        assert "status = 'processing'" in update_sql
        assert params == (3,)


class TestMarkDoneFailed:
    def test_mark_done_with_result(self, cur):
        mark_done(3, {"purged": 2})
        params = cur.execute.call_args[0][1]
        assert params[0].adapted == {"purged": 2}
        assert params[1] == 3

    def test_mark_done_without_result(self, cur):
        mark_done(3)
        assert cur.execute.call_args[0][1] == (None, 3)

    def test_mark_failed_truncates(self, cur):
        mark_failed(3, "x" * 5000)
        sql, params = cur.execute.call_args[0]
        assert "status = 'failed'" in sql
        assert len(params[0]) == 2000


class TestQueries:
    def test_get_job(self, cur):
        cur.fetchone.return_value = _job_row(status="done")
        assert get_job(3)["status"] == "done"

    def test_get_job_missing(self, cur):
        assert get_job(99) is None

    def test_list_jobs_filters(self, cur):
        cur.fetchall.return_value = [_job_row(id=5), _job_row(id=4)]
        jobs = list_jobs(status="failed", job_type="leads.normalize", limit=2)
        assert [j["id"] for j in jobs] == [5, 4]
        sql, params = cur.execute.call_args[0]
        assert "ORDER BY id DESC" in sql
        assert params == ["failed", "leads.normalize", 2]

    def test_job_counts_zero_filled(self, cur):
        cur.fetchall.return_value = [{"status": "pending", "n": 4}, {"status": "failed", "n": 1}]
        assert job_counts() == {"pending": 4, "processing": 0, "done": 0, "failed": 1}


class TestRetryAndRequeue:
    def test_retry_failed(self, cur):
        cur.rowcount = 1
        assert retry_job(3) is True
        assert "status = 'failed'" in cur.execute.call_args[0][0]

    def test_retry_not_failed(self, cur):
        assert retry_job(3) is False

    def test_requeue_stale(self, cur):
        cur.rowcount = 2
        assert requeue_stale(900) == 2
        sql, params = cur.execute.call_args[0]
        assert "status = 'processing'" in sql
        assert params == (900,)

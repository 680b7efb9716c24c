"""Unit tests for edms.engine.logging — FileLogger, AsyncLogQueue, entry builders."""

import json
from datetime import datetime, timedelta, timezone

from edms.engine import logging as edms_logging
from edms.engine.context import RequestContext, set_request_context
from edms.engine.logging import (
    OBJECT_TYPE_CATEGORIES,
    AsyncLogQueue,
    FileLogger,
    LogEntry,
    log_auth_event,
    log_document_event,
    log_security_event,
    log_share_event,
    log_system_event,
    log_tag_event,
)


class TestObjectTypeCategories:

    def test_types(self):
        assert set(OBJECT_TYPE_CATEGORIES) == {"documents", "shares", "tags", "auth", "system"}

    def test_every_type_has_execution(self):
        for cats in OBJECT_TYPE_CATEGORIES.values():
            assert "execution" in cats


class TestFileLogger:

    def test_write_creates_daily_file(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path / "logs"))
        fl.write(LogEntry("documents", "execution", {"event": "document_read"}))

        files = list((tmp_path / "logs" / "documents" / "execution").glob("*.jsonl"))
        assert len(files) == 1
        assert files[0].stem == datetime.now(timezone.utc).date().isoformat()
        assert json.loads(files[0].read_text().strip())["event"] == "document_read"

    def test_batch_groups_by_file(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        fl.write_batch([
            LogEntry("documents", "execution", {"n": 1}),
            LogEntry("auth", "security", {"n": 2}),
            LogEntry("documents", "execution", {"n": 3}),
        ])
        assert len(fl.query("documents", "execution")) == 2
        assert len(fl.query("auth", "security")) == 1

    def test_query_newest_first_with_filters(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        for i in range(4):
            fl.write(LogEntry("shares", "execution", {"n": i, "user_id": "a" if i % 2 else "b"}))
        assert [e["n"] for e in fl.query("shares", "execution")] == [3, 2, 1, 0]
        assert [e["n"] for e in fl.query("shares", "execution", filters={"user_id": "a"})] == [3, 1]
        assert len(fl.query("shares", "execution", limit=2)) == 2

    def test_query_skips_bad_lines(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        today = datetime.now(timezone.utc).date().isoformat()
        (tmp_path / "tags" / "execution" / f"{today}.jsonl").write_text('{"ok":1}\nnot json\n\n')
        assert fl.query("tags", "execution") == [{"ok": 1}]

    def test_query_outside_window(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        fl.write(LogEntry("system", "execution", {"n": 1}))
        old = datetime.now(timezone.utc).date() - timedelta(days=30)
        assert fl.query("system", "execution", end_date=old) == []

    def test_query_unknown_type(self, tmp_path):
        assert FileLogger(log_dir=str(tmp_path)).query("nothing", "execution") == []


class TestAsyncLogQueue:

    def test_stop_drains(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        queue = AsyncLogQueue(fl, flush_interval_ms=10_000)
        for i in range(3):
            assert queue.push(LogEntry("documents", "execution", {"n": i}))
        queue.stop()
        assert len(fl.query("documents", "execution")) == 3

    def test_full_queue_drops(self, tmp_path):
        queue = AsyncLogQueue(FileLogger(log_dir=str(tmp_path)), max_queue_size=1)
        assert queue.push(LogEntry("system", "execution", {}))
        assert not queue.push(LogEntry("system", "execution", {}))
        assert queue.dropped_count == 1
        assert queue.pending_count == 1


class TestBuilders:

    def test_document_event(self):
        entry = log_document_event("document_uploaded", "doc-1", "2", "Contributor")
        assert (entry.object_type, entry.category) == ("documents", "execution")
        assert entry.data["object_ref"] == "doc-1"
        assert entry.data["role"] == "Contributor"
        assert "details" not in entry.data

    def test_share_event(self):
        entry = log_share_event("document_shared", "doc-1", "2", "6", "Edit", "s-1")
        assert entry.data["shared_with_user_id"] == "6"
        assert entry.data["share_id"] == "s-1"

    def test_security_event_routes_unknown_type_to_system(self):
        entry = log_security_event("access_denied", "x", "widgets", "1", "Viewer", "View")
        assert (entry.object_type, entry.category) == ("system", "security")
        assert entry.data["level"] == "WARNING"

    def test_auth_failure_is_security(self):
        entry = log_auth_event("login_failed", "a@b.c", False, reason="invalid_password")
        assert entry.category == "security"
        assert entry.data["success"] is False

    def test_tag_and_system(self):
        assert log_tag_event("tag_created", "Finance", "2").object_type == "tags"
        entry = log_system_event("startup", details={"version": "1.0.0"})
        assert entry.data["details"] == {"version": "1.0.0"}

    def test_request_id_attached(self):
        set_request_context(RequestContext(request_id="req_abc"))
        assert log_tag_event("tag_created", "x", "1").data["request_id"] == "req_abc"


class TestGlobalQueue:

    def test_log_without_init_is_dropped(self):
        assert edms_logging.get_log_queue() is None
        assert edms_logging.log(log_system_event("noop")) is False

    def test_init_log_shutdown(self, tmp_path):
        edms_logging.init_logging(log_dir=str(tmp_path), flush_interval_ms=10)
        assert edms_logging.log(log_system_event("startup"))
        edms_logging.shutdown_logging()
        assert edms_logging.get_log_queue() is None
        events = FileLogger(log_dir=str(tmp_path)).query("system", "execution")
        assert [e["event"] for e in events] == ["startup"]

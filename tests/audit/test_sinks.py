"""Tests for audit destinations: file layout, rotation, retention."""

import gzip
import json
from datetime import datetime, timezone

import pytest
from structlog.testing import capture_logs

from agentic_guard.audit import AuditConfig, AuditEvent, AuditLogger, JsonFileSink, StructlogSink
from agentic_guard.audit.sinks import file_date, is_audit_file


def build_entry(config: AuditConfig, clock, command: str = "Get-Process"):
    return AuditLogger(config, sinks=[], clock=clock).build_entry(
        AuditEvent(agent_id="agent-1", session_id="session-1", command=command)
    )


class TestFileNames:
    def test_file_date(self, tmp_path):
        assert file_date(tmp_path / "2026-10-18.log.json") == datetime(2026, 10, 18).date()
        assert file_date(tmp_path / "2026-10-18.142501.1.log.json.gz") == datetime(2026, 10, 18).date()
        assert file_date(tmp_path / "notes.txt") is None

    def test_is_audit_file(self, tmp_path):
        assert is_audit_file(tmp_path / "2026-10-18.log.json")
        assert is_audit_file(tmp_path / "2026-10-18.log.json.gz")
        assert not is_audit_file(tmp_path / "2026-10-18.txt")
        assert not is_audit_file(tmp_path / "latest.log.json")


class TestJsonFileSink:
    """Tests for NDJSON appends and rotation."""

    def test_writes_one_line_per_entry(self, audit_config, wall_clock):
        sink = JsonFileSink(audit_config, clock=wall_clock)
        sink.write(build_entry(audit_config, wall_clock, "first"))
        sink.write(build_entry(audit_config, wall_clock, "second"))

        path = sink.path_for(wall_clock.now.date())
        lines = path.read_text(encoding="utf-8").splitlines()

        assert path.name == "2026-10-18.log.json"
        assert [json.loads(line)["event_data"]["command"] for line in lines] == ["first", "second"]

    def test_record_layout(self, audit_config, wall_clock):
        sink = JsonFileSink(audit_config, clock=wall_clock)
        entry = build_entry(audit_config, wall_clock)
        sink.write(entry)

        record = next(sink.read(sink.path_for(wall_clock.now.date())))

        assert record["timestamp"] == "2026-10-18T12:00:00+00:00"
        assert record["event_type"] == "command_execution"
        assert record["integrity_hash"] == entry.integrity_hash
        assert set(record["security_context"]) == {"source_ip", "auth_method", "authz_decision"}

    def test_rotation(self, tmp_path, wall_clock):
        config = AuditConfig(log_dir=str(tmp_path), max_file_size_mb=0.0001, enable_compression=False)
        sink = JsonFileSink(config, clock=wall_clock)

        sink.write(build_entry(config, wall_clock))
        sink.write(build_entry(config, wall_clock))

        names = sorted(p.name for p in tmp_path.iterdir())
        assert names == ["2026-10-18.120000.1.log.json", "2026-10-18.120000.log.json"]

    def test_rotation_compresses(self, tmp_path, wall_clock):
        config = AuditConfig(log_dir=str(tmp_path), max_file_size_mb=0.0001)
        sink = JsonFileSink(config, clock=wall_clock)
        entry = build_entry(config, wall_clock)

        sink.write(entry)

        files = sink.files()
        assert [p.name for p in files] == ["2026-10-18.120000.log.json.gz"]
        assert [r["event_id"] for r in sink.read(files[0])] == [entry.event_id]

    def test_malformed_lines_skipped(self, audit_config, wall_clock):
        sink = JsonFileSink(audit_config, clock=wall_clock)
        sink.write(build_entry(audit_config, wall_clock))
        path = sink.path_for(wall_clock.now.date())
        with open(path, "a", encoding="utf-8") as f:
            f.write("{not json\n\n")

        assert len(list(sink.read(path))) == 1

    def test_files_filtered_by_date(self, tmp_path):
        sink = JsonFileSink(AuditConfig(log_dir=str(tmp_path)))
        for name in ("2026-10-16.log.json", "2026-10-17.log.json.gz", "2026-10-18.log.json", "x.txt"):
            (tmp_path / name).write_text("")

        selected = sink.files(datetime(2026, 10, 17).date(), datetime(2026, 10, 18).date())

        assert [p.name for p in selected] == ["2026-10-17.log.json.gz", "2026-10-18.log.json"]

    def test_missing_directory(self, tmp_path):
        assert JsonFileSink(AuditConfig(log_dir=str(tmp_path / "absent"))).files() == []


class TestMaintenance:
    """Tests for compression and retention."""

    @pytest.fixture
    def log_dir(self, tmp_path):
        for name in ("2026-10-18.log.json", "2026-10-17.log.json", "2026-10-01.log.json"):
            (tmp_path / name).write_text('{"event_id": "x"}\n')
        for name in ("2026-10-10.log.json.gz", "2026-06-01.log.json.gz"):
            with gzip.open(tmp_path / name, "wt", encoding="utf-8") as f:
                f.write('{"event_id": "y"}\n')
        (tmp_path / "notes.txt").write_text("keep me")
        return tmp_path

    def test_compress_and_expire(self, log_dir):
        sink = JsonFileSink(AuditConfig(log_dir=str(log_dir)))

        result = sink.run_maintenance(datetime(2026, 10, 18, 3, 0, tzinfo=timezone.utc))

        assert result == {"compressed": 1, "deleted": 2}
        assert sorted(p.name for p in log_dir.iterdir()) == [
            "2026-10-10.log.json.gz",
            "2026-10-17.log.json.gz",
            "2026-10-18.log.json",
            "notes.txt",
        ]
        assert [r["event_id"] for r in sink.read(log_dir / "2026-10-17.log.json.gz")] == ["x"]

    def test_late_entries_join_existing_archive(self, tmp_path, wall_clock):
        config = AuditConfig(log_dir=str(tmp_path))
        sink = JsonFileSink(config, clock=wall_clock)
        wall_clock.now = datetime(2026, 10, 17, 23, 59, 59, tzinfo=timezone.utc)
        first = build_entry(config, wall_clock, "before midnight")
        second = build_entry(config, wall_clock, "arrived late")

        sink.write(first)
        assert sink.run_maintenance(datetime(2026, 10, 18, 0, 5, tzinfo=timezone.utc))["compressed"] == 1
        sink.write(second)
        assert sink.run_maintenance(datetime(2026, 10, 19, 0, 5, tzinfo=timezone.utc))["compressed"] == 1

        assert [p.name for p in tmp_path.iterdir()] == ["2026-10-17.log.json.gz"]
        records = list(sink.read(tmp_path / "2026-10-17.log.json.gz"))
        assert [r["event_id"] for r in records] == [first.event_id, second.event_id]

        audit = AuditLogger(config, sinks=[sink], clock=wall_clock)
        day = datetime(2026, 10, 17).date()
        assert [e.event_data.command for e in audit.query(day, day)] == ["before midnight", "arrived late"]
        audit.close()

    def test_without_compression(self, log_dir):
        sink = JsonFileSink(AuditConfig(log_dir=str(log_dir), enable_compression=False))

        result = sink.run_maintenance(datetime(2026, 10, 18, 3, 0, tzinfo=timezone.utc))

        assert result == {"compressed": 0, "deleted": 2}
        assert (log_dir / "2026-10-17.log.json").exists()


class TestStructlogSink:
    def test_emits_audit_event(self, audit_config, wall_clock):
        entry = build_entry(audit_config, wall_clock)

        with capture_logs() as logs:
            StructlogSink().write(entry)

        assert logs[0]["event"] == "audit_event"
        assert logs[0]["event_id"] == entry.event_id
        assert logs[0]["integrity_hash"] == entry.integrity_hash

"""Tests for the audit logger: recording, querying and draining."""

import threading
import time
from datetime import date, datetime, timedelta, timezone

import pytest

from agentic_guard.audit import (
    REDACTION_MARKER,
    AuditConfig,
    AuditEvent,
    AuditEventType,
    AuditLogEntry,
    AuditLogger,
    AuditSeverity,
)
from agentic_guard.audit.logger import QUERY_FLUSH_TIMEOUT
from agentic_guard.audit.sinks import JsonFileSink
from agentic_guard.security import AgentEnvironment, AgentRole, FilterReason, FilterResult


class RecordingSink:
    """Sink keeping entries in memory."""

    name = "recording"

    def __init__(self):
        self.entries: list[AuditLogEntry] = []

    def write(self, entry: AuditLogEntry) -> None:
        self.entries.append(entry)


class FailingSink:
    name = "failing"

    def write(self, entry: AuditLogEntry) -> None:
        raise OSError("disk full")


class BlockingSink:
    """Sink that waits for a release signal."""

    name = "blocking"

    def __init__(self):
        self.release = threading.Event()

    def write(self, entry: AuditLogEntry) -> None:
        self.release.wait(timeout=5)


class CountdownToken:
    """Cancellation token that reports set from the ``after``-th check on."""

    def __init__(self, after: int):
        self.after = after
        self.checks = 0

    def is_set(self) -> bool:
        self.checks += 1
        return self.checks >= self.after


def make_event(**overrides) -> AuditEvent:
    values = {"agent_id": "agent-1", "session_id": "session-1", "command": "Get-Process"}
    values.update(overrides)
    return AuditEvent(**values)


@pytest.fixture
def audit(audit_config, wall_clock):
    logger = AuditLogger(audit_config, clock=wall_clock)
    yield logger
    logger.close()


class TestRecord:
    """Tests for building and dispatching entries."""

    def test_record_returns_verifiable_entry(self, audit):
        entry = audit.record(make_event())

        assert entry is not None
        assert audit.verify_integrity(entry)
        assert entry.timestamp == datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

    def test_parameters_redacted(self, audit):
        entry = audit.record(make_event(parameters={"password": "hunter2", "Name": "w3wp"}))

        assert entry.event_data.sanitized_parameters == {
            "password": REDACTION_MARKER,
            "Name": "w3wp",
        }

    def test_duplicate_events_get_distinct_ids(self, audit):
        first = audit.record(make_event())
        second = audit.record(make_event())

        assert first.event_id != second.event_id

    def test_resource_context(self, audit):
        entry = audit.record(make_event(subscription_id="sub-1", resource_group="rg-web"))

        assert entry.resource_context.subscription_id == "sub-1"
        assert audit.record(make_event()).resource_context is None

    def test_disabled(self, tmp_path):
        audit = AuditLogger(AuditConfig(enabled=False, log_dir=str(tmp_path)))

        assert audit.record(make_event()) is None
        assert audit.query(date(2026, 1, 1), date(2030, 1, 1)) == []

    def test_record_exception(self, audit):
        try:
            raise RuntimeError("sink exploded")
        except RuntimeError as e:
            entry = audit.record_exception("agent-1", "session-1", e, command="Get-Process")

        assert entry.event_type is AuditEventType.ERROR
        assert entry.severity is AuditSeverity.HIGH
        assert entry.event_data.error == "sink exploded"
        assert "RuntimeError" in entry.event_data.stack_trace

    def test_stack_traces_can_be_dropped(self, tmp_path):
        audit = AuditLogger(AuditConfig(log_dir=str(tmp_path), include_stack_traces=False))
        entry = audit.record(make_event(error="x", stack_trace="Traceback ..."))

        assert entry.event_data.stack_trace is None
        audit.close()


class TestFromDecision:
    """Tests for audit events describing filter decisions."""

    def test_denial(self, context_factory):
        context = context_factory(AgentRole.READ_ONLY, user_id="alice", tenant_id="contoso")
        decision = FilterResult(
            allowed=False,
            reason=FilterReason.BLACKLISTED,
            message="Matched blacklist pattern: mimikatz",
            layers_evaluated=("syntax", "blacklist"),
        )

        event = AuditEvent.from_decision(context, "mimikatz", decision)

        assert event.event_type is AuditEventType.SECURITY_VIOLATION
        assert event.severity is AuditSeverity.CRITICAL
        assert event.result == "denied"
        assert event.authz_decision == "deny"
        assert event.user_id == "alice"
        assert event.metadata["tenant_id"] == "contoso"
        assert event.metadata["layers_evaluated"] == ["syntax", "blacklist"]

    def test_allowed_with_approval(self, context_factory):
        context = context_factory(AgentRole.MANUAL, AgentEnvironment.STAGING)
        decision = FilterResult(allowed=True, reason=FilterReason.ALLOWED, requires_approval=True)

        event = AuditEvent.from_decision(context, "Get-Process", decision, parameters={"Name": "x"})

        assert event.event_type is AuditEventType.COMMAND_EXECUTION
        assert event.severity is AuditSeverity.WARNING
        assert event.result == "approval_required"
        assert event.parameters == {"Name": "x"}
        assert event.metadata["environment"] == "staging"


class TestQuery:
    """Tests for reading the trail back."""

    def test_query_returns_recorded_entries(self, audit):
        recorded = [audit.record(make_event(command=f"Get-Item item{i}")) for i in range(3)]

        entries = audit.query(date(2026, 10, 18), date(2026, 10, 18))

        assert [e.event_id for e in entries] == [e.event_id for e in recorded]
        assert all(audit.verify_integrity(e) for e in entries)

    def test_query_is_deterministic(self, audit):
        for i in range(5):
            audit.record(make_event(agent_id=f"agent-{i % 2}"))

        first = audit.query(date(2026, 10, 18), date(2026, 10, 18))
        second = audit.query(date(2026, 10, 18), date(2026, 10, 18))

        assert [e.event_id for e in first] == [e.event_id for e in second]

    def test_filters(self, audit):
        audit.record(make_event(agent_id="Agent-A", user_id="alice"))
        audit.record(make_event(agent_id="agent-b", event_type=AuditEventType.SECURITY_VIOLATION))

        day = date(2026, 10, 18)
        assert len(audit.query(day, day, agent_id="agent-a")) == 1
        assert len(audit.query(day, day, user_id="ALICE")) == 1
        assert len(audit.query(day, day, event_type="security_violation")) == 1
        assert len(audit.query(day, day, event_type=AuditEventType.ERROR)) == 0

    def test_time_range(self, audit, wall_clock):
        audit.record(make_event(command="early"))
        wall_clock.advance(hours=2)
        audit.record(make_event(command="late"))

        start = datetime(2026, 10, 18, 13, 0, tzinfo=timezone.utc)
        end = start + timedelta(hours=2)
        entries = audit.query(start, end)

        assert [e.event_data.command for e in entries] == ["late"]

    def test_outside_range(self, audit):
        audit.record(make_event())

        assert audit.query(date(2026, 10, 19), date(2026, 10, 20)) == []

    def test_spans_days(self, audit, wall_clock):
        audit.record(make_event(command="day1"))
        wall_clock.advance(days=1)
        audit.record(make_event(command="day2"))

        entries = audit.query(date(2026, 10, 18), date(2026, 10, 19))

        assert [e.event_data.command for e in entries] == ["day1", "day2"]


class TestCancellation:
    """Tests for cancellation tokens on record and query."""

    def test_cancelled_record_is_not_written(self, audit):
        cancel = threading.Event()
        cancel.set()

        assert audit.record(make_event(), cancel=cancel) is None
        assert audit.query(date(2026, 10, 18), date(2026, 10, 18)) == []

    def test_unset_token_records_normally(self, audit):
        entry = audit.record(make_event(), cancel=threading.Event())

        assert [e.event_id for e in audit.query(date(2026, 10, 18), date(2026, 10, 18))] == [
            entry.event_id
        ]

    def test_cancelled_query_returns_nothing(self, audit):
        for i in range(3):
            audit.record(make_event(command=f"Get-Item item{i}"))
        cancel = threading.Event()
        cancel.set()

        assert audit.query(date(2026, 10, 18), date(2026, 10, 18), cancel=cancel) == []
        assert len(audit.query(date(2026, 10, 18), date(2026, 10, 18))) == 3

    def test_cancelled_mid_read_returns_no_partial_result(self, audit):
        for i in range(5):
            audit.record(make_event(command=f"Get-Item item{i}"))
        assert audit.flush(timeout=5)
        cancel = CountdownToken(after=3)

        assert audit.query(date(2026, 10, 18), date(2026, 10, 18), cancel=cancel) == []

    def test_cancel_interrupts_wait_for_pending_writes(self, audit_config, wall_clock):
        blocking = BlockingSink()
        audit = AuditLogger(audit_config, sinks=[blocking, JsonFileSink(audit_config)], clock=wall_clock)
        audit.record(make_event())
        cancel = threading.Event()
        timer = threading.Timer(0.1, cancel.set)
        timer.start()

        started = time.monotonic()
        result = audit.query(date(2026, 10, 18), date(2026, 10, 18), cancel=cancel)
        elapsed = time.monotonic() - started

        assert result == []
        assert elapsed < QUERY_FLUSH_TIMEOUT
        blocking.release.set()
        timer.join()
        assert audit.close(timeout=5)


class TestSinkIsolation:
    """Tests for independent fan-out to several sinks."""

    def test_failing_sink_does_not_block_others(self, audit_config):
        recording = RecordingSink()
        audit = AuditLogger(audit_config, sinks=[FailingSink(), recording])

        entry = audit.record(make_event())
        assert audit.flush(timeout=5)

        assert recording.entries == [entry]
        audit.close()

    def test_slow_sink_does_not_delay_others(self, audit_config):
        blocking = BlockingSink()
        recording = RecordingSink()
        audit = AuditLogger(audit_config, sinks=[blocking, recording])

        audit.record(make_event())
        for _ in range(500):
            if recording.entries and audit.pending == 1:
                break
            time.sleep(0.01)

        assert len(recording.entries) == 1
        assert audit.pending == 1
        blocking.release.set()
        assert audit.close(timeout=5)


class TestShutdown:
    """Tests for bounded draining."""

    def test_close_drains_pending_writes(self, audit_config):
        recording = RecordingSink()
        audit = AuditLogger(audit_config, sinks=[recording])
        for _ in range(20):
            audit.record(make_event())

        assert audit.close(timeout=5)
        assert len(recording.entries) == 20
        assert audit.pending == 0

    def test_close_timeout_reports_undrained(self, audit_config):
        blocking = BlockingSink()
        audit = AuditLogger(audit_config, sinks=[blocking])
        audit.record(make_event())

        assert not audit.close(timeout=0.05)
        blocking.release.set()

    def test_record_after_close_is_synchronous(self, audit_config):
        recording = RecordingSink()
        audit = AuditLogger(audit_config, sinks=[recording])
        audit.close()

        entry = audit.record(make_event())

        assert recording.entries == [entry]


class TestMaintenance:
    def test_delegates_to_file_sink(self, audit):
        assert audit.run_maintenance() == {"compressed": 0, "deleted": 0}

    def test_without_file_sink(self, audit_config):
        audit = AuditLogger(audit_config, sinks=[RecordingSink()])

        assert audit.run_maintenance() == {"compressed": 0, "deleted": 0}
        assert audit.query(date(2026, 1, 1), date(2030, 1, 1)) == []

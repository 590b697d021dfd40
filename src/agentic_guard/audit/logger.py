"""Audit logger: record, replay and verify agent actions.

``record`` never raises and never waits for disk. It builds the entry
(redacted, hashed) on the caller's thread and hands each sink write to a
worker pool. ``flush``/``close`` give shutdown a bounded drain so queued
writes are not lost.

Usage:
    audit = AuditLogger(AuditConfig(log_dir="/var/log/agentic-guard"))
    entry = audit.record(AuditEvent(agent_id="a-1", session_id="s-1", command="Get-Process"))
    audit.verify_integrity(entry)  # True
    audit.close(timeout=5)
"""

import threading
import time
import traceback
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Callable, Sequence

from agentic_guard.audit.integrity import compute_hash
from agentic_guard.audit.integrity import verify_integrity as _verify
from agentic_guard.audit.models import (
    AuditConfig,
    AuditEvent,
    AuditEventType,
    AuditLogEntry,
    AuditSeverity,
    EventData,
    ResourceContext,
    SecurityContext,
)
from agentic_guard.audit.redaction import Redactor
from agentic_guard.audit.sinks import AuditSink, JsonFileSink, StructlogSink
from agentic_guard.concurrency import CancellationToken
from agentic_guard.logging import Loggers

logger = Loggers.audit()

# Queries first wait this long for in-flight writes
QUERY_FLUSH_TIMEOUT = 5.0
# How often a cancellable wait re-checks its token
CANCEL_POLL_INTERVAL = 0.05


class AuditLogger:
    """Append-only, hash-verified audit trail with fan-out to several sinks."""

    def __init__(
        self,
        config: AuditConfig | None = None,
        sinks: Sequence[AuditSink] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the audit logger.

        Args:
            config: Audit configuration.
            sinks: Destinations; defaults to a JsonFileSink (plus a
                StructlogSink when ``emit_structlog`` is set).
            clock: Source of UTC timestamps.
        """
        self.config = config or AuditConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.redactor = Redactor(
            sensitive_keys=self.config.sensitive_keys,
            key_pattern=self.config.sensitive_key_pattern,
            marker=self.config.redaction_marker,
        )

        if sinks is None:
            default_sinks: list[AuditSink] = [JsonFileSink(self.config, clock=self._clock)]
            if self.config.emit_structlog:
                default_sinks.append(StructlogSink())
            sinks = default_sinks
        self.sinks: tuple[AuditSink, ...] = tuple(sinks)
        self.file_sink: JsonFileSink | None = next(
            (s for s in self.sinks if isinstance(s, JsonFileSink)), None
        )

        # One single-threaded worker per sink keeps each destination in order
        # and keeps a slow destination from holding up the others
        self._executors: dict[int, ThreadPoolExecutor] = {}
        self._executor_lock = threading.Lock()
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()
        self._closed = False

    def _get_executor(self, index: int) -> ThreadPoolExecutor:
        with self._executor_lock:
            executor = self._executors.get(index)
            if executor is None:
                executor = ThreadPoolExecutor(
                    max_workers=1,
                    thread_name_prefix=f"audit-{self.sinks[index].name}",
                )
                self._executors[index] = executor
            return executor

    def build_entry(self, event: AuditEvent) -> AuditLogEntry:
        """Redact, assemble and hash an entry for ``event``."""
        resource = None
        if event.subscription_id or event.resource_group or event.resource_id:
            resource = ResourceContext(
                subscription_id=event.subscription_id,
                resource_group=event.resource_group,
                resource_id=event.resource_id,
            )

        entry = AuditLogEntry(
            timestamp=self._clock().astimezone(timezone.utc),
            event_id=uuid.uuid4().hex,
            agent_id=event.agent_id,
            session_id=event.session_id,
            user_id=event.user_id,
            event_type=event.event_type,
            severity=event.severity,
            event_data=EventData(
                command=event.command,
                sanitized_parameters=self.redactor.redact(event.parameters),
                result=event.result,
                execution_time_ms=event.execution_time_ms,
                error=event.error,
                stack_trace=event.stack_trace if self.config.include_stack_traces else None,
            ),
            security_context=SecurityContext(
                source_ip=event.source_ip,
                auth_method=event.auth_method,
                authz_decision=event.authz_decision,
            ),
            resource_context=resource,
            metadata=self.redactor.redact(event.metadata) or {},
        )
        return _with_hash(entry)

    def record(
        self,
        event: AuditEvent,
        cancel: CancellationToken | None = None,
    ) -> AuditLogEntry | None:
        """Record an action. Never raises.

        The entry is returned as soon as it is built; sink writes happen
        in the background.

        Returns:
            The entry handed to the sinks, or None if auditing is disabled,
            ``cancel`` was already set, or the entry could not be built.
        """
        if not self.config.enabled:
            return None
        if cancel is not None and cancel.is_set():
            logger.info("audit_record_cancelled", agent_id=getattr(event, "agent_id", None))
            return None
        try:
            entry = self.build_entry(event)
        except Exception as e:
            logger.error(
                "audit_entry_build_failed",
                agent_id=getattr(event, "agent_id", None),
                error=str(e),
                exc_info=True,
            )
            return None

        if self._closed:
            logger.warning("audit_record_after_close", event_id=entry.event_id)
            self._write_all(entry)
            return entry

        for index, sink in enumerate(self.sinks):
            try:
                future = self._get_executor(index).submit(self._write, sink, entry)
            except RuntimeError as e:
                # Executor shut down underneath us; write inline
                logger.warning("audit_dispatch_failed", sink=sink.name, error=str(e))
                self._write(sink, entry)
                continue
            with self._pending_lock:
                self._pending.add(future)
            future.add_done_callback(self._discard_pending)
        return entry

    def record_exception(
        self,
        agent_id: str,
        session_id: str,
        error: BaseException,
        command: str | None = None,
    ) -> AuditLogEntry | None:
        """Convenience wrapper recording an Error event for an exception."""
        return self.record(
            AuditEvent(
                agent_id=agent_id,
                session_id=session_id,
                event_type=AuditEventType.ERROR,
                severity=AuditSeverity.HIGH,
                command=command,
                result="error",
                error=str(error),
                stack_trace="".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                ),
            )
        )

    def _discard_pending(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _write(self, sink: AuditSink, entry: AuditLogEntry) -> None:
        try:
            sink.write(entry)
        except Exception as e:
            logger.error(
                "audit_sink_write_failed",
                sink=sink.name,
                event_id=entry.event_id,
                error=str(e),
            )

    def _write_all(self, entry: AuditLogEntry) -> None:
        for sink in self.sinks:
            self._write(sink, entry)

    @property
    def pending(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for queued writes.

        Returns:
            True if every write finished within ``timeout``.
        """
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        if not_done:
            logger.warning("audit_flush_timeout", remaining=len(not_done))
        return not not_done

    def close(self, timeout: float | None = 5.0) -> bool:
        """Drain queued writes (bounded by ``timeout``) and stop the workers.

        Records arriving after close are written synchronously.
        """
        self._closed = True
        drained = self.flush(timeout)
        with self._executor_lock:
            executors = list(self._executors.values())
            self._executors.clear()
        for executor in executors:
            executor.shutdown(wait=drained, cancel_futures=not drained)
        logger.debug("audit_logger_closed", drained=drained)
        return drained

    def query(
        self,
        start: datetime | date,
        end: datetime | date,
        agent_id: str | None = None,
        user_id: str | None = None,
        event_type: AuditEventType | str | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[AuditLogEntry]:
        """Return entries within [start, end] matching the filters.

        Dates select whole days. Files are read in name order and entries in
        line order, so repeated queries return the same sequence.

        Args:
            cancel: Checked while waiting for pending writes and between
                records; once set the query stops and returns an empty list
                rather than a partial one.
        """
        if self.file_sink is None:
            return []
        if not self._await_pending(QUERY_FLUSH_TIMEOUT, cancel):
            return self._query_cancelled(files_read=0)

        start_dt = _as_datetime(start, end_of_day=False)
        end_dt = _as_datetime(end, end_of_day=True)
        if isinstance(event_type, str):
            event_type = AuditEventType(event_type)
        agent = agent_id.lower() if agent_id else None
        user = user_id.lower() if user_id else None

        results: list[AuditLogEntry] = []
        files = self.file_sink.files(start_dt.date(), end_dt.date())
        for files_read, path in enumerate(files):
            try:
                for data in self.file_sink.read(path):
                    if cancel is not None and cancel.is_set():
                        return self._query_cancelled(files_read=files_read)
                    try:
                        entry = AuditLogEntry.from_dict(data)
                    except (KeyError, TypeError, ValueError) as e:
                        logger.warning("audit_record_invalid", path=str(path), error=str(e))
                        continue
                    if not start_dt <= entry.timestamp <= end_dt:
                        continue
                    if agent and entry.agent_id.lower() != agent:
                        continue
                    if user and (entry.user_id or "").lower() != user:
                        continue
                    if event_type and entry.event_type is not event_type:
                        continue
                    results.append(entry)
            except (OSError, EOFError) as e:
                logger.warning("audit_file_unreadable", path=str(path), error=str(e))
        return results

    def _await_pending(self, timeout: float, cancel: CancellationToken | None) -> bool:
        """Wait up to ``timeout`` for queued writes.

        Returns:
            False if ``cancel`` was set while waiting.
        """
        if cancel is None:
            self.flush(timeout=timeout)
            return True
        deadline = time.monotonic() + timeout
        while not cancel.is_set():
            with self._pending_lock:
                pending = list(self._pending)
            if not pending:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("audit_flush_timeout", remaining=len(pending))
                return True
            wait(pending, timeout=min(CANCEL_POLL_INTERVAL, remaining))
        return False

    def _query_cancelled(self, files_read: int) -> list[AuditLogEntry]:
        logger.info("audit_query_cancelled", files_read=files_read)
        return []

    def verify_integrity(self, entry: AuditLogEntry) -> bool:
        """Recompute the entry's hash and compare it with the stored one."""
        return _verify(entry)

    def run_maintenance(self, now: datetime | None = None) -> dict[str, int]:
        """Compress and expire audit files (periodic task body)."""
        if self.file_sink is None:
            return {"compressed": 0, "deleted": 0}
        return self.file_sink.run_maintenance(now)


def _with_hash(entry: AuditLogEntry) -> AuditLogEntry:
    return replace(entry, integrity_hash=compute_hash(entry))


def _as_datetime(value: datetime | date, end_of_day: bool) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if end_of_day:
        return datetime.combine(value, datetime.max.time(), tzinfo=timezone.utc)
    return datetime.combine(value, datetime.min.time(), tzinfo=timezone.utc)

"""Audit destinations.

Every sink receives fully built, hashed entries. The audit logger fans
out to all sinks independently, so one failing destination never blocks
another.

File layout of ``JsonFileSink`` (one JSON record per line):
    2026-10-18.log.json              current file for the day
    2026-10-18.142501.log.json       rotated when the size limit was hit
    2026-10-17.log.json.gz           compressed by maintenance
"""

import gzip
import json
import shutil
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Protocol

from agentic_guard.audit.models import AuditConfig, AuditLogEntry
from agentic_guard.concurrency import KeyedLocks
from agentic_guard.logging import Loggers, get_logger

logger = Loggers.audit()

LOG_SUFFIX = ".log.json"
GZIP_SUFFIX = ".gz"


class AuditSink(Protocol):
    """A destination for audit entries."""

    name: str

    def write(self, entry: AuditLogEntry) -> None: ...


def file_date(path: Path) -> date | None:
    """Date encoded in an audit file name, or None for foreign files."""
    try:
        return datetime.strptime(path.name.split(".", 1)[0], "%Y-%m-%d").date()
    except ValueError:
        return None


def is_audit_file(path: Path) -> bool:
    name = path.name
    return (name.endswith(LOG_SUFFIX) or name.endswith(LOG_SUFFIX + GZIP_SUFFIX)) and (
        file_date(path) is not None
    )


class JsonFileSink:
    """Date-partitioned NDJSON files with rotation, compression and retention."""

    name = "file"

    def __init__(
        self,
        config: AuditConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or AuditConfig()
        self.log_dir = self.config.get_log_dir()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks = KeyedLocks()

    def path_for(self, day: date) -> Path:
        return self.log_dir / f"{day.isoformat()}{LOG_SUFFIX}"

    def write(self, entry: AuditLogEntry) -> None:
        """Append one entry, rotating the file if it grew past the limit."""
        line = json.dumps(entry.to_dict(), ensure_ascii=False, allow_nan=False)
        path = self.path_for(entry.timestamp.astimezone(timezone.utc).date())

        with self._locks.hold(path.name):
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
            if path.stat().st_size > self.config.max_file_size_bytes:
                self._rotate(path)

    def _rotate(self, path: Path) -> Path:
        stamp = self._clock().astimezone(timezone.utc).strftime("%H%M%S")
        day = path.name[: -len(LOG_SUFFIX)]
        target = path.with_name(f"{day}.{stamp}{LOG_SUFFIX}")
        counter = 1
        while target.exists() or target.with_name(target.name + GZIP_SUFFIX).exists():
            target = path.with_name(f"{day}.{stamp}.{counter}{LOG_SUFFIX}")
            counter += 1

        path.rename(target)
        logger.info("audit_file_rotated", path=str(target))
        if self.config.enable_compression:
            return _compress(target)
        return target

    def files(self, start: date | None = None, end: date | None = None) -> list[Path]:
        """Audit files whose date falls within [start, end], ordered by name."""
        if not self.log_dir.exists():
            return []
        selected = []
        for path in self.log_dir.iterdir():
            if not path.is_file() or not is_audit_file(path):
                continue
            day = file_date(path)
            if start is not None and day < start:
                continue
            if end is not None and day > end:
                continue
            selected.append(path)
        return sorted(selected, key=lambda p: p.name)

    def read(self, path: Path) -> Iterator[dict[str, Any]]:
        """Yield records from one file, decompressing as needed."""
        opener = gzip.open if path.name.endswith(GZIP_SUFFIX) else open
        with opener(path, "rt", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("audit_line_malformed", path=str(path), line=line_no)

    def run_maintenance(self, now: datetime | None = None) -> dict[str, int]:
        """Compress files from previous days and delete expired ones.

        Returns:
            Counts of compressed and deleted files.
        """
        today = (now or self._clock()).astimezone(timezone.utc).date()
        plain_cutoff = today - timedelta(days=self.config.retention_days)
        compressed_cutoff = today - timedelta(days=self.config.compressed_retention_days)
        compressed = deleted = 0

        for path in self.files():
            day = file_date(path)
            try:
                if path.name.endswith(GZIP_SUFFIX):
                    if day < compressed_cutoff:
                        path.unlink()
                        deleted += 1
                    continue

                with self._locks.hold(path.name):
                    if not path.exists():
                        continue
                    if day < plain_cutoff:
                        path.unlink()
                        deleted += 1
                    elif self.config.enable_compression and day < today:
                        _compress(path)
                        compressed += 1
            except OSError as e:
                logger.warning("audit_maintenance_file_failed", path=str(path), error=str(e))

        if compressed or deleted:
            logger.info("audit_maintenance_complete", compressed=compressed, deleted=deleted)
        return {"compressed": compressed, "deleted": deleted}


def _compress(path: Path) -> Path:
    # Appends a new gzip member when the day was already compressed;
    # multi-member files decompress as one stream
    target = path.with_name(path.name + GZIP_SUFFIX)
    existed = target.exists()
    with open(path, "rb") as src, gzip.open(target, "ab") as dst:
        shutil.copyfileobj(src, dst)
    path.unlink()
    if existed:
        logger.debug("audit_file_appended_to_archive", path=str(target))
    return target


class StructlogSink:
    """Emits every audit entry as a structured log event.

    Lets a log pipeline (or a telemetry exporter attached to it) receive
    the audit trail without reading the files.
    """

    name = "structlog"

    def __init__(self, logger_name: str = "agentic_guard.audit.trail"):
        self._logger = get_logger(logger_name)

    def write(self, entry: AuditLogEntry) -> None:
        self._logger.info(
            "audit_event",
            event_id=entry.event_id,
            event_type=entry.event_type.value,
            severity=entry.severity.value,
            agent_id=entry.agent_id,
            session_id=entry.session_id,
            user_id=entry.user_id,
            command=entry.event_data.command,
            result=entry.event_data.result,
            integrity_hash=entry.integrity_hash,
        )

"""Storage of bulk jobs and their results, with status, export and pruning."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sqlite3
import sys
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .bulk import BulkError, JobInProgressError
from .csv_export import write_csv
from .reachability import Reachable

logger = logging.getLogger(__name__)

DEFAULT_JSON_LIMIT = 50

Clock = Callable[[], datetime]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS bulk_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    total_records INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS email_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id INTEGER NOT NULL REFERENCES bulk_jobs(id),
    result TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""

_STAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _encode_stamp(value: datetime) -> str:
    return _to_utc(value).strftime(_STAMP_FORMAT)


def _decode_stamp(text: str) -> datetime:
    return datetime.strptime(text, _STAMP_FORMAT).replace(tzinfo=timezone.utc)


def _rfc3339(value: datetime) -> str:
    return _to_utc(value).isoformat().replace("+00:00", "Z")


class JobStatus(str, Enum):
    """Whether every address of a job has a result."""

    RUNNING = "Running"
    COMPLETED = "Completed"


class ResultFormat(str, Enum):
    """Download format of a job's results."""

    JSON = "json"
    CSV = "csv"


@dataclass(frozen=True)
class JobSummary:
    """Result counts of a job by verdict."""

    total_safe: int = 0
    total_risky: int = 0
    total_invalid: int = 0
    total_unknown: int = 0


@dataclass(frozen=True)
class JobStatusReport:
    """Everything known about a bulk job."""

    job_id: int
    created_at: datetime
    finished_at: Optional[datetime]
    total_records: int
    total_processed: int
    summary: JobSummary
    job_status: JobStatus

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "created_at": _rfc3339(self.created_at),
            "finished_at": _rfc3339(self.finished_at) if self.finished_at else None,
            "total_records": self.total_records,
            "total_processed": self.total_processed,
            "summary": {
                "total_safe": self.summary.total_safe,
                "total_risky": self.summary.total_risky,
                "total_invalid": self.summary.total_invalid,
                "total_unknown": self.summary.total_unknown,
            },
            "job_status": self.job_status.value,
        }


def _reachable_of(result: Any) -> Any:
    return result.get("is_reachable") if isinstance(result, Mapping) else None


class BulkStore:
    """Bulk jobs and their results kept in an SQLite database."""

    def __init__(self, path: str = ":memory:", clock: Optional[Clock] = None) -> None:
        self._clock = clock if clock is not None else _utc_now
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise BulkError(f"database error: {exc}") from exc

    def __enter__(self) -> "BulkStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def create_job(self, total_records: int) -> int:
        """Record a new job and return its id."""
        try:
            with self._conn:
                cursor = self._conn.execute(
                    "INSERT INTO bulk_jobs (created_at, total_records) VALUES (?, ?)",
                    (_encode_stamp(self._clock()), total_records),
                )
        except sqlite3.Error as exc:
            raise BulkError(f"failed to create job record: {exc}") from exc
        return int(cursor.lastrowid)

    def add_result(self, job_id: int, result: Any) -> None:
        """Store the output of one verification for a job."""
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO email_results (job_id, result, created_at) VALUES (?, ?, ?)",
                    (job_id, json.dumps(result), _encode_stamp(self._clock())),
                )
        except sqlite3.Error as exc:
            raise BulkError(f"failed to write result for job {job_id}: {exc}") from exc

    def _job_row(self, job_id: int) -> tuple:
        try:
            row = self._conn.execute(
                "SELECT id, created_at, total_records FROM bulk_jobs WHERE id = ? LIMIT 1",
                (job_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise BulkError(f"failed to get job record for job {job_id}: {exc}") from exc
        if row is None:
            raise BulkError(f"job {job_id} not found")
        return row

    def _processed(self, job_id: int) -> int:
        try:
            (count,) = self._conn.execute(
                "SELECT COUNT(*) FROM email_results WHERE job_id = ?", (job_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise BulkError(f"failed to count results for job {job_id}: {exc}") from exc
        return int(count)

    def job_status(self, job_id: int) -> JobStatusReport:
        """The current status of a job, derived from its stored results."""
        _, created_at, total_records = self._job_row(job_id)
        try:
            rows = self._conn.execute(
                "SELECT result, created_at FROM email_results WHERE job_id = ?", (job_id,)
            ).fetchall()
        except sqlite3.Error as exc:
            raise BulkError(f"failed to get aggregate info for job {job_id}: {exc}") from exc
        counts: Dict[str, int] = {member.value: 0 for member in Reachable}
        for text, _ in rows:
            verdict = _reachable_of(json.loads(text))
            if verdict in counts:
                counts[verdict] += 1
        total_processed = len(rows)
        if total_processed < total_records:
            status, finished_at = JobStatus.RUNNING, None
        else:
            status = JobStatus.COMPLETED
            finished_at = max((_decode_stamp(stamp) for _, stamp in rows), default=None)
        return JobStatusReport(
            job_id=job_id,
            created_at=_decode_stamp(created_at),
            finished_at=finished_at,
            total_records=total_records,
            total_processed=total_processed,
            summary=JobSummary(
                total_safe=counts[Reachable.SAFE.value],
                total_risky=counts[Reachable.RISKY.value],
                total_invalid=counts[Reachable.INVALID.value],
                total_unknown=counts[Reachable.UNKNOWN.value],
            ),
            job_status=status,
        )

    def job_results(self, job_id: int, limit: Optional[int] = None, offset: int = 0) -> List[Any]:
        """Stored results of a job in insertion order."""
        if (limit is not None and limit < 0) or offset < 0:
            raise ValueError("limit and offset should not be negative")
        try:
            rows = self._conn.execute(
                "SELECT result FROM email_results WHERE job_id = ? ORDER BY id LIMIT ? OFFSET ?",
                (job_id, -1 if limit is None else limit, offset),
            ).fetchall()
        except sqlite3.Error as exc:
            raise BulkError(f"failed to get results for job {job_id}: {exc}") from exc
        return [json.loads(text) for (text,) in rows]

    def _ensure_finished(self, job_id: int) -> None:
        _, _, total_records = self._job_row(job_id)
        if self._processed(job_id) < total_records:
            raise JobInProgressError()

    def results_json(self, job_id: int, limit: Optional[int] = None, offset: int = 0) -> bytes:
        """Results of a finished job as a JSON document; at most 50 unless a limit is given."""
        self._ensure_finished(job_id)
        results = self.job_results(job_id, DEFAULT_JSON_LIMIT if limit is None else limit, offset)
        return json.dumps({"results": results}, separators=(",", ":")).encode("utf-8")

    def results_csv(self, job_id: int, limit: Optional[int] = None, offset: int = 0) -> bytes:
        """Results of a finished job as CSV."""
        self._ensure_finished(job_id)
        return write_csv(self.job_results(job_id, limit, offset)).encode("utf-8")

    def prunable_jobs(self, days_old: int) -> List[int]:
        """Ids of completed jobs created at least ``days_old`` days before today."""
        today = _to_utc(self._clock()).date()
        cutoff = datetime.combine(today, time(), tzinfo=timezone.utc) - timedelta(days=days_old)
        try:
            rows = self._conn.execute(
                """
                SELECT b.id FROM bulk_jobs b
                JOIN (
                    SELECT job_id, COUNT(*) AS total_processed
                    FROM email_results GROUP BY job_id
                ) e ON b.id = e.job_id
                WHERE b.total_records = e.total_processed
                AND b.created_at <= ?
                ORDER BY b.id
                """,
                (_encode_stamp(cutoff),),
            ).fetchall()
        except sqlite3.Error as exc:
            raise BulkError(f"failed to list prunable jobs: {exc}") from exc
        return [job_id for (job_id,) in rows]

    def prune(self, days_old: int, dry_run: bool = False) -> List[int]:
        """Delete old completed jobs with their results; return the ids concerned."""
        job_ids = self.prunable_jobs(days_old)
        if dry_run:
            logger.info("Job ids to delete %s", job_ids)
            return job_ids
        if not job_ids:
            logger.info("No jobs to delete")
            return job_ids
        marks = ",".join("?" for _ in job_ids)
        try:
            with self._conn:
                self._conn.execute(f"DELETE FROM email_results WHERE job_id IN ({marks})", job_ids)
                logger.info("Email results for job IDs %s deleted successfully.", job_ids)
                self._conn.execute(f"DELETE FROM bulk_jobs WHERE id IN ({marks})", job_ids)
                logger.info("Bulk jobs records with IDs %s deleted successfully.", job_ids)
        except sqlite3.Error as exc:
            raise BulkError(f"failed to prune jobs: {exc}") from exc
        return job_ids

    def close(self) -> None:
        self._conn.close()


def _read_env_file(path: Path) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key.strip()] = value
    return values


def _database_path(url: str) -> str:
    if url.startswith("sqlite:///"):
        return url[len("sqlite:///"):]
    if "://" in url:
        raise SystemExit(f"Unsupported DATABASE_URL {url!r}")
    return url


def prune_main(argv: Optional[Sequence[str]] = None) -> int:
    """Delete old completed bulk jobs, configured by environment variables."""
    parser = argparse.ArgumentParser(
        prog="reachcheck-prune",
        description="Delete completed bulk jobs older than DAYS_OLD days.",
    )
    parser.add_argument("--env-file", default=".env", help="file of environment variables to load")
    args = parser.parse_args(argv)

    env_file = Path(args.env_file)
    if not env_file.is_file():
        raise SystemExit("Unable to load environment variables from .env file")
    env = {**_read_env_file(env_file), **os.environ}

    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    if "DATABASE_URL" not in env:
        raise SystemExit("Unable to read DATABASE_URL env var")
    if "DAYS_OLD" not in env:
        raise SystemExit("Unable to read DAYS_OLD env var")
    try:
        days_old = int(env["DAYS_OLD"])
    except ValueError:
        raise SystemExit("Unable to parse DAYS_OLD as integer") from None
    dry_run = "DRY_RUN" in env

    with BulkStore(_database_path(env["DATABASE_URL"])) as store:
        store.prune(days_old, dry_run)
    return 0
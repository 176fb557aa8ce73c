"""Append-only Inspection Store backed by SQLite.

The store is the only writer of inspection results and the only mutable
state shared between concurrently processed repositories.

Design:
- Append-only records: a newer record for the same (repository, file path,
  action type, location) supersedes the older one logically; nothing is
  updated or deleted.
- Each record is sealed with a SHA-256 hash linked to the previous record
  for its location, so history can be verified.
- One transaction per record, serialized by a process-wide write lock;
  WAL journal mode for concurrent readers.
- Schema is created and migrated on first use (``PRAGMA user_version``).
- Transient SQLite errors (busy/locked) are retried with backoff; anything
  else, or exhausted retries, surfaces as ``StoreError``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

from gavin.core.hasher import compute_record_hash
from gavin.models.policy import normalize_action_type
from gavin.models.records import InspectionQuery, InspectionRecord, TaskUsage
from gavin.models.repository import Repository
from gavin.models.summary import RunSummary

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# DDL: one tuple of statements per schema version
# ---------------------------------------------------------------------------

_MIGRATIONS: tuple[tuple[str, ...], ...] = (
    # v1: records and the repository registry
    (
        """
        CREATE TABLE IF NOT EXISTS inspection_records (
            id                    INTEGER PRIMARY KEY AUTOINCREMENT,
            record_id             TEXT NOT NULL UNIQUE,
            run_id                TEXT NOT NULL DEFAULT '',
            repository            TEXT NOT NULL,
            file_path             TEXT NOT NULL,
            action_type           TEXT NOT NULL,
            line                  INTEGER NOT NULL,
            col                   INTEGER NOT NULL,
            location_key          TEXT NOT NULL,
            declared_version      TEXT,
            required_version      TEXT,
            valid_state           TEXT NOT NULL,
            inspected_at          TEXT NOT NULL,
            previous_record_hash  TEXT NOT NULL DEFAULT '',
            record_hash           TEXT NOT NULL UNIQUE
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_records_location
            ON inspection_records(repository, file_path, action_type, location_key, id)
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_records_state
            ON inspection_records(valid_state, id)
        """,
        """
        CREATE TABLE IF NOT EXISTS repositories (
            id              INTEGER PRIMARY KEY,
            url             TEXT NOT NULL UNIQUE,
            organization    TEXT NOT NULL,
            name            TEXT NOT NULL,
            default_branch  TEXT NOT NULL DEFAULT 'main'
        )
        """,
    ),
    # v2: incremental runs and run audit
    (
        """
        CREATE TABLE IF NOT EXISTS inspected_files (
            repository      TEXT NOT NULL,
            path            TEXT NOT NULL,
            content_digest  TEXT NOT NULL,
            policy_digest   TEXT NOT NULL,
            last_run_id     TEXT NOT NULL,
            inspected_at    TEXT NOT NULL,
            PRIMARY KEY (repository, path)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS runs (
            run_id        TEXT PRIMARY KEY,
            started_at    TEXT NOT NULL,
            finished_at   TEXT,
            summary_json  TEXT NOT NULL DEFAULT '{}'
        )
        """,
    ),
)

SCHEMA_VERSION = len(_MIGRATIONS)

_RECORD_COLUMNS = (
    "record_id, run_id, repository, file_path, action_type, line, col, "
    "declared_version, required_version, valid_state, inspected_at, "
    "previous_record_hash, record_hash"
)

_TRANSIENT_MARKERS = ("locked", "busy")


class StoreError(RuntimeError):
    """Raised when the store cannot complete an operation."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class HistoryIntegrityError(RuntimeError):
    """Raised when a location's record hash chain is broken."""


def _is_transient(exc: sqlite3.Error) -> bool:
    return isinstance(exc, sqlite3.OperationalError) and any(
        marker in str(exc).lower() for marker in _TRANSIENT_MARKERS
    )


class InspectionStore:
    """Durable record of inspected repositories, files and references.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    retry_delays:
        Sleep (seconds) before each retry of a transiently failing write.
        The number of entries is the number of retries.
    busy_timeout:
        Seconds SQLite waits on a locked database before reporting busy.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        retry_delays: Sequence[float] = (0.05, 0.2, 0.5),
        busy_timeout: float = 5.0,
    ) -> None:
        self._db_path = Path(db_path)
        self._retry_delays = tuple(retry_delays)
        self._busy_timeout = busy_timeout
        self._write_lock = threading.Lock()
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._migrate()
        except (OSError, sqlite3.Error) as exc:
            raise StoreError(f"cannot open inspection store at {self._db_path}: {exc}") from exc

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ------------------------------------------------------------------
    # Connections, transactions, retries
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._db_path),
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=FULL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._write_lock, closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _with_retries(self, description: str, operation: Callable[[], T]) -> T:
        attempts = len(self._retry_delays) + 1
        for attempt in range(attempts):
            try:
                return operation()
            except sqlite3.Error as exc:
                transient = _is_transient(exc)
                if transient and attempt < len(self._retry_delays):
                    delay = self._retry_delays[attempt]
                    logger.warning(
                        "Store busy during %s (attempt %d/%d), retrying in %.2fs: %s",
                        description,
                        attempt + 1,
                        attempts,
                        delay,
                        exc,
                    )
                    time.sleep(delay)
                    continue
                logger.error("Store failure during %s: %s", description, exc)
                raise StoreError(f"{description} failed: {exc}", transient=transient) from exc
        raise StoreError(f"{description} failed: retry loop exited")

    def _migrate(self) -> None:
        with self._write_lock, closing(self._connect()) as conn:
            current = conn.execute("PRAGMA user_version").fetchone()[0]
            if current > SCHEMA_VERSION:
                raise StoreError(
                    f"database schema v{current} is newer than supported v{SCHEMA_VERSION}"
                )
            for version in range(current, SCHEMA_VERSION):
                conn.execute("BEGIN IMMEDIATE")
                try:
                    for statement in _MIGRATIONS[version]:
                        conn.execute(statement)
                    conn.execute(f"PRAGMA user_version = {version + 1}")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
                logger.info("Migrated inspection store %s to schema v%d", self._db_path, version + 1)

    def schema_version(self) -> int:
        with closing(self._connect()) as conn:
            return conn.execute("PRAGMA user_version").fetchone()[0]

    # ------------------------------------------------------------------
    # Records: append-only write
    # ------------------------------------------------------------------

    def record(self, record: InspectionRecord) -> InspectionRecord:
        """Append one record atomically and return it sealed.

        Raises
        ------
        StoreError
            When the write fails permanently or retries are exhausted.
        """
        return self._with_retries(
            f"record {record.repository}:{record.file_path}@{record.location_key}",
            lambda: self._append(record),
        )

    def _append(self, record: InspectionRecord) -> InspectionRecord:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT record_hash FROM inspection_records
                WHERE repository = ? AND file_path = ? AND action_type = ? AND location_key = ?
                ORDER BY id DESC LIMIT 1
                """,
                (record.repository, record.file_path, record.action_type, record.location_key),
            ).fetchone()
            previous_hash = row[0] if row else ""

            record_dict = record.model_dump(mode="json")
            record_dict["previous_record_hash"] = previous_hash
            record_dict["record_hash"] = ""
            sealed = record.model_copy(
                update={
                    "previous_record_hash": previous_hash,
                    "record_hash": compute_record_hash(record_dict),
                }
            )
            conn.execute(
                """
                INSERT INTO inspection_records
                    (record_id, run_id, repository, file_path, action_type, line, col,
                     location_key, declared_version, required_version, valid_state,
                     inspected_at, previous_record_hash, record_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    sealed.record_id,
                    sealed.run_id,
                    sealed.repository,
                    sealed.file_path,
                    sealed.action_type,
                    sealed.line,
                    sealed.column,
                    sealed.location_key,
                    sealed.declared_version,
                    sealed.required_version,
                    sealed.valid_state.value,
                    sealed.inspected_at.isoformat(),
                    sealed.previous_record_hash,
                    sealed.record_hash,
                ),
            )
        return sealed

    # ------------------------------------------------------------------
    # Records: queries (read-only)
    # ------------------------------------------------------------------

    def query(self, query: InspectionQuery | None = None) -> list[InspectionRecord]:
        """Return records matching *query*, oldest first."""
        query = query or InspectionQuery()
        clauses: list[str] = []
        params: list[object] = []
        if query.latest_only:
            clauses.append(
                "r.id IN (SELECT MAX(id) FROM inspection_records "
                "GROUP BY repository, file_path, action_type, location_key)"
            )
            clauses.append("(f.last_run_id IS NULL OR f.last_run_id = r.run_id)")
        if query.valid_state is not None:
            clauses.append("r.valid_state = ?")
            params.append(query.valid_state.value)
        if query.repository is not None:
            clauses.append("r.repository = ?")
            params.append(query.repository)
        if query.action_type is not None:
            clauses.append("r.action_type = ?")
            params.append(normalize_action_type(query.action_type))
        if query.run_id is not None:
            clauses.append("r.run_id = ?")
            params.append(query.run_id)

        sql = (
            "SELECT "
            + ", ".join(f"r.{c.strip()}" for c in _RECORD_COLUMNS.split(","))
            + " FROM inspection_records r"
            " LEFT JOIN inspected_files f"
            " ON f.repository = r.repository AND f.path = r.file_path"
        )
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY r.id ASC"
        if query.limit is not None:
            sql += " LIMIT ?"
            params.append(query.limit)

        with closing(self._connect()) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def history(self, repository: str, file_path: str) -> list[InspectionRecord]:
        """Every record ever written for one file, oldest first."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM inspection_records "
                "WHERE repository = ? AND file_path = ? ORDER BY id ASC",
                (repository, file_path),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def verify_history(self, repository: str, file_path: str) -> bool:
        """Verify the hash chains of every location in one file.

        Returns ``True`` when intact, raises ``HistoryIntegrityError`` otherwise.
        """
        last_hash: dict[tuple[str, str], str] = {}
        for record in self.history(repository, file_path):
            key = (record.action_type, record.location_key)
            expected_previous = last_hash.get(key, "")
            if record.previous_record_hash != expected_previous:
                raise HistoryIntegrityError(
                    f"Chain broken at record {record.record_id}: expected "
                    f"previous_hash={expected_previous!r}, got {record.previous_record_hash!r}"
                )
            record_dict = record.model_dump(mode="json")
            if record.record_hash != compute_record_hash(record_dict):
                raise HistoryIntegrityError(f"Tampered record {record.record_id}")
            last_hash[key] = record.record_hash
        return True

    def usage(self) -> list[TaskUsage]:
        """Current usage of each (action type, declared version) pair."""
        grouped: dict[tuple[str, str | None], dict[str, list[str]]] = {}
        for record in self.query(InspectionQuery(latest_only=True)):
            repos = grouped.setdefault((record.action_type, record.declared_version), {})
            paths = repos.setdefault(record.repository, [])
            if record.file_path not in paths:
                paths.append(record.file_path)
        return [
            TaskUsage(action_type=action_type, declared_version=version, repositories=repos)
            for (action_type, version), repos in sorted(
                grouped.items(), key=lambda item: (item[0][0], item[0][1] or "")
            )
        ]

    # ------------------------------------------------------------------
    # Incremental runs
    # ------------------------------------------------------------------

    def file_unchanged(
        self, repository: str, path: str, content_digest: str, policy_digest: str
    ) -> bool:
        """True if the file was last inspected with this content and policy."""
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT content_digest, policy_digest FROM inspected_files "
                "WHERE repository = ? AND path = ?",
                (repository, path),
            ).fetchone()
        return row is not None and row[0] == content_digest and row[1] == policy_digest

    def mark_file_inspected(
        self,
        repository: str,
        path: str,
        content_digest: str,
        policy_digest: str,
        run_id: str,
        *,
        complete: bool = True,
    ) -> None:
        """Record that *run_id* is the latest run to inspect a file.

        The current view of the file shows only records from that run.  A file
        marked with ``complete=False`` (some records could not be written)
        keeps no content digest, so ``file_unchanged`` is false for it and the
        next run records it again.
        """
        if not complete:
            content_digest = ""

        def _upsert() -> None:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO inspected_files
                        (repository, path, content_digest, policy_digest, last_run_id, inspected_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(repository, path) DO UPDATE SET
                        content_digest = excluded.content_digest,
                        policy_digest = excluded.policy_digest,
                        last_run_id = excluded.last_run_id,
                        inspected_at = excluded.inspected_at
                    """,
                    (
                        repository,
                        path,
                        content_digest,
                        policy_digest,
                        run_id,
                        datetime.now(timezone.utc).isoformat(),
                    ),
                )

        self._with_retries(f"mark {repository}:{path} inspected", _upsert)

    # ------------------------------------------------------------------
    # Run audit
    # ------------------------------------------------------------------

    def begin_run(self, run_id: str, started_at: datetime) -> None:
        def _insert() -> None:
            with self._transaction() as conn:
                conn.execute(
                    "INSERT INTO runs (run_id, started_at) VALUES (?, ?)",
                    (run_id, started_at.isoformat()),
                )

        self._with_retries(f"begin run {run_id}", _insert)

    def finish_run(self, summary: RunSummary) -> None:
        def _update() -> None:
            with self._transaction() as conn:
                conn.execute(
                    "UPDATE runs SET finished_at = ?, summary_json = ? WHERE run_id = ?",
                    (
                        (summary.finished_at or datetime.now(timezone.utc)).isoformat(),
                        summary.model_dump_json(),
                        summary.run_id,
                    ),
                )

        self._with_retries(f"finish run {summary.run_id}", _update)

    def get_run(self, run_id: str) -> RunSummary | None:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT summary_json FROM runs WHERE run_id = ? AND finished_at IS NOT NULL",
                (run_id,),
            ).fetchone()
        return RunSummary.model_validate_json(row[0]) if row else None

    def list_run_ids(self) -> list[str]:
        """All run ids, most recent first."""
        with closing(self._connect()) as conn:
            rows = conn.execute("SELECT run_id FROM runs ORDER BY started_at DESC").fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Repository registry
    # ------------------------------------------------------------------

    def add_repository(self, repository: Repository) -> None:
        def _upsert() -> None:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO repositories (url, organization, name, default_branch)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(url) DO UPDATE SET
                        organization = excluded.organization,
                        name = excluded.name,
                        default_branch = excluded.default_branch
                    """,
                    (
                        repository.url,
                        repository.organization,
                        repository.name,
                        repository.default_branch,
                    ),
                )

        self._with_retries(f"add repository {repository.url}", _upsert)

    def remove_repository(self, url: str) -> bool:
        """Remove a repository by URL; ``False`` if it was not registered."""

        def _delete() -> int:
            with self._transaction() as conn:
                return conn.execute("DELETE FROM repositories WHERE url = ?", (url,)).rowcount

        return self._with_retries(f"remove repository {url}", _delete) > 0

    def list_repositories(self) -> list[Repository]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT url, organization, name, default_branch FROM repositories ORDER BY url"
            ).fetchall()
        return [
            Repository(url=url, organization=org, name=name, default_branch=branch)
            for url, org, name, branch in rows
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_record(row: tuple) -> InspectionRecord:
        (
            record_id,
            run_id,
            repository,
            file_path,
            action_type,
            line,
            col,
            declared_version,
            required_version,
            valid_state,
            inspected_at,
            previous_record_hash,
            record_hash,
        ) = row
        return InspectionRecord(
            record_id=record_id,
            run_id=run_id,
            repository=repository,
            file_path=file_path,
            action_type=action_type,
            line=line,
            column=col,
            declared_version=declared_version,
            required_version=required_version,
            valid_state=valid_state,
            inspected_at=inspected_at,
            previous_record_hash=previous_record_hash,
            record_hash=record_hash,
        )

"""
SQLite redirect store.

Implements RedirectStorePort with optimistic locking: every write carries
the version it was read at and bumps it by one.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from src.adapters.clock import SystemClock
from src.components.redirects.models import (
    ConcurrencyConflictError,
    LazyRecords,
    RedirectRecord,
    RedirectType,
    as_utc,
    hash_path,
    normalize_host,
    normalize_source,
)
from src.components.redirects.ports import ClockPort

COLUMNS = (
    "id",
    "version",
    "source_uri_path",
    "source_uri_path_hash",
    "target_uri_path",
    "target_uri_path_hash",
    "status_code",
    "host",
    "hit_counter",
    "last_hit",
    "creator",
    "comment",
    "type",
    "start_date_time",
    "end_date_time",
    "created_at",
    "modified_at",
)

ABSOLUTE_TARGET_SQL = (
    "(target_uri_path LIKE 'http://%' OR target_uri_path LIKE 'https://%')"
)


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def format_dt(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat(timespec="microseconds") if value else None


def parse_dt(s: str | None) -> datetime | None:
    """Parse ISO datetime string."""
    return as_utc(datetime.fromisoformat(s)) if s else None


class SQLiteRepoBase:
    """Base class for SQLite repositories."""

    def __init__(self, db_path: str, connection: sqlite3.Connection | None = None):
        self.db_path = db_path
        self._external_conn = connection
        self._tx_conn: sqlite3.Connection | None = None

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = dict_factory
        return conn

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection (external or transaction-scoped if present)."""
        if self._external_conn is not None:
            return self._external_conn
        if self._tx_conn is not None:
            return self._tx_conn
        return self._connect()

    def _should_close(self) -> bool:
        """Whether to commit and close the connection after use."""
        return self._external_conn is None and self._tx_conn is None

    @contextmanager
    def atomic(self) -> Iterator[SQLiteRepoBase]:
        """
        Run all writes in the block on one connection and commit once.

        Nested blocks and externally managed connections join the outer
        transaction.
        """
        if not self._should_close():
            yield self
            return

        conn = self._connect()
        self._tx_conn = conn
        try:
            yield self
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._tx_conn = None
            conn.close()


class SQLiteRedirectStore(SQLiteRepoBase):
    """SQLite implementation of RedirectStorePort."""

    def __init__(
        self,
        db_path: str,
        connection: sqlite3.Connection | None = None,
        clock: ClockPort | None = None,
        batch_size: int = 500,
    ):
        super().__init__(db_path, connection)
        self._clock = clock or SystemClock()
        self._batch_size = batch_size

    # --- Queries ---

    def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> RedirectRecord | None:
        conn = self._get_conn()
        try:
            row = conn.execute(sql, params).fetchone()
            return self._map_row(row) if row else None
        finally:
            if self._should_close():
                conn.close()

    def _fetch_all(self, sql: str, params: tuple[Any, ...]) -> list[RedirectRecord]:
        conn = self._get_conn()
        try:
            rows = conn.execute(sql, params).fetchall()
            return [self._map_row(r) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def find_by_source_and_host(
        self, source_uri_path: str, host: str | None = None, fallback: bool = True
    ) -> RedirectRecord | None:
        source_hash = hash_path(normalize_source(source_uri_path))
        host = normalize_host(host)

        if host is None:
            return self._fetch_one(
                "SELECT * FROM redirects WHERE source_uri_path_hash = ? AND host IS NULL",
                (source_hash,),
            )
        if not fallback:
            return self._fetch_one(
                "SELECT * FROM redirects WHERE source_uri_path_hash = ? AND host = ?",
                (source_hash, host),
            )
        # Host-specific row sorts before the NULL-host row
        return self._fetch_one(
            """
            SELECT * FROM redirects
            WHERE source_uri_path_hash = ? AND (host = ? OR host IS NULL)
            ORDER BY host IS NULL
            LIMIT 1
            """,
            (source_hash, host),
        )

    def find_by_target_and_host(
        self, target_uri_path: str, host: str | None = None
    ) -> list[RedirectRecord]:
        target = normalize_source(target_uri_path)
        target_hash = hash_path(target)
        host = normalize_host(host)

        if host is None:
            return self._fetch_all(
                """
                SELECT * FROM redirects
                WHERE target_uri_path_hash = ? AND host IS NULL
                ORDER BY source_uri_path, host
                """,
                (target_hash,),
            )

        # Absolute targets pointing at this host, e.g. https://<host>/<target>
        suffix = f"/{host}/{target}"
        return self._fetch_all(
            f"""
            SELECT * FROM redirects
            WHERE (target_uri_path_hash = ? AND (host = ? OR host IS NULL))
               OR ({ABSOLUTE_TARGET_SQL} AND substr(target_uri_path, -?) = ?)
            ORDER BY source_uri_path, host
            """,
            (target_hash, host, len(suffix), suffix),
        )

    def find_all(
        self,
        host: str | None = None,
        only_active: bool = False,
        type: RedirectType | str | None = None,
    ) -> LazyRecords:
        clauses: list[str] = []
        params: list[Any] = []

        host = normalize_host(host)
        if host is not None:
            clauses.append("host = ?")
            params.append(host)
        return self._iterate(clauses, params, only_active, type)

    def find_all_without_host(
        self,
        only_active: bool = False,
        type: RedirectType | str | None = None,
    ) -> LazyRecords:
        return self._iterate(["host IS NULL"], [], only_active, type)

    def _iterate(
        self,
        clauses: list[str],
        params: list[Any],
        only_active: bool,
        type: RedirectType | str | None,
    ) -> LazyRecords:
        if type:
            clauses.append("type = ?")
            params.append(RedirectType.coerce(type).value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM redirects {where} ORDER BY host, source_uri_path"

        def iterate() -> Iterator[RedirectRecord]:
            # The active window is evaluated at iteration time
            now = self._clock.now_utc()
            conn = self._get_conn()
            try:
                cursor = conn.execute(sql, tuple(params))
                while True:
                    rows = cursor.fetchmany(self._batch_size)
                    if not rows:
                        break
                    for row in rows:
                        record = self._map_row(row)
                        if only_active and not record.is_active(now):
                            continue
                        yield record
            finally:
                if self._should_close():
                    conn.close()

        return LazyRecords(iterate)

    def find_distinct_hosts(self) -> set[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT DISTINCT host FROM redirects WHERE host IS NOT NULL"
            ).fetchall()
            return {r["host"] for r in rows}
        finally:
            if self._should_close():
                conn.close()

    # --- Writes ---

    def upsert(self, record: RedirectRecord) -> RedirectRecord:
        conn = self._get_conn()
        try:
            if record.version == 0:
                self._insert(conn, record)
            else:
                self._update(conn, record)
            if self._should_close():
                conn.commit()
            record.version += 1
            return record
        finally:
            if self._should_close():
                conn.close()

    def _insert(self, conn: sqlite3.Connection, record: RedirectRecord) -> None:
        values = self._to_row(record)
        values["version"] = 1
        placeholders = ", ".join("?" for _ in COLUMNS)
        try:
            conn.execute(
                f"INSERT INTO redirects ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                tuple(values[c] for c in COLUMNS),
            )
        except sqlite3.IntegrityError as e:
            # Someone else inserted the same (source, host) since we looked
            raise ConcurrencyConflictError(record.id, record.version) from e

    def _update(self, conn: sqlite3.Connection, record: RedirectRecord) -> None:
        values = self._to_row(record)
        assignments = ", ".join(f"{c} = ?" for c in COLUMNS if c not in ("id", "version"))
        params = [values[c] for c in COLUMNS if c not in ("id", "version")]
        try:
            cursor = conn.execute(
                f"UPDATE redirects SET {assignments}, version = version + 1 "
                "WHERE id = ? AND version = ?",
                (*params, str(record.id), record.version),
            )
        except sqlite3.IntegrityError as e:
            raise ConcurrencyConflictError(record.id, record.version) from e
        if cursor.rowcount == 0:
            raise ConcurrencyConflictError(record.id, record.version)

    def remove(self, record: RedirectRecord) -> None:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                "DELETE FROM redirects WHERE id = ? AND version = ?",
                (str(record.id), record.version),
            )
            if cursor.rowcount == 0:
                raise ConcurrencyConflictError(record.id, record.version)
            if self._should_close():
                conn.commit()
        finally:
            if self._should_close():
                conn.close()

    def _remove_where(self, where: str, params: tuple[Any, ...]) -> list[RedirectRecord]:
        conn = self._get_conn()
        try:
            rows = conn.execute(f"SELECT * FROM redirects {where}", params).fetchall()
            conn.execute(f"DELETE FROM redirects {where}", params)
            if self._should_close():
                conn.commit()
            return [self._map_row(r) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def remove_all(self) -> list[RedirectRecord]:
        return self._remove_where("", ())

    def remove_by_host(self, host: str | None = None) -> list[RedirectRecord]:
        host = normalize_host(host)
        if host is None:
            return self._remove_where("WHERE host IS NULL", ())
        return self._remove_where("WHERE host = ?", (host,))

    def increment_hit_count(self, source_uri_path: str, host: str | None = None) -> None:
        source_hash = hash_path(normalize_source(source_uri_path))
        host = normalize_host(host)
        now = format_dt(self._clock.now_utc())

        conn = self._get_conn()
        try:
            if host is None:
                conn.execute(
                    "UPDATE redirects SET hit_counter = hit_counter + 1, last_hit = ? "
                    "WHERE source_uri_path_hash = ? AND host IS NULL",
                    (now, source_hash),
                )
            else:
                conn.execute(
                    "UPDATE redirects SET hit_counter = hit_counter + 1, last_hit = ? "
                    "WHERE source_uri_path_hash = ? AND host = ?",
                    (now, source_hash, host),
                )
            if self._should_close():
                conn.commit()
        finally:
            if self._should_close():
                conn.close()

    # --- Mapping ---

    def _to_row(self, record: RedirectRecord) -> dict[str, Any]:
        return {
            "id": str(record.id),
            "version": record.version,
            "source_uri_path": record.source_uri_path,
            "source_uri_path_hash": record.source_uri_path_hash,
            "target_uri_path": record.target_uri_path,
            "target_uri_path_hash": record.target_uri_path_hash,
            "status_code": record.status_code,
            "host": record.host,
            "hit_counter": record.hit_counter,
            "last_hit": format_dt(record.last_hit),
            "creator": record.creator,
            "comment": record.comment,
            "type": record.type.value,
            "start_date_time": format_dt(record.start_date_time),
            "end_date_time": format_dt(record.end_date_time),
            "created_at": format_dt(record.created_at),
            "modified_at": format_dt(record.modified_at),
        }

    def _map_row(self, row: dict[str, Any]) -> RedirectRecord:
        return RedirectRecord(
            id=UUID(row["id"]),
            version=row["version"],
            source_uri_path=row["source_uri_path"],
            source_uri_path_hash=row["source_uri_path_hash"],
            target_uri_path=row["target_uri_path"],
            target_uri_path_hash=row["target_uri_path_hash"],
            status_code=row["status_code"],
            host=row["host"],
            hit_counter=row["hit_counter"],
            last_hit=parse_dt(row["last_hit"]),
            creator=row["creator"],
            comment=row["comment"],
            type=RedirectType.coerce(row["type"]),
            start_date_time=parse_dt(row["start_date_time"]),
            end_date_time=parse_dt(row["end_date_time"]),
            created_at=parse_dt(row["created_at"]),  # type: ignore[arg-type]
            modified_at=parse_dt(row["modified_at"]),  # type: ignore[arg-type]
        )

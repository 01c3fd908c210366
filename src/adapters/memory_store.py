"""
In-memory redirect store.

Same contract as SQLiteRedirectStore, including version checks and
atomic() rollback. Used by tests and for throwaway sessions.

Records are copied on the way in and out, so mutating a returned record
has no effect until it is upserted.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC
from uuid import UUID

from src.adapters.clock import SystemClock
from src.components.redirects._impl import is_absolute_url
from src.components.redirects.models import (
    ConcurrencyConflictError,
    LazyRecords,
    RedirectRecord,
    RedirectType,
    hash_path,
    normalize_host,
    normalize_source,
)
from src.components.redirects.ports import ClockPort


def _sort_key(record: RedirectRecord) -> tuple[bool, str, str]:
    # NULL host first, like SQL ascending order
    return (record.host is not None, record.host or "", record.source_uri_path)


class InMemoryRedirectStore:
    """In-memory implementation of RedirectStorePort."""

    def __init__(self, clock: ClockPort | None = None) -> None:
        self._records: dict[UUID, RedirectRecord] = {}
        self._clock = clock or SystemClock()
        self._depth = 0

    def _snapshot(self) -> dict[UUID, RedirectRecord]:
        return {k: replace(v) for k, v in self._records.items()}

    @contextmanager
    def atomic(self) -> Iterator[InMemoryRedirectStore]:
        snapshot = self._snapshot() if self._depth == 0 else None
        self._depth += 1
        try:
            yield self
        except BaseException:
            if snapshot is not None:
                self._records = snapshot
            raise
        finally:
            self._depth -= 1

    # --- Queries ---

    def _select(self, predicate: Callable[[RedirectRecord], bool]) -> list[RedirectRecord]:
        return [replace(r) for r in self._records.values() if predicate(r)]

    def find_by_source_and_host(
        self, source_uri_path: str, host: str | None = None, fallback: bool = True
    ) -> RedirectRecord | None:
        source_hash = hash_path(normalize_source(source_uri_path))
        host = normalize_host(host)

        exact = self._select(
            lambda r: r.source_uri_path_hash == source_hash and r.host == host
        )
        if exact:
            return exact[0]
        if not fallback or host is None:
            return None
        default = self._select(
            lambda r: r.source_uri_path_hash == source_hash and r.host is None
        )
        return default[0] if default else None

    def find_by_target_and_host(
        self, target_uri_path: str, host: str | None = None
    ) -> list[RedirectRecord]:
        target = normalize_source(target_uri_path)
        target_hash = hash_path(target)
        host = normalize_host(host)

        if host is None:
            matches = self._select(
                lambda r: r.target_uri_path_hash == target_hash and r.host is None
            )
        else:
            suffix = f"/{host}/{target}"
            matches = self._select(
                lambda r: (
                    r.target_uri_path_hash == target_hash and r.host in (host, None)
                )
                or (is_absolute_url(r.target_uri_path) and r.target_uri_path.endswith(suffix))
            )
        return sorted(matches, key=lambda r: (r.source_uri_path, r.host or ""))

    def find_all(
        self,
        host: str | None = None,
        only_active: bool = False,
        type: RedirectType | str | None = None,
    ) -> LazyRecords:
        host = normalize_host(host)
        return self._iterate(
            lambda r: host is None or r.host == host, only_active, type
        )

    def find_all_without_host(
        self,
        only_active: bool = False,
        type: RedirectType | str | None = None,
    ) -> LazyRecords:
        return self._iterate(lambda r: r.host is None, only_active, type)

    def _iterate(
        self,
        predicate: Callable[[RedirectRecord], bool],
        only_active: bool,
        type: RedirectType | str | None,
    ) -> LazyRecords:
        wanted_type = RedirectType.coerce(type) if type else None

        def iterate() -> Iterator[RedirectRecord]:
            now = self._clock.now_utc()
            records = sorted(self._records.values(), key=_sort_key)
            for record in records:
                if not predicate(record):
                    continue
                if wanted_type is not None and record.type != wanted_type:
                    continue
                if only_active and not record.is_active(now):
                    continue
                yield replace(record)

        return LazyRecords(iterate)

    def find_distinct_hosts(self) -> set[str]:
        return {r.host for r in self._records.values() if r.host is not None}

    # --- Writes ---

    def upsert(self, record: RedirectRecord) -> RedirectRecord:
        stored = self._records.get(record.id)
        if record.version == 0:
            clash = stored is not None or any(
                r.source_uri_path_hash == record.source_uri_path_hash and r.host == record.host
                for r in self._records.values()
            )
            if clash:
                raise ConcurrencyConflictError(record.id, record.version)
        else:
            if stored is None or stored.version != record.version:
                raise ConcurrencyConflictError(record.id, record.version)
            clash = any(
                r.id != record.id
                and r.source_uri_path_hash == record.source_uri_path_hash
                and r.host == record.host
                for r in self._records.values()
            )
            if clash:
                raise ConcurrencyConflictError(record.id, record.version)

        record.version += 1
        self._records[record.id] = replace(record)
        return record

    def remove(self, record: RedirectRecord) -> None:
        stored = self._records.get(record.id)
        if stored is None or stored.version != record.version:
            raise ConcurrencyConflictError(record.id, record.version)
        del self._records[record.id]

    def remove_all(self) -> list[RedirectRecord]:
        removed = list(self._records.values())
        self._records.clear()
        return removed

    def remove_by_host(self, host: str | None = None) -> list[RedirectRecord]:
        host = normalize_host(host)
        removed = [r for r in self._records.values() if r.host == host]
        for record in removed:
            del self._records[record.id]
        return removed

    def increment_hit_count(self, source_uri_path: str, host: str | None = None) -> None:
        source_hash = hash_path(normalize_source(source_uri_path))
        host = normalize_host(host)
        for record in self._records.values():
            if record.source_uri_path_hash == source_hash and record.host == host:
                record.hit_counter += 1
                record.last_hit = self._clock.now_utc().astimezone(UTC)

"""
Redirects component port definitions.

The store port is the query surface the consistency engine relies on; the
remaining ports are the collaborators notified after writes.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Protocol

from .models import LazyRecords, RedirectRecord, RedirectType


class RedirectStorePort(Protocol):
    """
    Keyed storage for redirect records.

    Invariants:
    - I1: at most one record per (source_uri_path_hash, host)
    - I2: upsert is conditioned on the record version (optimistic locking)
    """

    def find_by_source_and_host(
        self, source_uri_path: str, host: str | None = None, fallback: bool = True
    ) -> RedirectRecord | None:
        """Exact (source, host) match; with fallback, a null-host record otherwise."""
        ...

    def find_by_target_and_host(
        self, target_uri_path: str, host: str | None = None
    ) -> list[RedirectRecord]:
        """Records redirecting to target on host (or null host), by source ascending."""
        ...

    def find_all(
        self,
        host: str | None = None,
        only_active: bool = False,
        type: RedirectType | str | None = None,
    ) -> LazyRecords:
        """Lazy sequence ordered by (host, source_uri_path)."""
        ...

    def find_all_without_host(
        self,
        only_active: bool = False,
        type: RedirectType | str | None = None,
    ) -> LazyRecords:
        """Lazy sequence of null-host records ordered by source_uri_path."""
        ...

    def find_distinct_hosts(self) -> set[str]:
        """Hosts that have at least one host-specific record."""
        ...

    def upsert(self, record: RedirectRecord) -> RedirectRecord:
        """Insert or update; raises ConcurrencyConflictError on a stale version."""
        ...

    def remove(self, record: RedirectRecord) -> None:
        ...

    def remove_all(self) -> list[RedirectRecord]:
        """Remove everything, returning what was removed."""
        ...

    def remove_by_host(self, host: str | None = None) -> list[RedirectRecord]:
        """Remove every record for host (None means null-host records)."""
        ...

    def increment_hit_count(self, source_uri_path: str, host: str | None = None) -> None:
        """Atomic counter bump on the exact (source, host) bucket."""
        ...

    def atomic(self) -> AbstractContextManager[Any]:
        """All writes inside the block commit together or not at all."""
        ...


class CacheInvalidationPort(Protocol):
    """Downstream response cache."""

    def flush_for_path(self, path: str) -> None:
        ...


class ChangeNotifierPort(Protocol):
    """Receives every batch of created or rewritten redirects."""

    def notify_created(self, records: list[RedirectRecord]) -> None:
        ...


class ErrorReporterPort(Protocol):
    """Sink for failures in best-effort operations."""

    def report(self, error: BaseException | str) -> None:
        ...


class ClockPort(Protocol):
    def now_utc(self) -> datetime:
        """Return current UTC time."""
        ...

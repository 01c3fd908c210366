"""
Redirect consistency engine and orchestration service.

Every insertion keeps the redirect graph flat:

- one rule per (source, host)
- no chains: A -> B followed by B -> C leaves A -> C and B -> C
- no cycles: adding A -> B while B -> A exists removes B -> A

Key behaviors:
- Host-specific rules win over host-less (fallback) rules on lookup
- Absolute targets keep their scheme/host when a relative rule rewrites them
- Writes are optimistic; a stale version re-runs the whole insertion
- Hit counting never raises
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from .models import (
    ConcurrencyConflictError,
    RedirectConflictError,
    RedirectRecord,
    RedirectType,
    RedirectView,
    normalize_host,
    normalize_source,
)
from .ports import (
    CacheInvalidationPort,
    ChangeNotifierPort,
    ClockPort,
    ErrorReporterPort,
    RedirectStorePort,
)

logger = logging.getLogger(__name__)

ABSOLUTE_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)

ConflictPolicy = Literal["replace", "reject"]


# --- Configuration ---


@dataclass(frozen=True)
class RedirectConfig:
    """Redirect configuration from rules."""

    default_status_code: int = 301
    conflict_policy: ConflictPolicy = "replace"
    max_write_attempts: int = 3


DEFAULT_CONFIG = RedirectConfig()


# --- Path Helpers ---


def is_absolute_url(path: str) -> bool:
    """Check if a target starts with http:// or https://."""
    return ABSOLUTE_URL_PATTERN.match(path) is not None


def rebase_absolute_target(url: str, old_path: str, new_path: str) -> str:
    """
    Replace the last whole-segment occurrence of old_path in the URL path.

    The scheme and host prefix are never touched; "/old" matches in
    "/old/child" and "/x/old" but not in "/older".
    """
    scheme_end = url.index("://") + 3
    path_start = url.find("/", scheme_end)
    if path_start == -1:
        return url

    path = url[path_start:]
    needle = f"/{old_path}"
    index = path.rfind(needle)
    while index != -1:
        end = index + len(needle)
        if end == len(path) or path[end] in "/?#":
            return url[:path_start] + path[: index + 1] + new_path + path[end:]
        index = path.rfind(needle, 0, end - 1)
    return url


# --- Consistency Engine ---


class ConsistencyEngine:
    """
    Insertion-time chain repair.

    repair() must run before the new record is persisted. It removes
    records the new one supersedes and rewrites records that redirect into
    the new record's source.
    """

    def __init__(
        self,
        store: RedirectStorePort,
        cache: CacheInvalidationPort,
        clock: ClockPort | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._clock = clock

    def _now(self) -> datetime | None:
        return self._clock.now_utc() if self._clock else None

    def _remove(self, record: RedirectRecord, reason: str) -> None:
        self._store.remove(record)
        self._cache.flush_for_path(record.source_uri_path)
        logger.info(
            "Removed redirect %s -> %s (host=%s): %s",
            record.source_uri_path,
            record.target_uri_path,
            record.host,
            reason,
        )

    def repair(self, new_record: RedirectRecord) -> list[RedirectRecord]:
        """
        Repair the graph around new_record and return rewritten records.

        The new record itself is not part of the result.
        """
        updated: list[RedirectRecord] = []

        # 1. Same source on the same host (exact, no fallback)
        existing = self._store.find_by_source_and_host(
            new_record.source_uri_path, new_record.host, fallback=False
        )
        if existing is not None:
            self._remove(existing, "replaced by new rule for the same source")

        # 2. The new target is itself a redirect source
        target_as_source = self._store.find_by_source_and_host(
            new_record.target_uri_path, new_record.host, fallback=False
        )
        if target_as_source is not None:
            self._remove(target_as_source, "target of new rule was a redirect source")

        # 3. Records pointing into the new source: compress or break cycles
        new_target_is_absolute = is_absolute_url(new_record.target_uri_path)
        new_target_as_source = normalize_source(new_record.target_uri_path)
        obsolete_records = sorted(
            self._store.find_by_target_and_host(new_record.source_uri_path, new_record.host),
            key=lambda r: (r.source_uri_path, r.host or ""),
        )
        for obsolete in obsolete_records:
            if obsolete.source_uri_path == new_target_as_source:
                self._remove(obsolete, "would form a cycle with the new rule")
                continue

            if not new_target_is_absolute and is_absolute_url(obsolete.target_uri_path):
                target = rebase_absolute_target(
                    obsolete.target_uri_path,
                    new_record.source_uri_path,
                    new_record.target_uri_path,
                )
            else:
                target = new_record.target_uri_path

            obsolete.update(target, new_record.status_code, self._now())
            self._store.upsert(obsolete)
            self._cache.flush_for_path(obsolete.source_uri_path)
            logger.info(
                "Compressed redirect chain: %s now points to %s (host=%s)",
                obsolete.source_uri_path,
                obsolete.target_uri_path,
                obsolete.host,
            )
            updated.append(obsolete)

        return updated


# --- Redirect Service ---


class RedirectService:
    """
    Redirect service.

    Public entry point: builds candidate records, runs the consistency
    engine, persists, and notifies collaborators.
    """

    def __init__(
        self,
        store: RedirectStorePort,
        cache: CacheInvalidationPort | None = None,
        notifier: ChangeNotifierPort | None = None,
        error_reporter: ErrorReporterPort | None = None,
        clock: ClockPort | None = None,
        config: RedirectConfig | None = None,
    ) -> None:
        """Initialize service."""
        from src.adapters.dev_notify import (
            LoggingCacheInvalidator,
            LoggingChangeNotifier,
            LoggingErrorReporter,
        )

        self._store = store
        self._cache = cache or LoggingCacheInvalidator()
        self._notifier = notifier or LoggingChangeNotifier()
        self._error_reporter = error_reporter or LoggingErrorReporter()
        self._clock = clock
        self._config = config or DEFAULT_CONFIG
        self._engine = ConsistencyEngine(store, self._cache, clock)

    @property
    def config(self) -> RedirectConfig:
        return self._config

    def _now(self) -> datetime | None:
        return self._clock.now_utc() if self._clock else None

    def add_redirect(
        self,
        source: str,
        target: str,
        status_code: int | None = None,
        hosts: Iterable[str] = (),
        creator: str | None = None,
        comment: str | None = None,
        type: RedirectType | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[RedirectRecord]:
        """
        Add a redirect for each host (or once without host).

        Returns new and rewritten records; the change notifier receives the
        same list exactly once.
        """
        status = self._config.default_status_code if status_code is None else status_code
        host_list: list[str | None] = sorted(
            {h for h in (normalize_host(h) for h in hosts) if h is not None}
        )
        if not host_list:
            host_list = [None]

        records: list[RedirectRecord] = []
        for host in host_list:
            records.extend(
                self._add_for_host(
                    source, target, status, host, creator, comment, type, start, end
                )
            )

        self._notifier.notify_created(records)
        return records

    def _add_for_host(
        self,
        source: str,
        target: str,
        status_code: int,
        host: str | None,
        creator: str | None,
        comment: str | None,
        type: RedirectType | str | None,
        start: datetime | None,
        end: datetime | None,
    ) -> list[RedirectRecord]:
        attempt = 1
        while True:
            candidate = RedirectRecord.create(
                source,
                target,
                status_code,
                host=host,
                creator=creator,
                comment=comment,
                type=type,
                start=start,
                end=end,
                now=self._now(),
            )
            try:
                with self._store.atomic():
                    self._check_conflict(candidate)
                    repaired = self._engine.repair(candidate)
                    self._store.upsert(candidate)
            except ConcurrencyConflictError:
                if attempt >= self._config.max_write_attempts:
                    raise
                logger.warning(
                    "Concurrent change while adding %s (host=%s), retrying (attempt %d/%d)",
                    candidate.source_uri_path,
                    host,
                    attempt,
                    self._config.max_write_attempts,
                )
                attempt += 1
                continue

            self._cache.flush_for_path(candidate.source_uri_path)
            return [candidate, *repaired]

    def _check_conflict(self, candidate: RedirectRecord) -> None:
        if self._config.conflict_policy != "reject":
            return
        existing = self._store.find_by_source_and_host(
            candidate.source_uri_path, candidate.host, fallback=False
        )
        if existing is None:
            return
        if (
            existing.target_uri_path != candidate.target_uri_path
            or existing.status_code != candidate.status_code
        ):
            raise RedirectConflictError(candidate.source_uri_path, candidate.host)

    def remove_redirect(self, source: str, host: str | None = None) -> bool:
        """
        Remove the rule serving (source, host), falling back to the host-less
        rule like lookup() does. Returns False if none existed.
        """
        record = self._store.find_by_source_and_host(source, normalize_host(host))
        if record is None:
            return False
        self._store.remove(record)
        self._cache.flush_for_path(record.source_uri_path)
        return True

    def remove_all(self) -> int:
        removed = self._store.remove_all()
        self._flush_removed(removed)
        return len(removed)

    def remove_by_host(self, host: str | None = None) -> int:
        removed = self._store.remove_by_host(normalize_host(host))
        self._flush_removed(removed)
        return len(removed)

    def _flush_removed(self, removed: list[RedirectRecord]) -> None:
        for path in sorted({r.source_uri_path for r in removed}):
            self._cache.flush_for_path(path)

    def increment_hit(self, record: RedirectRecord | RedirectView) -> None:
        """Best-effort hit counting; failures are reported, never raised."""
        try:
            self._store.increment_hit_count(record.source_uri_path, record.host)
        except Exception as exc:
            logger.exception(
                "Failed to increment hit counter for %s (host=%s)",
                record.source_uri_path,
                record.host,
            )
            self._error_reporter.report(exc)

    def lookup(
        self, source: str, host: str | None = None, fallback: bool = True
    ) -> RedirectView | None:
        record = self._store.find_by_source_and_host(source, normalize_host(host), fallback)
        return RedirectView.from_record(record) if record else None

    def list_redirects(
        self,
        host: str | None = None,
        only_active: bool = False,
        type: RedirectType | str | None = None,
    ) -> Iterator[RedirectView]:
        for record in self._store.find_all(normalize_host(host), only_active, type):
            yield RedirectView.from_record(record)

    def list_redirects_without_host(
        self,
        only_active: bool = False,
        type: RedirectType | str | None = None,
    ) -> Iterator[RedirectView]:
        """Only the host-less rules, ordered by source path."""
        for record in self._store.find_all_without_host(only_active, type):
            yield RedirectView.from_record(record)

    def distinct_hosts(self) -> set[str]:
        return self._store.find_distinct_hosts()


# --- Factory ---


def create_redirect_service(
    store: RedirectStorePort,
    cache: CacheInvalidationPort | None = None,
    notifier: ChangeNotifierPort | None = None,
    error_reporter: ErrorReporterPort | None = None,
    config: RedirectConfig | None = None,
) -> RedirectService:
    """Create a RedirectService."""
    return RedirectService(
        store=store,
        cache=cache,
        notifier=notifier,
        error_reporter=error_reporter,
        config=config,
    )

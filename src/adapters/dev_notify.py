"""
Dev collaborator adapters.

Log cache flushes, change notifications and reported errors instead of
talking to real downstream services. Each adapter keeps what it received
in memory for test assertions.

Production wires the cache to the HTTP response cache and the notifier to
the change-event bus; these are the defaults when nothing is injected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from src.components.redirects.models import RedirectRecord

logger = logging.getLogger(__name__)


@dataclass
class LoggingCacheInvalidator:
    """Implements CacheInvalidationPort by logging flushed paths."""

    flushed_paths: list[str] = field(default_factory=list)
    log_level: int = logging.DEBUG

    def flush_for_path(self, path: str) -> None:
        self.flushed_paths.append(path)
        logger.log(self.log_level, "Cache flush requested for path '%s'", path)


@dataclass
class LoggingChangeNotifier:
    """Implements ChangeNotifierPort by logging each batch."""

    batches: list[list[RedirectRecord]] = field(default_factory=list)
    log_level: int = logging.INFO

    def notify_created(self, records: list[RedirectRecord]) -> None:
        self.batches.append(list(records))
        logger.log(self.log_level, "Redirects created or updated: %d", len(records))
        for record in records:
            logger.debug(
                "  %s -> %s [%d] host=%s",
                record.source_uri_path,
                record.target_uri_path,
                record.status_code,
                record.host,
            )


@dataclass
class LoggingErrorReporter:
    """Implements ErrorReporterPort by logging at ERROR."""

    reported: list[BaseException | str] = field(default_factory=list)

    def report(self, error: BaseException | str) -> None:
        self.reported.append(error)
        logger.error("Best-effort operation failed: %s", error)

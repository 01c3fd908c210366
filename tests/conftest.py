import os
from datetime import UTC, datetime

import pytest

from src.adapters.clock import FixedClock
from src.adapters.dev_notify import (
    LoggingCacheInvalidator,
    LoggingChangeNotifier,
    LoggingErrorReporter,
)
from src.adapters.memory_store import InMemoryRedirectStore
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite.repos import SQLiteRedirectStore
from src.components.redirects import RedirectService

FIXED_NOW = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(FIXED_NOW)


@pytest.fixture
def cache() -> LoggingCacheInvalidator:
    return LoggingCacheInvalidator()


@pytest.fixture
def notifier() -> LoggingChangeNotifier:
    return LoggingChangeNotifier()


@pytest.fixture
def error_reporter() -> LoggingErrorReporter:
    return LoggingErrorReporter()


@pytest.fixture
def memory_store(clock: FixedClock) -> InMemoryRedirectStore:
    """Fresh in-memory store for each test."""
    return InMemoryRedirectStore(clock=clock)


@pytest.fixture
def service(
    memory_store: InMemoryRedirectStore,
    cache: LoggingCacheInvalidator,
    notifier: LoggingChangeNotifier,
    error_reporter: LoggingErrorReporter,
    clock: FixedClock,
) -> RedirectService:
    """Service over the in-memory store with recording collaborators."""
    return RedirectService(
        store=memory_store,
        cache=cache,
        notifier=notifier,
        error_reporter=error_reporter,
        clock=clock,
    )


@pytest.fixture
def db_path(tmp_path) -> str:
    """Migrated SQLite database in a temp directory."""
    path = os.path.join(str(tmp_path), "redirects.db")
    SQLiteMigrator(path).run_migrations()
    return path


@pytest.fixture
def sqlite_store(db_path: str, clock: FixedClock) -> SQLiteRedirectStore:
    return SQLiteRedirectStore(db_path, clock=clock)

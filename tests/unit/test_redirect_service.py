"""
Tests for RedirectService.

Test assertions:
- One rule per (source, host) after any sequence of insertions
- No two-hop chains survive an insertion
- Host-specific rules win over host-less ones on lookup
- Change notification fires once per add_redirect call
- Stale writes re-run the whole insertion, bounded by max_write_attempts
- Hit counting never raises
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from src.adapters.clock import FixedClock
from src.adapters.dev_notify import (
    LoggingCacheInvalidator,
    LoggingChangeNotifier,
    LoggingErrorReporter,
)
from src.adapters.memory_store import InMemoryRedirectStore
from src.components.redirects import (
    ConcurrencyConflictError,
    RedirectConfig,
    RedirectConflictError,
    RedirectRecord,
    RedirectService,
    RedirectType,
    RedirectValidationError,
    RedirectView,
    create_redirect_service,
)

# --- Flaky Store ---


class FlakyRedirectStore(InMemoryRedirectStore):
    """In-memory store whose first N upserts fail with a stale version."""

    def __init__(self, failures: int, clock: FixedClock | None = None) -> None:
        super().__init__(clock=clock)
        self.failures = failures
        self.upsert_calls = 0

    def upsert(self, record: RedirectRecord) -> RedirectRecord:
        self.upsert_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConcurrencyConflictError(record.id, record.version)
        return super().upsert(record)


def _targets(service: RedirectService) -> dict[tuple[str, str | None], str]:
    return {(r.source_uri_path, r.host): r.target_uri_path for r in service.list_redirects()}


# --- Add Redirect Tests ---


class TestAddRedirect:
    """Test add_redirect orchestration."""

    def test_default_status_code(self, service: RedirectService) -> None:
        records = service.add_redirect("a", "b")
        assert records[0].status_code == 301

    def test_configured_default_status_code(self, memory_store: InMemoryRedirectStore) -> None:
        service = RedirectService(
            store=memory_store, config=RedirectConfig(default_status_code=302)
        )
        records = service.add_redirect("a", "b")
        assert records[0].status_code == 302

    def test_explicit_status_code(self, service: RedirectService) -> None:
        records = service.add_redirect("a", "b", status_code=307)
        assert records[0].status_code == 307

    def test_no_hosts_creates_host_less_rule(self, service: RedirectService) -> None:
        records = service.add_redirect("/a/", "/b")
        assert len(records) == 1
        assert records[0].host is None
        assert records[0].source_uri_path == "a"
        assert records[0].version == 1

    def test_one_rule_per_host_sorted_and_deduplicated(self, service: RedirectService) -> None:
        records = service.add_redirect(
            "a", "b", hosts=["b.example", "a.example", "b.example", " "]
        )
        assert [r.host for r in records] == ["a.example", "b.example"]

    def test_metadata_stored(self, service: RedirectService) -> None:
        service.add_redirect("a", "b", creator="editor", comment="moved", type="manual")
        view = service.lookup("a")
        assert view is not None
        assert view.creator == "editor"
        assert view.comment == "moved"
        assert view.type == RedirectType.MANUAL

    def test_invalid_status_not_persisted(self, service: RedirectService) -> None:
        with pytest.raises(RedirectValidationError):
            service.add_redirect("a", "b", status_code=600)
        assert list(service.list_redirects()) == []

    def test_self_redirect_rejected(self, service: RedirectService) -> None:
        with pytest.raises(RedirectValidationError):
            service.add_redirect("a", "/a/")

    def test_uniqueness_per_source_and_host(self, service: RedirectService) -> None:
        service.add_redirect("a", "b")
        service.add_redirect("a", "c")
        service.add_redirect("a", "d", hosts=["example.com"])
        service.add_redirect("a", "e", hosts=["example.com"])

        assert _targets(service) == {("a", None): "c", ("a", "example.com"): "e"}

    def test_candidate_path_flushed(
        self, service: RedirectService, cache: LoggingCacheInvalidator
    ) -> None:
        service.add_redirect("/a/", "b")
        assert cache.flushed_paths[-1] == "a"


class TestChainScenarios:
    """End-to-end chain and cycle scenarios."""

    def test_chain_compressed_to_single_hop(self, service: RedirectService) -> None:
        service.add_redirect("old/product", "productB")
        service.add_redirect("productB", "product/B")

        view = service.lookup("old/product")
        assert view is not None
        assert view.target_uri_path == "product/B"

    def test_no_two_hop_chains_remain(self, service: RedirectService) -> None:
        service.add_redirect("a", "b")
        service.add_redirect("b", "c")
        service.add_redirect("c", "d")
        service.add_redirect("x", "a")

        targets = _targets(service)
        sources = {source for source, _ in targets}
        assert all(target not in sources for target in targets.values())
        # x -> a supersedes the rule for a itself
        assert ("a", None) not in targets
        assert targets[("x", None)] == "a"
        assert targets[("b", None)] == "d"
        assert targets[("c", None)] == "d"

    def test_cycle_removes_reverse_rule(self, service: RedirectService) -> None:
        service.add_redirect("b", "a")
        service.add_redirect("a", "b")

        assert service.lookup("b") is None
        view = service.lookup("a")
        assert view is not None
        assert view.target_uri_path == "b"

    def test_absolute_target_host_scoping(self, service: RedirectService) -> None:
        service.add_redirect("old/product", "https://www.example.org/productA")
        service.add_redirect("productA", "product/A")

        view = service.lookup("old/product")
        assert view is not None
        assert view.target_uri_path == "https://www.example.org/productA"

        service.add_redirect("productA", "product/A", hosts=["www.example.org"])

        view = service.lookup("old/product")
        assert view is not None
        assert view.target_uri_path == "https://www.example.org/product/A"

    def test_gone_status_propagates(self, service: RedirectService) -> None:
        service.add_redirect("a", "b")
        service.add_redirect("b", "c", status_code=410)

        view = service.lookup("a")
        assert view is not None
        assert view.status_code == 410


class TestNotification:
    """Test batch change notification."""

    def test_notified_once_with_new_and_repaired(
        self, service: RedirectService, notifier: LoggingChangeNotifier
    ) -> None:
        service.add_redirect("a", "b")
        notifier.batches.clear()

        records = service.add_redirect("b", "c", hosts=["one.example", "two.example"])

        assert len(notifier.batches) == 1
        batch = notifier.batches[0]
        assert batch == records
        # one.example rewrites the host-less a -> b; two.example finds nothing left
        assert [(r.source_uri_path, r.host) for r in batch] == [
            ("b", "one.example"),
            ("a", None),
            ("b", "two.example"),
        ]

    def test_notifier_not_called_on_validation_error(
        self, service: RedirectService, notifier: LoggingChangeNotifier
    ) -> None:
        with pytest.raises(RedirectValidationError):
            service.add_redirect("a", "b", status_code=42)
        assert notifier.batches == []


class TestConflictPolicy:
    """Test replace and reject policies."""

    def test_reject_differing_rule(self, memory_store: InMemoryRedirectStore) -> None:
        service = RedirectService(
            store=memory_store, config=RedirectConfig(conflict_policy="reject")
        )
        service.add_redirect("a", "b")

        with pytest.raises(RedirectConflictError) as exc_info:
            service.add_redirect("a", "c")

        assert exc_info.value.code == "conflict"
        view = service.lookup("a")
        assert view is not None
        assert view.target_uri_path == "b"

    def test_reject_allows_identical_rule(self, memory_store: InMemoryRedirectStore) -> None:
        service = RedirectService(
            store=memory_store, config=RedirectConfig(conflict_policy="reject")
        )
        service.add_redirect("a", "b")
        service.add_redirect("a", "b")
        assert len(list(service.list_redirects())) == 1

    def test_reject_checks_exact_host_only(self, memory_store: InMemoryRedirectStore) -> None:
        service = RedirectService(
            store=memory_store, config=RedirectConfig(conflict_policy="reject")
        )
        service.add_redirect("a", "b")
        service.add_redirect("a", "c", hosts=["example.com"])
        assert len(list(service.list_redirects())) == 2


class TestRetry:
    """Test optimistic write retries."""

    def test_retries_after_stale_write(self, clock: FixedClock) -> None:
        store = FlakyRedirectStore(failures=1, clock=clock)
        service = RedirectService(store=store, config=RedirectConfig(max_write_attempts=3))

        records = service.add_redirect("a", "b")

        assert len(records) == 1
        assert store.upsert_calls == 2
        assert service.lookup("a") is not None

    def test_gives_up_after_max_attempts(self, clock: FixedClock) -> None:
        store = FlakyRedirectStore(failures=5, clock=clock)
        notifier = LoggingChangeNotifier()
        service = RedirectService(
            store=store, notifier=notifier, config=RedirectConfig(max_write_attempts=2)
        )

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            service.add_redirect("a", "b")

        assert exc_info.value.retryable is True
        assert store.upsert_calls == 2
        assert notifier.batches == []

    def test_failed_attempt_rolled_back(self, clock: FixedClock) -> None:
        store = FlakyRedirectStore(failures=0, clock=clock)
        service = RedirectService(store=store, config=RedirectConfig(max_write_attempts=1))
        service.add_redirect("b", "c")

        # The removal of b -> c in step 2 must be undone when the upsert fails
        store.failures = 1
        with pytest.raises(ConcurrencyConflictError):
            service.add_redirect("a", "b")

        view = service.lookup("b")
        assert view is not None
        assert view.target_uri_path == "c"
        assert service.lookup("a") is None


# --- Removal Tests ---


class TestRemoval:
    """Test removal passthroughs."""

    def test_remove_redirect_falls_back_to_host_less(
        self, service: RedirectService, cache: LoggingCacheInvalidator
    ) -> None:
        service.add_redirect("a", "b")
        cache.flushed_paths.clear()

        assert service.remove_redirect("a", "example.com") is True
        assert service.lookup("a") is None
        assert cache.flushed_paths == ["a"]

    def test_remove_redirect_prefers_host_rule(self, service: RedirectService) -> None:
        service.add_redirect("a", "b")
        service.add_redirect("a", "c", hosts=["example.com"])

        assert service.remove_redirect("/a/", "example.com") is True

        assert service.lookup("a", "example.com", fallback=False) is None
        remaining = service.lookup("a")
        assert remaining is not None
        assert remaining.target_uri_path == "b"

    def test_remove_redirect_host_less_ignores_host_rules(
        self, service: RedirectService
    ) -> None:
        service.add_redirect("a", "c", hosts=["example.com"])

        assert service.remove_redirect("a") is False
        assert service.lookup("a", "example.com") is not None

    def test_remove_missing_returns_false(self, service: RedirectService) -> None:
        assert service.remove_redirect("nothing") is False

    def test_remove_all(self, service: RedirectService, cache: LoggingCacheInvalidator) -> None:
        service.add_redirect("a", "x")
        service.add_redirect("b", "y", hosts=["h1", "h2"])
        cache.flushed_paths.clear()

        assert service.remove_all() == 3
        assert list(service.list_redirects()) == []
        assert cache.flushed_paths == ["a", "b"]

    def test_remove_by_host(self, service: RedirectService) -> None:
        service.add_redirect("a", "x")
        service.add_redirect("b", "y", hosts=["h1", "h2"])

        assert service.remove_by_host("h1") == 1
        assert service.distinct_hosts() == {"h2"}

    def test_remove_by_host_none_removes_host_less(self, service: RedirectService) -> None:
        service.add_redirect("a", "x")
        service.add_redirect("b", "y", hosts=["h1"])

        assert service.remove_by_host(None) == 1
        assert service.lookup("a") is None
        assert service.lookup("b", "h1") is not None


# --- Hit Counting Tests ---


class TestIncrementHit:
    """Test best-effort hit counting."""

    def test_increments_counter(self, service: RedirectService, clock: FixedClock) -> None:
        service.add_redirect("a", "b")
        view = service.lookup("a")
        assert view is not None

        service.increment_hit(view)
        service.increment_hit(view)

        counted = service.lookup("a")
        assert counted is not None
        assert counted.hit_counter == 2
        assert counted.last_hit == clock.now_utc()

    def test_failure_reported_not_raised(self) -> None:
        store = MagicMock()
        store.increment_hit_count.side_effect = RuntimeError("database is locked")
        reporter = LoggingErrorReporter()
        service = RedirectService(store=store, error_reporter=reporter)

        service.increment_hit(RedirectRecord.create("a", "b", 301))

        assert len(reporter.reported) == 1
        assert isinstance(reporter.reported[0], RuntimeError)


# --- Query Tests ---


class TestQueries:
    """Test lookup, listing and hosts."""

    def test_lookup_returns_view(self, service: RedirectService) -> None:
        service.add_redirect("a", "b")
        assert isinstance(service.lookup("a"), RedirectView)

    def test_lookup_missing_returns_none(self, service: RedirectService) -> None:
        assert service.lookup("missing") is None

    def test_host_fallback_precedence(self, service: RedirectService) -> None:
        service.add_redirect("a", "b")
        service.add_redirect("a", "c", hosts=["example.com"])

        specific = service.lookup("/a", "example.com")
        assert specific is not None
        assert specific.target_uri_path == "c"

        fallback = service.lookup("a", "other.com")
        assert fallback is not None
        assert fallback.target_uri_path == "b"

        assert service.lookup("a", "other.com", fallback=False) is None

    def test_lookup_is_idempotent(self, service: RedirectService) -> None:
        service.add_redirect("a", "b", hosts=["example.com"])
        assert service.lookup("a", "example.com") == service.lookup("a", "example.com")

    def test_list_ordering_host_less_first(self, service: RedirectService) -> None:
        service.add_redirect("z", "1", hosts=["b.example"])
        service.add_redirect("y", "2", hosts=["a.example"])
        service.add_redirect("x", "3")

        listed = [(v.host, v.source_uri_path) for v in service.list_redirects()]
        assert listed == [(None, "x"), ("a.example", "y"), ("b.example", "z")]

    def test_list_only_active(self, service: RedirectService, clock: FixedClock) -> None:
        now = clock.now_utc()
        service.add_redirect("past", "x", end=now - timedelta(days=1))
        service.add_redirect("future", "x", start=now + timedelta(days=1))
        service.add_redirect("current", "x", start=now, end=now + timedelta(days=1))

        active = [v.source_uri_path for v in service.list_redirects(only_active=True)]
        assert active == ["current"]

    def test_list_by_type(self, service: RedirectService) -> None:
        service.add_redirect("a", "x", type="manual")
        service.add_redirect("b", "x")

        manual = [v.source_uri_path for v in service.list_redirects(type="manual")]
        assert manual == ["a"]

    def test_list_without_host(self, service: RedirectService) -> None:
        service.add_redirect("c", "d", hosts=["example.com"])
        service.add_redirect("b", "x")
        service.add_redirect("a", "x", type="manual")

        listed = [(v.host, v.source_uri_path) for v in service.list_redirects_without_host()]
        assert listed == [(None, "a"), (None, "b")]

        manual = [v.source_uri_path for v in service.list_redirects_without_host(type="manual")]
        assert manual == ["a"]

    def test_list_without_host_only_active(
        self, service: RedirectService, clock: FixedClock
    ) -> None:
        now = clock.now_utc()
        service.add_redirect("expired", "x", end=now)
        service.add_redirect("live", "x")
        service.add_redirect("scoped", "x", hosts=["example.com"])

        active = [
            v.source_uri_path for v in service.list_redirects_without_host(only_active=True)
        ]
        assert active == ["live"]

    def test_distinct_hosts(self, service: RedirectService) -> None:
        service.add_redirect("a", "x")
        service.add_redirect("b", "y", hosts=["h1", "h2"])
        service.add_redirect("c", "z", hosts=["h1"])

        assert service.distinct_hosts() == {"h1", "h2"}


class TestFactory:
    """Test create_redirect_service."""

    def test_defaults(self, memory_store: InMemoryRedirectStore) -> None:
        service = create_redirect_service(memory_store)
        assert service.config == RedirectConfig()

    def test_custom_config(self, memory_store: InMemoryRedirectStore) -> None:
        config = RedirectConfig(default_status_code=308)
        service = create_redirect_service(memory_store, config=config)
        assert service.config.default_status_code == 308

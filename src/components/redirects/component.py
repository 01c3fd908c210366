"""
Redirects component - entry points.

Wraps RedirectService so callers (API routes, CLI) get output objects with
error details instead of exceptions.

Invariants:
- I1: One rule per (source, host)
- I2: No redirect chains survive an insertion
- I3: No redirect cycles survive an insertion
- I4: Status code within 100-599
"""

from __future__ import annotations

from src.rules.models import RedirectRules

from ._impl import RedirectConfig, RedirectService
from .models import (
    AddRedirectInput,
    HostListOutput,
    ListHostsInput,
    ListRedirectsInput,
    LookupRedirectInput,
    RedirectError,
    RedirectErrorDetail,
    RedirectListOutput,
    RedirectOperationOutput,
    RedirectOutput,
    RedirectView,
    RemoveRedirectInput,
)
from .ports import (
    CacheInvalidationPort,
    ChangeNotifierPort,
    ClockPort,
    ErrorReporterPort,
    RedirectStorePort,
)


def build_config(rules: RedirectRules | None) -> RedirectConfig:
    """Build redirect config from the rules file section."""
    if rules is None:
        return RedirectConfig()

    return RedirectConfig(
        default_status_code=rules.default_status_code,
        conflict_policy=rules.conflict_policy,
        max_write_attempts=rules.max_write_attempts,
    )


def _create_service(
    store: RedirectStorePort,
    rules: RedirectRules | None,
    cache: CacheInvalidationPort | None = None,
    notifier: ChangeNotifierPort | None = None,
    error_reporter: ErrorReporterPort | None = None,
    clock: ClockPort | None = None,
) -> RedirectService:
    return RedirectService(
        store=store,
        cache=cache,
        notifier=notifier,
        error_reporter=error_reporter,
        clock=clock,
        config=build_config(rules),
    )


def _failure(exc: RedirectError) -> list[RedirectErrorDetail]:
    return [RedirectErrorDetail.from_exception(exc)]


# --- Component Entry Points ---


def run_add(
    inp: AddRedirectInput,
    *,
    store: RedirectStorePort,
    rules: RedirectRules | None = None,
    cache: CacheInvalidationPort | None = None,
    notifier: ChangeNotifierPort | None = None,
    clock: ClockPort | None = None,
) -> RedirectOperationOutput:
    """
    Add a redirect on every requested host.

    Args:
        inp: Source, target and options.
        store: Redirect store port.
        rules: Optional redirect rules for configuration.
        cache: Optional cache invalidation collaborator.
        notifier: Optional change notification collaborator.
        clock: Optional clock.

    Returns:
        RedirectOperationOutput with new and rewritten redirects, or errors.
    """
    service = _create_service(store, rules, cache=cache, notifier=notifier, clock=clock)

    try:
        records = service.add_redirect(
            inp.source_uri_path,
            inp.target_uri_path,
            status_code=inp.status_code,
            hosts=inp.hosts,
            creator=inp.creator,
            comment=inp.comment,
            type=inp.type,
            start=inp.start_date_time,
            end=inp.end_date_time,
        )
    except RedirectError as exc:
        return RedirectOperationOutput(errors=_failure(exc), success=False)

    return RedirectOperationOutput(
        redirects=tuple(RedirectView.from_record(r) for r in records),
    )


def run_remove(
    inp: RemoveRedirectInput,
    *,
    store: RedirectStorePort,
    rules: RedirectRules | None = None,
    cache: CacheInvalidationPort | None = None,
) -> RedirectOperationOutput:
    """Remove one redirect, every redirect, or every redirect of a host."""
    service = _create_service(store, rules, cache=cache)

    if inp.all_hosts:
        return RedirectOperationOutput(removed=service.remove_all())
    if inp.by_host:
        return RedirectOperationOutput(removed=service.remove_by_host(inp.host))
    if not inp.source_uri_path:
        return RedirectOperationOutput(
            errors=[
                RedirectErrorDetail(
                    code="invalid_input",
                    message="source_uri_path is required unless removing by host or all",
                    field="source_uri_path",
                )
            ],
            success=False,
        )

    if not service.remove_redirect(inp.source_uri_path, inp.host):
        return RedirectOperationOutput(
            errors=[RedirectErrorDetail(code="not_found", message="Redirect not found")],
            success=False,
        )
    return RedirectOperationOutput(removed=1)


def run_lookup(
    inp: LookupRedirectInput,
    *,
    store: RedirectStorePort,
    rules: RedirectRules | None = None,
) -> RedirectOutput:
    """Look up the redirect serving a source path on a host."""
    service = _create_service(store, rules)

    redirect = service.lookup(inp.source_uri_path, inp.host, inp.fallback)
    if redirect is None:
        return RedirectOutput(
            redirect=None,
            errors=[RedirectErrorDetail(code="not_found", message="Redirect not found")],
            success=False,
        )
    return RedirectOutput(redirect=redirect)


def run_list(
    inp: ListRedirectsInput,
    *,
    store: RedirectStorePort,
    rules: RedirectRules | None = None,
) -> RedirectListOutput:
    service = _create_service(store, rules)
    if inp.without_host:
        redirects = service.list_redirects_without_host(inp.only_active, inp.type)
    else:
        redirects = service.list_redirects(inp.host, inp.only_active, inp.type)
    return RedirectListOutput(redirects=tuple(redirects))


def run_hosts(
    inp: ListHostsInput,
    *,
    store: RedirectStorePort,
    rules: RedirectRules | None = None,
) -> HostListOutput:
    service = _create_service(store, rules)
    return HostListOutput(hosts=tuple(sorted(service.distinct_hosts())))


def run(
    inp: (
        AddRedirectInput
        | RemoveRedirectInput
        | LookupRedirectInput
        | ListRedirectsInput
        | ListHostsInput
    ),
    *,
    store: RedirectStorePort,
    rules: RedirectRules | None = None,
) -> RedirectOperationOutput | RedirectOutput | RedirectListOutput | HostListOutput:
    """
    Main entry point for the redirects component.

    Dispatches to appropriate handler based on input type.
    """
    if isinstance(inp, AddRedirectInput):
        return run_add(inp, store=store, rules=rules)
    elif isinstance(inp, RemoveRedirectInput):
        return run_remove(inp, store=store, rules=rules)
    elif isinstance(inp, LookupRedirectInput):
        return run_lookup(inp, store=store, rules=rules)
    elif isinstance(inp, ListRedirectsInput):
        return run_list(inp, store=store, rules=rules)
    elif isinstance(inp, ListHostsInput):
        return run_hosts(inp, store=store, rules=rules)
    else:
        raise ValueError(f"Unknown input type: {type(inp)}")

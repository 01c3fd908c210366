"""
Redirects component - redirect rules with insertion-time chain repair.
"""

from ._impl import (
    ConsistencyEngine,
    RedirectConfig,
    RedirectService,
    create_redirect_service,
    is_absolute_url,
    rebase_absolute_target,
)
from .component import (
    build_config,
    run,
    run_add,
    run_hosts,
    run_list,
    run_lookup,
    run_remove,
)
from .models import (
    AddRedirectInput,
    ConcurrencyConflictError,
    HostListOutput,
    LazyRecords,
    ListHostsInput,
    ListRedirectsInput,
    LookupRedirectInput,
    RedirectConflictError,
    RedirectError,
    RedirectErrorDetail,
    RedirectListOutput,
    RedirectOperationOutput,
    RedirectOutput,
    RedirectRecord,
    RedirectType,
    RedirectValidationError,
    RedirectView,
    RemoveRedirectInput,
    StorageError,
    hash_path,
    normalize_host,
    normalize_source,
    normalize_target,
)
from .ports import (
    CacheInvalidationPort,
    ChangeNotifierPort,
    ClockPort,
    ErrorReporterPort,
    RedirectStorePort,
)

__all__ = [
    # Entry points
    "run",
    "run_add",
    "run_hosts",
    "run_list",
    "run_lookup",
    "run_remove",
    "build_config",
    # Input models
    "AddRedirectInput",
    "ListHostsInput",
    "ListRedirectsInput",
    "LookupRedirectInput",
    "RemoveRedirectInput",
    # Output models
    "HostListOutput",
    "RedirectErrorDetail",
    "RedirectListOutput",
    "RedirectOperationOutput",
    "RedirectOutput",
    # Records
    "LazyRecords",
    "RedirectRecord",
    "RedirectType",
    "RedirectView",
    # Errors
    "ConcurrencyConflictError",
    "RedirectConflictError",
    "RedirectError",
    "RedirectValidationError",
    "StorageError",
    # Ports
    "CacheInvalidationPort",
    "ChangeNotifierPort",
    "ClockPort",
    "ErrorReporterPort",
    "RedirectStorePort",
    # _impl re-exports
    "ConsistencyEngine",
    "RedirectConfig",
    "RedirectService",
    "create_redirect_service",
    "is_absolute_url",
    "rebase_absolute_target",
    # Path helpers
    "hash_path",
    "normalize_host",
    "normalize_source",
    "normalize_target",
]

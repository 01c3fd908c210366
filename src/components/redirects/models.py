"""
Redirects component models.

Holds the redirect record, its read-only view, the error hierarchy and the
input/output dataclasses used by the component entry points.

Invariants:
- I1: source_uri_path_hash / target_uri_path_hash always match their paths
- I2: status_code is within 100..599
- I3: a record never redirects to its own source path
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

MIN_STATUS_CODE = 100
MAX_STATUS_CODE = 599


# --- Errors ---


class RedirectError(Exception):
    """Base exception for redirect errors."""

    code = "redirect_error"


class RedirectValidationError(RedirectError):
    """Invalid redirect data, raised before anything is persisted."""

    code = "validation_failed"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class RedirectConflictError(RedirectError):
    """A different rule already exists for the same source and host."""

    code = "conflict"

    def __init__(self, source_uri_path: str, host: str | None) -> None:
        self.source_uri_path = source_uri_path
        self.host = host
        super().__init__(
            f"Redirect for '{source_uri_path}' on host {host or '<any>'} already exists"
        )


class StorageError(RedirectError):
    """Base class for storage errors."""

    code = "storage_error"


class ConcurrencyConflictError(StorageError):
    """Write rejected because the stored version moved on (retryable)."""

    code = "concurrency_conflict"
    retryable = True

    def __init__(self, record_id: UUID, expected_version: int) -> None:
        self.record_id = record_id
        self.expected_version = expected_version
        super().__init__(
            f"Redirect {record_id} was modified concurrently (expected version {expected_version})"
        )


# --- Helpers ---


def hash_path(path: str) -> str:
    """128-bit content hash used as the indexed lookup key."""
    return hashlib.md5(path.encode("utf-8")).hexdigest()


def normalize_source(path: str) -> str:
    """Strip leading and trailing slashes from a source path."""
    return path.strip("/")


def normalize_target(path: str) -> str:
    """Strip leading slashes from a target path or URL."""
    return path.lstrip("/")


def normalize_host(host: str | None) -> str | None:
    if host is None:
        return None
    host = host.strip()
    return host or None


def as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def validate_status_code(status_code: int) -> int:
    if not MIN_STATUS_CODE <= status_code <= MAX_STATUS_CODE:
        raise RedirectValidationError(
            f"Status code {status_code} is outside {MIN_STATUS_CODE}-{MAX_STATUS_CODE}",
            field="status_code",
        )
    return status_code


class RedirectType(str, Enum):
    GENERATED = "generated"
    MANUAL = "manual"

    @classmethod
    def coerce(cls, value: RedirectType | str | None) -> RedirectType:
        """Unknown or missing values fall back to GENERATED."""
        if isinstance(value, RedirectType):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.GENERATED


# --- Redirect Record ---


@dataclass
class RedirectRecord:
    """
    A single redirect rule, identified by (source_uri_path_hash, host).

    Build new records with RedirectRecord.create(); the plain constructor is
    used by stores when rehydrating rows and does not normalise anything.
    """

    source_uri_path: str
    source_uri_path_hash: str
    target_uri_path: str
    target_uri_path_hash: str
    status_code: int
    host: str | None = None
    hit_counter: int = 0
    last_hit: datetime | None = None
    creator: str | None = None
    comment: str | None = None
    type: RedirectType = RedirectType.GENERATED
    start_date_time: datetime | None = None
    end_date_time: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    modified_at: datetime = field(default_factory=_utcnow)
    id: UUID = field(default_factory=uuid4)
    version: int = 0

    @classmethod
    def create(
        cls,
        source: str,
        target: str,
        status_code: int,
        host: str | None = None,
        creator: str | None = None,
        comment: str | None = None,
        type: RedirectType | str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        now: datetime | None = None,
    ) -> RedirectRecord:
        """Normalise, hash and validate a new (not yet persisted) record."""
        validate_status_code(status_code)
        source_path = normalize_source(source)
        target_path = normalize_target(target)
        if source_path == target_path.rstrip("/"):
            raise RedirectValidationError(
                f"Redirect for '{source_path}' cannot point to itself",
                field="target_uri_path",
            )
        created = as_utc(now) or _utcnow()
        return cls(
            source_uri_path=source_path,
            source_uri_path_hash=hash_path(source_path),
            target_uri_path=target_path,
            target_uri_path_hash=hash_path(target_path),
            status_code=status_code,
            host=normalize_host(host),
            creator=creator,
            comment=comment,
            type=RedirectType.coerce(type),
            start_date_time=as_utc(start),
            end_date_time=as_utc(end),
            created_at=created,
            modified_at=created,
        )

    def set_target(self, target: str, now: datetime | None = None) -> None:
        self.target_uri_path = normalize_target(target)
        self.target_uri_path_hash = hash_path(self.target_uri_path)
        self.modified_at = as_utc(now) or _utcnow()

    def set_status_code(self, status_code: int, now: datetime | None = None) -> None:
        self.status_code = validate_status_code(status_code)
        self.modified_at = as_utc(now) or _utcnow()

    def update(self, target: str, status_code: int, now: datetime | None = None) -> None:
        """Rewrite target and status in one step."""
        validate_status_code(status_code)
        self.set_target(target, now)
        self.set_status_code(status_code, now)

    def increment_hit(self, now: datetime | None = None) -> None:
        self.hit_counter += 1
        self.last_hit = as_utc(now) or _utcnow()
        self.modified_at = self.last_hit

    def is_active(self, now: datetime) -> bool:
        """True when now falls inside [start, end)."""
        now = as_utc(now) or _utcnow()
        if self.start_date_time is not None and now < self.start_date_time:
            return False
        if self.end_date_time is not None and now >= self.end_date_time:
            return False
        return True


@dataclass(frozen=True)
class RedirectView:
    """Read-only snapshot of a redirect record handed out to callers."""

    id: UUID
    source_uri_path: str
    target_uri_path: str
    status_code: int
    host: str | None
    hit_counter: int
    last_hit: datetime | None
    creator: str | None
    comment: str | None
    type: RedirectType
    start_date_time: datetime | None
    end_date_time: datetime | None
    created_at: datetime
    modified_at: datetime
    version: int

    @classmethod
    def from_record(cls, record: RedirectRecord) -> RedirectView:
        return cls(
            id=record.id,
            source_uri_path=record.source_uri_path,
            target_uri_path=record.target_uri_path,
            status_code=record.status_code,
            host=record.host,
            hit_counter=record.hit_counter,
            last_hit=record.last_hit,
            creator=record.creator,
            comment=record.comment,
            type=record.type,
            start_date_time=record.start_date_time,
            end_date_time=record.end_date_time,
            created_at=record.created_at,
            modified_at=record.modified_at,
            version=record.version,
        )


class LazyRecords:
    """
    Restartable lazy sequence of records.

    Every iteration calls the factory again, so a store can stream rows
    without buffering the full result set.
    """

    def __init__(self, factory: Callable[[], Iterator[RedirectRecord]]) -> None:
        self._factory = factory

    def __iter__(self) -> Iterator[RedirectRecord]:
        return self._factory()


# --- Component Error Detail ---


@dataclass(frozen=True)
class RedirectErrorDetail:
    """Serializable error entry returned by the component entry points."""

    code: str
    message: str
    field: str | None = None

    @classmethod
    def from_exception(cls, exc: RedirectError) -> RedirectErrorDetail:
        return cls(code=exc.code, message=str(exc), field=getattr(exc, "field", None))


# --- Input Models ---


@dataclass(frozen=True)
class AddRedirectInput:
    """Input for adding a redirect on zero or more hosts."""

    source_uri_path: str
    target_uri_path: str
    status_code: int | None = None
    hosts: frozenset[str] = frozenset()
    creator: str | None = None
    comment: str | None = None
    type: str | None = None
    start_date_time: datetime | None = None
    end_date_time: datetime | None = None


@dataclass(frozen=True)
class RemoveRedirectInput:
    """Remove one rule, all rules, or every rule for a host."""

    source_uri_path: str | None = None
    host: str | None = None
    all_hosts: bool = False
    by_host: bool = False


@dataclass(frozen=True)
class LookupRedirectInput:
    source_uri_path: str
    host: str | None = None
    fallback: bool = True


@dataclass(frozen=True)
class ListRedirectsInput:
    """List rules; without_host restricts to host-less rules and ignores host."""

    host: str | None = None
    only_active: bool = False
    type: str | None = None
    without_host: bool = False


@dataclass(frozen=True)
class ListHostsInput:
    pass


# --- Output Models ---


@dataclass(frozen=True)
class RedirectOperationOutput:
    """Output for add/remove operations."""

    redirects: tuple[RedirectView, ...] = ()
    removed: int = 0
    errors: list[RedirectErrorDetail] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class RedirectOutput:
    redirect: RedirectView | None
    errors: list[RedirectErrorDetail] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class RedirectListOutput:
    redirects: tuple[RedirectView, ...]
    errors: list[RedirectErrorDetail] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class HostListOutput:
    hosts: tuple[str, ...]
    errors: list[RedirectErrorDetail] = field(default_factory=list)
    success: bool = True

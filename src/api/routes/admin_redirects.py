"""
Admin Redirects API Routes.

Admin endpoints for managing redirect rules. Every insertion goes through
the consistency engine, so the response lists the new rule(s) and every
existing rule that was rewritten to keep chains one hop long.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from src.api.deps import get_redirect_service
from src.components.redirects import (
    ConcurrencyConflictError,
    RedirectConflictError,
    RedirectError,
    RedirectErrorDetail,
    RedirectRecord,
    RedirectService,
    RedirectValidationError,
    RedirectView,
)

router = APIRouter()


class AddRedirectRequest(BaseModel):
    """Request to add a redirect."""

    source_uri_path: str = Field(..., description="Source path (e.g., old/page)")
    target_uri_path: str = Field(..., description="Target path or absolute URL")
    status_code: int | None = Field(None, description="HTTP status code (default from rules)")
    hosts: list[str] = Field(default_factory=list, description="Hosts; empty means any host")
    creator: str | None = None
    comment: str | None = None
    type: str | None = Field(None, description="generated or manual")
    start_date_time: datetime | None = None
    end_date_time: datetime | None = None


class RedirectResponse(BaseModel):
    """Redirect response."""

    id: str
    source_uri_path: str
    target_uri_path: str
    status_code: int
    host: str | None = None
    hit_counter: int
    last_hit: str | None = None
    creator: str | None = None
    comment: str | None = None
    type: str
    start_date_time: str | None = None
    end_date_time: str | None = None
    created_at: str
    modified_at: str


class RedirectListResponse(BaseModel):
    """List of redirects response."""

    redirects: list[RedirectResponse]
    count: int


class ValidationErrorResponse(BaseModel):
    """Validation error response."""

    errors: list[dict[str, Any]]


# --- Helper Functions ---


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _redirect_to_response(redirect: RedirectRecord | RedirectView) -> RedirectResponse:
    """Convert a record or view to the response model."""
    return RedirectResponse(
        id=str(redirect.id),
        source_uri_path=redirect.source_uri_path,
        target_uri_path=redirect.target_uri_path,
        status_code=redirect.status_code,
        host=redirect.host,
        hit_counter=redirect.hit_counter,
        last_hit=_iso(redirect.last_hit),
        creator=redirect.creator,
        comment=redirect.comment,
        type=redirect.type.value,
        start_date_time=_iso(redirect.start_date_time),
        end_date_time=_iso(redirect.end_date_time),
        created_at=redirect.created_at.isoformat(),
        modified_at=redirect.modified_at.isoformat(),
    )


def _serialize_error(exc: RedirectError) -> dict[str, Any]:
    detail = RedirectErrorDetail.from_exception(exc)
    return {"code": detail.code, "message": detail.message, "field": detail.field}


def _raise_http(exc: RedirectError) -> None:
    if isinstance(exc, RedirectValidationError):
        raise HTTPException(status_code=400, detail={"errors": [_serialize_error(exc)]})
    if isinstance(exc, RedirectConflictError):
        raise HTTPException(status_code=409, detail={"errors": [_serialize_error(exc)]})
    if isinstance(exc, ConcurrencyConflictError):
        raise HTTPException(
            status_code=503,
            detail={"errors": [_serialize_error(exc)]},
            headers={"Retry-After": "1"},
        )
    raise exc


# --- Routes ---


@router.post(
    "/redirects",
    response_model=RedirectListResponse,
    responses={
        400: {"model": ValidationErrorResponse},
        409: {"model": ValidationErrorResponse},
        503: {"model": ValidationErrorResponse},
    },
)
def add_redirect(
    request: AddRedirectRequest,
    service: RedirectService = Depends(get_redirect_service),
) -> RedirectListResponse:
    """
    Add a redirect for each host.

    Existing rules for the same source are replaced; rules pointing at the
    new source are rewritten to its target.
    """
    try:
        records = service.add_redirect(
            request.source_uri_path,
            request.target_uri_path,
            status_code=request.status_code,
            hosts=request.hosts,
            creator=request.creator,
            comment=request.comment,
            type=request.type,
            start=request.start_date_time,
            end=request.end_date_time,
        )
    except RedirectError as exc:
        _raise_http(exc)
        raise

    return RedirectListResponse(
        redirects=[_redirect_to_response(r) for r in records],
        count=len(records),
    )


@router.get("/redirects", response_model=RedirectListResponse)
def list_redirects(
    host: str | None = None,
    only_active: bool = False,
    type: str | None = None,
    without_host: bool = False,
    service: RedirectService = Depends(get_redirect_service),
) -> RedirectListResponse:
    """List redirects ordered by host and source path; without_host lists host-less only."""
    if without_host:
        views = service.list_redirects_without_host(only_active, type)
    else:
        views = service.list_redirects(host, only_active, type)
    redirects = [_redirect_to_response(r) for r in views]
    return RedirectListResponse(redirects=redirects, count=len(redirects))


@router.get("/redirects/hosts")
def list_hosts(
    service: RedirectService = Depends(get_redirect_service),
) -> dict[str, list[str]]:
    """Hosts with at least one host-specific redirect."""
    return {"hosts": sorted(service.distinct_hosts())}


@router.get(
    "/redirects/lookup",
    response_model=RedirectResponse,
    responses={404: {"description": "Redirect not found"}},
)
def lookup_redirect(
    source: str = Query(..., description="Source path"),
    host: str | None = None,
    fallback: bool = True,
    service: RedirectService = Depends(get_redirect_service),
) -> RedirectResponse:
    """Find the redirect serving a source path, preferring host-specific rules."""
    redirect = service.lookup(source, host, fallback)
    if redirect is None:
        raise HTTPException(status_code=404, detail="Redirect not found")
    return _redirect_to_response(redirect)


@router.post("/redirects/hit")
def count_hit(
    source: str = Query(..., description="Source path"),
    host: str | None = None,
    service: RedirectService = Depends(get_redirect_service),
) -> dict[str, bool]:
    """Record a hit on the redirect serving source/host (best effort)."""
    redirect = service.lookup(source, host)
    if redirect is None:
        return {"counted": False}
    service.increment_hit(redirect)
    return {"counted": True}


@router.delete(
    "/redirects",
    responses={404: {"description": "Redirect not found"}},
)
def remove_redirect(
    source: str = Query(..., description="Source path"),
    host: str | None = None,
    service: RedirectService = Depends(get_redirect_service),
) -> dict[str, bool]:
    """Remove the redirect for exactly this source and host."""
    try:
        removed = service.remove_redirect(source, host)
    except RedirectError as exc:
        _raise_http(exc)
        raise
    if not removed:
        raise HTTPException(status_code=404, detail="Redirect not found")
    return {"deleted": True}


@router.delete("/redirects/all")
def remove_all_redirects(
    service: RedirectService = Depends(get_redirect_service),
) -> dict[str, int]:
    """Remove every redirect."""
    return {"removed": service.remove_all()}


@router.delete("/redirects/by-host")
def remove_redirects_by_host(
    host: str | None = None,
    service: RedirectService = Depends(get_redirect_service),
) -> dict[str, int]:
    """Remove every redirect for a host; without host, the host-less ones."""
    return {"removed": service.remove_by_host(host)}

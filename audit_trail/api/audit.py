"""
Audit trail API endpoints.

The API layer is thin. It handles HTTP concerns (status codes,
query parsing, streaming) and delegates all behavior to the
services. Identity is not checked here: org_id comes from the
path and actor_id from the body, both supplied by the gateway in
front of this service.

Each endpoint logs an ``audit.*`` analytics event at INFO.
"""

import itertools
import logging
import threading
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import iterate_in_threadpool
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from audit_trail.errors import (
    AuditError,
    EntryNotFound,
    ExportCancelled,
    InvalidFilter,
    StoreUnavailable,
)
from audit_trail.models.audit_entry import utcnow
from audit_trail.models.base import SessionLocal, get_db
from audit_trail.models.enums import GroupBy, StatsWindow
from audit_trail.schemas.audit import (
    ActivitySummary,
    AuditEntryCreate,
    AuditEntryResponse,
    AuditPage,
    AuditStats,
)
from audit_trail.services.audit_store import AuditStore
from audit_trail.services.export_service import ExportService
from audit_trail.services.filters import AuditFilter
from audit_trail.services.notifier import notifier
from audit_trail.services.stats_service import StatsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orgs/{org_id}/audit", tags=["Audit"])


def get_session_factory():
    """
    Session factory for endpoints that outlive the request scope.

    A streaming export keeps reading after the endpoint returns,
    so it manages its own session instead of using get_db.
    """
    return SessionLocal


def audit_filter_params(
    q: str | None = None,
    entity_type: str | None = None,
    action: str | None = None,
    actor_id: str | None = None,
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = None,
) -> AuditFilter:
    try:
        return AuditFilter.parse(
            text=q,
            entity_type=entity_type,
            action=action,
            actor_id=actor_id,
            to=to,
            **{"from": from_},
        )
    except InvalidFilter as e:
        raise HTTPException(status_code=400, detail=str(e))


def _http_error(e: AuditError) -> HTTPException:
    if isinstance(e, StoreUnavailable):
        return HTTPException(
            status_code=503,
            detail="Audit log is temporarily unavailable. Please retry.",
        )
    if isinstance(e, EntryNotFound):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _filter_summary(audit_filter: AuditFilter) -> dict:
    return audit_filter.model_dump(exclude_none=True, by_alias=True, mode="json")


@router.post("", response_model=AuditEntryResponse, status_code=201)
def append_entry(
    org_id: str,
    request: AuditEntryCreate,
    db: Session = Depends(get_db),
):
    """
    Record an action.

    The entry is durable when this returns; live subscribers are
    notified afterwards.
    """
    store = AuditStore(db, notifier=notifier)
    try:
        entry = store.append(org_id, request)
    except AuditError as e:
        raise _http_error(e)

    logger.info(
        "audit.appended org=%s action=%s entity_type=%s actor=%s",
        org_id, entry.action, entry.entity_type, entry.actor_id,
    )
    return entry


@router.get("", response_model=AuditPage)
def list_entries(
    org_id: str,
    cursor: str | None = None,
    limit: int | None = None,
    audit_filter: AuditFilter = Depends(audit_filter_params),
    db: Session = Depends(get_db),
):
    """List entries newest first. Pass next_cursor back to continue."""
    store = AuditStore(db)
    try:
        page = store.list_page(org_id, audit_filter, cursor=cursor, limit=limit)
    except AuditError as e:
        raise _http_error(e)

    logger.info("audit.viewed org=%s filters=%s", org_id, _filter_summary(audit_filter))
    return page


@router.get("/search", response_model=AuditPage)
def search_entries(
    org_id: str,
    query: str,
    cursor: str | None = None,
    limit: int | None = None,
    audit_filter: AuditFilter = Depends(audit_filter_params),
    db: Session = Depends(get_db),
):
    """Free-text search with the same paging as the listing."""
    store = AuditStore(db)
    try:
        page = store.search(
            org_id, query, cursor=cursor, limit=limit, audit_filter=audit_filter
        )
    except AuditError as e:
        raise _http_error(e)

    logger.info("audit.searched org=%s query=%r", org_id, query)
    return page


@router.get("/stats", response_model=AuditStats)
def get_stats(
    org_id: str,
    window: StatsWindow = StatsWindow.DAY,
    db: Session = Depends(get_db),
):
    """Counts by action, entity type and actor over a trailing window."""
    try:
        return StatsService(db).get_stats(org_id, window)
    except AuditError as e:
        raise _http_error(e)


@router.get("/summary", response_model=ActivitySummary)
def get_activity_summary(
    org_id: str,
    from_: datetime | None = Query(default=None, alias="from"),
    to: datetime | None = None,
    group_by: GroupBy | None = None,
    db: Session = Depends(get_db),
):
    """Activity timeline and breakdowns for a date range."""
    try:
        return StatsService(db).get_activity_summary(org_id, from_, to, group_by)
    except AuditError as e:
        raise _http_error(e)


async def stream_export(request: Request, head, chunks, cancel: threading.Event, org_id: str):
    """
    Send the already-read head, then the rest of the export.

    Once the client has gone away the export is told to stop after
    its current chunk instead of reading the whole log.
    """
    try:
        for chunk in head:
            yield chunk
        async for chunk in iterate_in_threadpool(chunks):
            yield chunk
            if await request.is_disconnected():
                cancel.set()
    except ExportCancelled as e:
        logger.info("audit.export_cancelled org=%s: %s", org_id, e)
    finally:
        chunks.close()


@router.get("/export")
def export_entries(
    org_id: str,
    request: Request,
    audit_filter: AuditFilter = Depends(audit_filter_params),
    session_factory=Depends(get_session_factory),
):
    """
    Download every matching entry as CSV.

    The header and first batch are read before the response starts
    so an unreachable store still produces a 503 instead of a
    truncated download. A client that disconnects mid-download
    stops the export at the next chunk boundary.
    """
    cancel = threading.Event()

    def stream():
        db = session_factory()
        try:
            yield from ExportService(db).iter_csv(
                org_id, audit_filter, cancelled=cancel.is_set
            )
        finally:
            db.close()

    chunks = stream()
    try:
        head = list(itertools.islice(chunks, 2))
    except AuditError as e:
        raise _http_error(e)

    logger.info("audit.exported org=%s filters=%s", org_id, _filter_summary(audit_filter))
    filename = f"audit-logs-{org_id}-{utcnow():%Y%m%dT%H%M%SZ}.csv"
    return StreamingResponse(
        stream_export(request, head, chunks, cancel, org_id),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{entry_id}", response_model=AuditEntryResponse)
def get_entry(
    org_id: str,
    entry_id: int,
    db: Session = Depends(get_db),
):
    """Fetch a single entry of this organization."""
    try:
        return AuditStore(db).get_entry(org_id, entry_id)
    except AuditError as e:
        raise _http_error(e)

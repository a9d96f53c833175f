"""
Page-number navigation over a keyset-paginated listing.

The store only answers "give me the page after cursor C". A UI
that wants page N therefore needs the cursor for page N, which is
only known after walking pages 1..N-1. PageNavigator memoizes
page -> cursor and replays forward from the furthest known page
when asked for one it has not seen yet.

Cursors are only meaningful for the filter and search term they
were produced under, so changing either clears the cache.
"""

import enum
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable

from audit_trail.errors import NavigationCancelled
from audit_trail.schemas.audit import AuditPage
from audit_trail.services.audit_store import AuditStore
from audit_trail.services.filters import AuditFilter

logger = logging.getLogger(__name__)


class NavigationState(str, enum.Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    EXHAUSTED_BEFORE_TARGET = "exhausted_before_target"
    FAILED = "failed"


@dataclass(frozen=True)
class PageRequest:
    audit_filter: AuditFilter
    search: str | None
    cursor: str | None
    limit: int


PageFetcher = Callable[[PageRequest], AuditPage]


@dataclass(frozen=True)
class NavigationResult:
    """
    Outcome of resolving a page number.

    When state is EXHAUSTED_BEFORE_TARGET, ``page`` is the last page
    that exists and ``cursor`` is its cursor; the caller should clamp
    to it. That outcome is not an error.
    """
    state: NavigationState
    requested_page: int
    page: int
    cursor: str | None

    @property
    def exhausted(self) -> bool:
        return self.state == NavigationState.EXHAUSTED_BEFORE_TARGET


@dataclass(frozen=True)
class NavigatedPage:
    result: NavigationResult
    page: AuditPage


class PageNavigator:
    """Resolves page numbers to cursors by memoized forward replay."""

    def __init__(
        self,
        fetch_page: PageFetcher,
        page_size: int = 50,
        audit_filter: AuditFilter | None = None,
        search: str | None = None,
    ):
        self._fetch_page = fetch_page
        self._page_size = page_size
        self._lock = threading.Lock()
        self._audit_filter = audit_filter or AuditFilter()
        self._search = _normalize_search(search)
        self._cursors: dict[int, str | None] = {1: None}
        self._in_flight: dict[int, Future] = {}
        self._generation = 0
        self.state = NavigationState.IDLE
        self.current_page = 1

    # --- Query ---

    def set_query(
        self,
        audit_filter: AuditFilter | None = None,
        search: str | None = None,
    ) -> bool:
        """
        Switch to a new filter/search term.

        Returns True when the query actually changed, in which case
        every cached cursor is dropped and navigation restarts at
        page 1. Walks still in flight for the old query are told to
        stop.
        """
        audit_filter = audit_filter or AuditFilter()
        search = _normalize_search(search)
        with self._lock:
            if audit_filter == self._audit_filter and search == self._search:
                return False
            self._audit_filter = audit_filter
            self._search = search
            self._cursors = {1: None}
            self._in_flight = {}
            self._generation += 1
            self.state = NavigationState.IDLE
            self.current_page = 1
        logger.debug("Navigator query changed; cursor cache cleared")
        return True

    def cached_pages(self) -> list[int]:
        with self._lock:
            return sorted(self._cursors)

    # --- Navigation ---

    def resolve(
        self,
        page: int,
        cancel: threading.Event | None = None,
    ) -> NavigationResult:
        """
        Find the cursor for ``page``.

        Known pages return immediately. Otherwise pages are fetched
        forward from the furthest known page below the target. If
        another thread is already resolving the same page, this call
        waits for that walk instead of starting a second one.
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")

        with self._lock:
            if page in self._cursors:
                self.state = NavigationState.RESOLVED
                return NavigationResult(
                    NavigationState.RESOLVED, page, page, self._cursors[page]
                )
            future = self._in_flight.get(page)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[page] = future
                self.state = NavigationState.RESOLVING
            generation = self._generation

        if not owner:
            return future.result()

        try:
            result = self._replay(page, generation, cancel)
        except Exception as e:
            with self._lock:
                if self._in_flight.get(page) is future:
                    del self._in_flight[page]
                if generation == self._generation:
                    self.state = NavigationState.FAILED
            future.set_exception(e)
            raise

        with self._lock:
            if self._in_flight.get(page) is future:
                del self._in_flight[page]
            if generation == self._generation:
                self.state = result.state
        future.set_result(result)
        return result

    def go_to_page(
        self,
        page: int,
        cancel: threading.Event | None = None,
    ) -> NavigatedPage:
        """
        Resolve ``page`` and fetch it, clamping to the last page.

        The cursor for the following page is cached from the fetched
        page so stepping forward one page never replays.
        """
        result = self.resolve(page, cancel)
        with self._lock:
            request = self._request(result.cursor)
            generation = self._generation

        audit_page = self._fetch_page(request)

        with self._lock:
            if generation == self._generation:
                self.current_page = result.page
                if audit_page.has_more and audit_page.next_cursor:
                    self._cursors.setdefault(result.page + 1, audit_page.next_cursor)
        return NavigatedPage(result=result, page=audit_page)

    # --- Internals ---

    def _request(self, cursor: str | None) -> PageRequest:
        return PageRequest(
            audit_filter=self._audit_filter,
            search=self._search,
            cursor=cursor,
            limit=self._page_size,
        )

    def _replay(
        self,
        page: int,
        generation: int,
        cancel: threading.Event | None,
    ) -> NavigationResult:
        with self._lock:
            current = max(p for p in self._cursors if p < page)
            cursor = self._cursors[current]
            request = self._request(cursor)

        logger.debug("Replaying pages %d..%d to resolve page %d", current, page - 1, page)
        while current < page:
            if cancel is not None and cancel.is_set():
                raise NavigationCancelled(f"Navigation to page {page} cancelled")

            result = self._fetch_page(request)
            with self._lock:
                if generation != self._generation:
                    raise NavigationCancelled(
                        f"Query changed while resolving page {page}"
                    )
                if not result.has_more or not result.next_cursor:
                    return NavigationResult(
                        NavigationState.EXHAUSTED_BEFORE_TARGET, page, current, cursor
                    )
                current += 1
                cursor = result.next_cursor
                self._cursors[current] = cursor
                request = self._request(cursor)

        return NavigationResult(NavigationState.RESOLVED, page, page, cursor)


def _normalize_search(search: str | None) -> str | None:
    if search is None or not search.strip():
        return None
    return search.strip()


def store_page_fetcher(session_factory, org_id: str, **store_options) -> PageFetcher:
    """
    A PageFetcher that reads from an AuditStore.

    Each fetch opens and closes its own session, matching the
    one-short-request-per-page model of the HTTP API.
    """
    def fetch(request: PageRequest) -> AuditPage:
        db = session_factory()
        try:
            store = AuditStore(db, **store_options)
            if request.search:
                return store.search(
                    org_id,
                    request.search,
                    cursor=request.cursor,
                    limit=request.limit,
                    audit_filter=request.audit_filter,
                )
            return store.list_page(
                org_id,
                request.audit_filter,
                cursor=request.cursor,
                limit=request.limit,
            )
        finally:
            db.close()

    return fetch

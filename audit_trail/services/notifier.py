"""
In-process fan-out of newly appended entries.

The real-time transport that pushes entries to live viewers is
not part of this package; it plugs in here by subscribing. The
store publishes only after the append has committed, so anything
a subscriber receives is already retrievable via list_page.
"""

import logging
import threading
from typing import Callable

from audit_trail.models.audit_entry import AuditEntry
from audit_trail.services.filters import AuditFilter

logger = logging.getLogger(__name__)

Subscriber = Callable[[AuditEntry], None]


class AuditNotifier:
    """Delivers committed entries to per-organization subscribers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[tuple[Subscriber, AuditFilter]]] = {}

    def subscribe(
        self,
        org_id: str,
        callback: Subscriber,
        audit_filter: AuditFilter | None = None,
    ) -> Callable[[], None]:
        """
        Register a callback for one organization's new entries.

        Returns a function that removes the subscription.
        """
        registration = (callback, audit_filter or AuditFilter())
        with self._lock:
            self._subscribers.setdefault(org_id, []).append(registration)

        def unsubscribe() -> None:
            with self._lock:
                registrations = self._subscribers.get(org_id, [])
                if registration in registrations:
                    registrations.remove(registration)

        return unsubscribe

    def subscriber_count(self, org_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(org_id, []))

    def publish(self, entry: AuditEntry) -> int:
        """
        Deliver an entry to matching subscribers.

        A subscriber that raises is logged and skipped; it never
        affects the append or the other subscribers. Returns the
        number of successful deliveries.
        """
        with self._lock:
            registrations = list(self._subscribers.get(entry.org_id, []))

        delivered = 0
        for callback, audit_filter in registrations:
            if not audit_filter.matches(entry):
                continue
            try:
                callback(entry)
                delivered += 1
            except Exception:
                logger.exception(
                    "Audit subscriber failed for entry %s in org %s",
                    entry.id, entry.org_id,
                )
        return delivered


# Process-wide notifier used by the HTTP layer.
notifier = AuditNotifier()

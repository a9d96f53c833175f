"""
Audit trail error taxonomy.

Every failure the subsystem reports derives from AuditError so
callers can catch the whole family at a single boundary. None
of these are swallowed inside the core; the only place they are
caught and logged instead of raised is the best-effort recording
hook in services/hooks.py.
"""


class AuditError(Exception):
    """Base class for all audit trail errors."""


class StoreUnavailable(AuditError):
    """
    The underlying database could not be reached or refused the write.

    Raised from append and from every read path. Callers that record
    audit entries as a side effect of another action should log this
    and carry on rather than rolling the primary action back.
    """


class InvalidCursor(AuditError):
    """A pagination token was malformed, forged or tampered with."""


class InvalidLimit(AuditError):
    """A page size outside the accepted range was requested."""


class InvalidFilter(AuditError):
    """A filter was structurally malformed (e.g. a non-timestamp bound)."""


class EntryNotFound(AuditError):
    """No entry with the requested id exists in the caller's organization."""


class ImmutableEntryError(AuditError):
    """An attempt was made to modify or delete a persisted audit entry."""


class NavigationCancelled(AuditError):
    """A page navigation replay was cancelled by the caller."""


class ExportCancelled(AuditError):
    """The consumer of a streaming export asked it to stop."""

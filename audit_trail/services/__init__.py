"""Audit trail services."""

from audit_trail.services.audit_store import AuditStore
from audit_trail.services.cursor import CursorCodec, CursorKey
from audit_trail.services.export_service import ExportService
from audit_trail.services.filters import AuditFilter
from audit_trail.services.notifier import AuditNotifier
from audit_trail.services.page_navigator import PageNavigator
from audit_trail.services.stats_service import StatsService

__all__ = [
    "AuditStore",
    "CursorCodec",
    "CursorKey",
    "ExportService",
    "AuditFilter",
    "AuditNotifier",
    "PageNavigator",
    "StatsService",
]

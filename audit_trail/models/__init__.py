"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
"""

from audit_trail.models.base import Base
from audit_trail.models.enums import (
    AuditAction,
    AuditEntityType,
    StatsWindow,
    GroupBy,
    SYSTEM_ACTOR,
)
from audit_trail.models.audit_entry import AuditEntry

__all__ = [
    "Base",
    "AuditAction",
    "AuditEntityType",
    "StatsWindow",
    "GroupBy",
    "SYSTEM_ACTOR",
    "AuditEntry",
]

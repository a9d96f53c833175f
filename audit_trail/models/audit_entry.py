"""
Audit entry model.

Records a single action taken on an entity within an
organization. Entries are append-only: once flushed, no
column may change and the row may not be deleted.
"""

import json
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, Text, Index, event
from sqlalchemy.orm import Mapped, mapped_column, object_session

from audit_trail.errors import ImmutableEntryError
from audit_trail.models.base import Base


def utcnow() -> datetime:
    """Current time as the naive UTC value stored in created_at."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def dump_metadata(metadata: dict) -> str:
    """
    Serialize a metadata payload to the string stored on the entry.

    Keys are sorted so identical payloads always produce the same
    text, which is what free-text search and CSV export operate on.
    """
    return json.dumps(metadata, sort_keys=True, ensure_ascii=False, default=str)


class AuditEntry(Base):
    """
    Immutable record of an action within one organization.

    Ordering for listing is (created_at DESC, id DESC). The id
    comes from the database sequence, so it breaks ties between
    entries appended within the same microsecond.

    The payload lives in the ``metadata`` column as a serialized
    JSON string. The attribute is called ``metadata_json``
    because ``metadata`` is reserved on declarative classes;
    ``entry_metadata`` gives the decoded dict.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_org_created_id", "org_id", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    metadata_json: Mapped[str] = mapped_column(
        "metadata", Text, nullable=False, default="{}"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    @property
    def entry_metadata(self) -> dict:
        return json.loads(self.metadata_json)

    def __repr__(self) -> str:
        return (
            f"<AuditEntry {self.id} {self.org_id} "
            f"{self.entity_type}.{self.action}>"
        )


@event.listens_for(AuditEntry, "before_update")
def _reject_update(mapper, connection, target):
    # before_update also fires for instances that were touched
    # without a net change; only real modifications are refused.
    session = object_session(target)
    if session is not None and session.is_modified(target):
        raise ImmutableEntryError(
            f"Audit entry {target.id} is immutable and cannot be updated"
        )


@event.listens_for(AuditEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ImmutableEntryError(
        f"Audit entry {target.id} is immutable and cannot be deleted"
    )

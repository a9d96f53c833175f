"""
Pydantic schemas for audit trail operations.

These define the API contract: what data comes in,
what data goes out. They are separate from the database
model because the stored shape (metadata as a JSON string)
differs from the shape callers work with (metadata as a dict).
"""

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

from audit_trail.models.audit_entry import dump_metadata
from audit_trail.models.enums import AuditAction, GroupBy, StatsWindow

KNOWN_ACTIONS = frozenset(a.value for a in AuditAction)


# --- Request Schemas ---

class AuditEntryCreate(BaseModel):
    """
    One action to record.

    org_id is not part of the body: it comes from the caller's
    authenticated context (the URL path in the HTTP layer).
    actor_id is None for system-initiated actions.
    """
    actor_id: str | None = Field(default=None, max_length=64)
    action: str = Field(min_length=1, max_length=50)
    entity_type: str = Field(min_length=1, max_length=50)
    entity_id: str = Field(min_length=1, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("action")
    @classmethod
    def action_must_be_known(cls, v: str) -> str:
        if v not in KNOWN_ACTIONS:
            raise ValueError(
                f"unknown action '{v}'; expected one of "
                f"{', '.join(sorted(KNOWN_ACTIONS))}"
            )
        return v

    @field_validator("metadata")
    @classmethod
    def metadata_must_serialize(cls, v: dict[str, Any]) -> dict[str, Any]:
        try:
            dump_metadata(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"metadata is not serializable: {e}")
        return v


# --- Response Schemas ---

class AuditEntryResponse(BaseModel):
    """Single entry in API responses."""
    id: int
    org_id: str
    actor_id: str | None
    action: str
    entity_type: str
    entity_id: str
    metadata: dict[str, Any] = Field(
        validation_alias=AliasChoices("entry_metadata", "metadata")
    )
    created_at: datetime

    model_config = {"from_attributes": True, "frozen": True}


class AuditPage(BaseModel):
    """
    One page of a keyset walk.

    next_cursor is set exactly when has_more is true. total counts
    every entry matching the filter, not just this page.
    """
    entries: list[AuditEntryResponse]
    has_more: bool
    next_cursor: str | None = None
    total: int = 0


class AuditStats(BaseModel):
    """Grouped counts over a trailing window."""
    by_action: dict[str, int]
    by_entity_type: dict[str, int]
    by_actor: dict[str, int]
    total: int
    window: StatsWindow
    top_action: str | None = None


class TimelineBucket(BaseModel):
    timestamp: datetime
    count: int


class ActorCount(BaseModel):
    actor_id: str
    count: int


class SummaryPeriod(BaseModel):
    from_: datetime = Field(serialization_alias="from")
    to: datetime


class ActivitySummary(BaseModel):
    """Timeline plus breakdowns for an explicit date range."""
    timeline: list[TimelineBucket]
    by_action: dict[str, int]
    by_entity_type: dict[str, int]
    top_actors: list[ActorCount]
    total: int
    group_by: GroupBy
    period: SummaryPeriod

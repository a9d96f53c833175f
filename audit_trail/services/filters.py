"""
Filter evaluation for audit listings, search, and export.

AuditFilter is both the API contract for filter parameters and
the evaluator: ``clauses()`` renders it as SQL predicates for the
store, ``matches()`` applies the same rules to an entry already
in memory (used when pushing new entries to live subscribers).
The two renderings must agree; tests/services/test_filters.py
checks them against each other.

Rules:
- every provided field is ANDed
- ``text`` is a case-insensitive substring match over action,
  entity_type, entity_id and the serialized metadata
- ``from``/``to`` are inclusive bounds on created_at
- a missing field imposes no constraint
- values are not checked against any vocabulary, so an unknown
  action simply matches nothing
"""

import logging
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import and_, func, or_

from audit_trail.errors import InvalidFilter
from audit_trail.models.audit_entry import AuditEntry, dump_metadata

logger = logging.getLogger(__name__)

TEXT_COLUMNS = (
    AuditEntry.action,
    AuditEntry.entity_type,
    AuditEntry.entity_id,
    AuditEntry.metadata_json,
)


def to_utc_naive(value: datetime) -> datetime:
    """Normalize a timestamp to the naive UTC form stored on entries."""
    if value.tzinfo is None:
        logger.debug("Naive timestamp %s in filter; assuming UTC.", value)
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class AuditFilter(BaseModel):
    """Optional constraints over audit entries."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    text: str | None = None
    entity_type: str | None = None
    action: str | None = None
    actor_id: str | None = None
    from_: datetime | None = Field(default=None, alias="from")
    to: datetime | None = None

    @field_validator("text", "entity_type", "action", "actor_id", mode="before")
    @classmethod
    def blank_means_absent(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("from_", "to")
    @classmethod
    def normalize_timestamp(cls, v: datetime | None) -> datetime | None:
        if v is None:
            return None
        return to_utc_naive(v)

    @classmethod
    def parse(cls, **raw) -> "AuditFilter":
        """
        Build a filter from loosely typed input (query strings, JSON).

        Raises InvalidFilter instead of a pydantic ValidationError so
        callers only deal with the audit error taxonomy.
        """
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidFilter(f"Invalid audit filter: {problems}") from e

    def with_text(self, text: str | None) -> "AuditFilter":
        if text is not None and not text.strip():
            text = None
        return self.model_copy(update={"text": text})

    def clauses(self) -> list:
        """SQL predicates equivalent to ``matches``."""
        clauses = []
        if self.text is not None:
            term = self.text.lower()
            clauses.append(or_(*[
                func.lower(column).contains(term, autoescape=True)
                for column in TEXT_COLUMNS
            ]))
        if self.entity_type is not None:
            clauses.append(AuditEntry.entity_type == self.entity_type)
        if self.action is not None:
            clauses.append(AuditEntry.action == self.action)
        if self.actor_id is not None:
            clauses.append(AuditEntry.actor_id == self.actor_id)
        if self.from_ is not None:
            clauses.append(AuditEntry.created_at >= self.from_)
        if self.to is not None:
            clauses.append(AuditEntry.created_at <= self.to)
        return clauses

    def where(self):
        """All clauses combined, or None when the filter is empty."""
        clauses = self.clauses()
        return and_(*clauses) if clauses else None

    def matches(self, entry: AuditEntry) -> bool:
        if self.text is not None:
            term = self.text.lower()
            haystack = (
                entry.action,
                entry.entity_type,
                entry.entity_id,
                _metadata_text(entry),
            )
            if not any(term in value.lower() for value in haystack):
                return False
        if self.entity_type is not None and entry.entity_type != self.entity_type:
            return False
        if self.action is not None and entry.action != self.action:
            return False
        if self.actor_id is not None and entry.actor_id != self.actor_id:
            return False
        if self.from_ is not None and entry.created_at < self.from_:
            return False
        if self.to is not None and entry.created_at > self.to:
            return False
        return True


def _metadata_text(entry) -> str:
    text = getattr(entry, "metadata_json", None)
    if text is None:
        text = dump_metadata(getattr(entry, "metadata", {}) or {})
    return text

"""
CSV export of audit entries.

The CSV layout is a fixed external contract: UTF-8, comma
delimited, LF line endings, RFC 4180 quoting (fields containing a
comma, quote or newline are quoted with inner quotes doubled) and
this exact header row:

    id,org_id,actor_id,action,entity_type,entity_id,metadata,created_at

Export is not paginated. It applies the same AuditFilter as
listing to the full matching set and streams it in chunks.
"""

import csv
import io
import logging
from typing import Callable, Iterator

from sqlalchemy.orm import Session

from audit_trail.errors import ExportCancelled
from audit_trail.models.audit_entry import AuditEntry
from audit_trail.services.audit_store import AuditStore
from audit_trail.services.filters import AuditFilter

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "id",
    "org_id",
    "actor_id",
    "action",
    "entity_type",
    "entity_id",
    "metadata",
    "created_at",
)


def entry_row(entry: AuditEntry) -> list[str]:
    return [
        str(entry.id),
        entry.org_id,
        entry.actor_id or "",
        entry.action,
        entry.entity_type,
        entry.entity_id,
        entry.metadata_json,
        entry.created_at.isoformat(),
    ]


class ExportService:

    def __init__(self, db: Session, store: AuditStore | None = None):
        self.db = db
        self.store = store or AuditStore(db)

    def iter_csv(
        self,
        org_id: str,
        audit_filter: AuditFilter | None = None,
        rows_per_chunk: int = 500,
        cancelled: Callable[[], bool] | None = None,
    ) -> Iterator[str]:
        """
        Yield the CSV document in chunks of up to ``rows_per_chunk`` rows.

        The header is always the first chunk, so an empty result set
        still produces a valid document. ``cancelled`` is checked
        between chunks; when it returns True, ExportCancelled is
        raised and nothing more is read.
        """
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")

        writer.writerow(CSV_COLUMNS)
        yield self._drain(buffer)

        count = 0
        pending = 0
        for entry in self.store.iter_matching(org_id, audit_filter):
            writer.writerow(entry_row(entry))
            count += 1
            pending += 1
            if pending >= rows_per_chunk:
                yield self._drain(buffer)
                pending = 0
                if cancelled is not None and cancelled():
                    raise ExportCancelled(
                        f"Export for org {org_id} cancelled after {count} rows"
                    )
        if pending:
            yield self._drain(buffer)

        logger.info("Exported %d audit entries for org %s", count, org_id)

    def export_csv(
        self,
        org_id: str,
        audit_filter: AuditFilter | None = None,
    ) -> str:
        """Return the whole export as one string."""
        return "".join(self.iter_csv(org_id, audit_filter))

    @staticmethod
    def _drain(buffer: io.StringIO) -> str:
        chunk = buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)
        return chunk

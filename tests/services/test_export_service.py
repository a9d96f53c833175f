"""
Tests for CSV export.

Output is parsed back with csv.reader so quoting is checked the
way a spreadsheet or downstream script would read it.
"""

import csv
import io

import pytest

from audit_trail.errors import ExportCancelled
from audit_trail.services.export_service import CSV_COLUMNS, ExportService
from audit_trail.services.filters import AuditFilter

HEADER = "id,org_id,actor_id,action,entity_type,entity_id,metadata,created_at\n"


def parse(document):
    return list(csv.reader(io.StringIO(document)))


class TestExportCsv:

    def test_empty_export_is_header_only(self, db_session):
        document = ExportService(db_session).export_csv("org-empty")
        assert document == HEADER

    def test_rows_newest_first(self, db_session, append):
        first = append("org-1", "created", entity_id="rec-1")
        second = append("org-1", "updated", entity_id="rec-1")

        rows = parse(ExportService(db_session).export_csv("org-1"))

        assert rows[0] == list(CSV_COLUMNS)
        assert [r[0] for r in rows[1:]] == [str(second.id), str(first.id)]

    def test_row_contents(self, db_session, append):
        entry = append("org-1", "created", "record", "rec-7", None, {"k": "v"})

        rows = parse(ExportService(db_session).export_csv("org-1"))

        assert rows[1] == [
            str(entry.id),
            "org-1",
            "",
            "created",
            "record",
            "rec-7",
            '{"k": "v"}',
            entry.created_at.isoformat(),
        ]

    def test_special_characters_survive_round_trip(self, db_session, append):
        tricky = 'He said "hi", then\nleft'
        entry = append("org-1", entity_id=tricky, metadata={"note": tricky})

        rows = parse(ExportService(db_session).export_csv("org-1"))

        assert rows[1][5] == tricky
        assert rows[1][6] == entry.metadata_json

    def test_lf_line_endings(self, db_session, append):
        append("org-1")
        document = ExportService(db_session).export_csv("org-1")
        assert "\r\n" not in document
        assert document.endswith("\n")

    def test_filter_applies(self, db_session, append):
        append("org-1", "created")
        append("org-1", "deleted")
        append("org-2", "created")

        rows = parse(ExportService(db_session).export_csv(
            "org-1", AuditFilter(action="created")
        ))

        assert len(rows) == 2
        assert rows[1][1] == "org-1"
        assert rows[1][3] == "created"


class TestIterCsv:

    def test_header_is_first_chunk(self, db_session, append):
        append("org-1")
        chunks = list(ExportService(db_session).iter_csv("org-1"))
        assert chunks[0] == HEADER

    def test_chunks_respect_row_limit(self, db_session, append):
        for i in range(5):
            append("org-1", entity_id=str(i))

        chunks = list(ExportService(db_session).iter_csv("org-1", rows_per_chunk=2))

        assert [len(parse(c)) for c in chunks[1:]] == [2, 2, 1]
        assert "".join(chunks) == ExportService(db_session).export_csv("org-1")

    def test_cancel_stops_between_chunks(self, db_session, append):
        for i in range(5):
            append("org-1", entity_id=str(i))

        chunks = ExportService(db_session).iter_csv(
            "org-1", rows_per_chunk=2, cancelled=lambda: True
        )

        assert next(chunks) == HEADER
        assert len(parse(next(chunks))) == 2
        with pytest.raises(ExportCancelled):
            next(chunks)

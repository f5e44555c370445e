"""Export/import of tickets through .xlsx workbooks."""
from datetime import datetime
from io import BytesIO

import openpyxl
import pytest

import excel
import services
from conftest import ISSUE_FIELDS, make_xlsx
from exceptions import NotFoundError, ValidationError
from models import TicketStatus
from services import LAST_KEY, TICKETS_KEY


class TestExport:
    def test_export_writes_one_row_per_ticket(self, r):
        services.issue_ticket(r, ISSUE_FIELDS)
        services.update_ticket(r, 1, {"status": "processing", "assignee": "Bob"})

        content, filename = services.export_tickets(r, now=datetime(2026, 10, 19, 14, 30))
        assert filename == "tickets_202610191430.xlsx"

        ws = openpyxl.load_workbook(BytesIO(content)).active
        rows = list(ws.iter_rows(values_only=True))
        assert list(rows[0]) == [header for header, _, _ in excel.EXPORT_COLUMNS]
        assert len(rows) == 2

        row = dict(zip(rows[0], rows[1]))
        assert row["Ticket Number"] == 1
        assert row["Customer Name"] == "ACME Corp"
        assert row["Expected Completion Date"] == "2026-11-15"
        assert row["Status"] == "processing"
        assert row["Assignee"] == "Bob"

    def test_export_without_tickets_is_not_found(self, r):
        with pytest.raises(NotFoundError):
            services.export_tickets(r)


class TestImport:
    def test_bad_rows_are_reported_and_skipped(self, r):
        content = make_xlsx([
            ["Ticket Number", "Customer Name", "Status"],
            [3, "ACME", "processing"],
            ["x", "Bad", ""],
            [None, None, None],
            [5, "Beta", "bogus"],
            [-2, "Negative", "pending"],
        ])
        result = services.import_tickets(r, content)

        assert result["imported"] == 2
        assert result["updated"] == 0
        assert result["errors"] == ["Row 3: invalid ticket number", "Row 6: invalid ticket number"]
        assert result["errorCount"] == 2

        assert r.lrange(TICKETS_KEY, 0, -1) == ["3", "5"]
        assert services.get_state(r).last_ticket == 5
        assert services.get_ticket(r, 3).status == TicketStatus.processing
        assert services.get_ticket(r, 5).status == TicketStatus.pending

    def test_reimport_updates_instead_of_duplicating(self, r):
        services.import_tickets(r, make_xlsx([
            ["Ticket Number", "Customer Name", "Status", "Note"],
            [3, "ACME", "processing", "first"],
        ]))
        result = services.import_tickets(r, make_xlsx([
            ["Ticket Number", "Customer Name"],
            [3, "ACME Holdings"],
        ]))

        assert (result["imported"], result["updated"]) == (0, 1)
        assert r.lrange(TICKETS_KEY, 0, -1) == ["3"]
        ticket = services.get_ticket(r, 3)
        assert ticket.customer_name == "ACME Holdings"
        assert ticket.status == TicketStatus.processing
        assert ticket.note == "first"

    def test_issue_after_import_continues_numbering(self, r):
        services.import_tickets(r, make_xlsx([["ticketNumber", "customerName"], [7, "ACME"]]))
        ticket = services.issue_ticket(r, ISSUE_FIELDS)
        assert ticket.ticket_number == 8

    def test_lower_number_does_not_lower_last_ticket(self, r):
        for _ in range(4):
            services.issue_ticket(r, ISSUE_FIELDS)
        services.delete_ticket(r, 2)
        result = services.import_tickets(r, make_xlsx([["Ticket Number"], [2]]))
        assert result["imported"] == 1
        assert services.get_state(r).last_ticket == 4
        assert r.lrange(TICKETS_KEY, 0, -1) == ["1", "3", "4", "2"]

    def test_legacy_headers_are_recognised(self, r):
        content = make_xlsx([
            ["號碼", "客戶名稱", "處理進度", "備註"],
            [1, "Acme", "completed", "done already"],
        ])
        services.import_tickets(r, content)
        ticket = services.get_ticket(r, 1)
        assert ticket.customer_name == "Acme"
        assert ticket.status == TicketStatus.completed
        assert ticket.note == "done already"

    def test_error_list_is_capped(self, r, monkeypatch):
        monkeypatch.setattr(services, "IMPORT_MAX_ERRORS", 2)
        content = make_xlsx([["Ticket Number"], ["a"], ["b"], ["c"], ["d"]])
        result = services.import_tickets(r, content)
        assert len(result["errors"]) == 2
        assert result["errorCount"] == 4

    def test_oversized_number_is_rejected_and_numbering_still_works(self, r):
        result = services.import_tickets(r, make_xlsx([["Ticket Number"], [2**70], [2**63 - 1]]))
        assert result["imported"] == 0
        assert result["errors"] == [
            "Row 2: invalid ticket number",
            "Row 3: invalid ticket number",
        ]
        assert r.get(LAST_KEY) is None
        assert services.issue_ticket(r, ISSUE_FIELDS).ticket_number == 1

    def test_largest_number_still_leaves_room_to_issue(self, r):
        largest = services.MAX_TICKET_NUMBER
        result = services.import_tickets(r, make_xlsx([["Ticket Number"], [str(largest)]]))
        assert result["imported"] == 1
        assert services.issue_ticket(r, ISSUE_FIELDS).ticket_number == largest + 1

    def test_large_numbers_keep_every_digit(self, r):
        result = services.import_tickets(r, make_xlsx([["Ticket Number"], ["9007199254740993"]]))
        assert result["imported"] == 1
        assert r.lrange(TICKETS_KEY, 0, -1) == ["9007199254740993"]
        assert services.get_state(r).last_ticket == 9007199254740993

    def test_whole_decimal_text_is_accepted(self, r):
        content = make_xlsx([["Ticket Number"], ["3.0"], ["2.5"], ["1e1"], ["inf"], ["nan"]])
        result = services.import_tickets(r, content)
        assert result["imported"] == 2
        assert r.lrange(TICKETS_KEY, 0, -1) == ["3", "10"]
        assert result["errors"] == [
            "Row 3: invalid ticket number",
            "Row 5: invalid ticket number",
            "Row 6: invalid ticket number",
        ]

    def test_missing_ticket_number_column(self, r):
        with pytest.raises(ValidationError):
            services.import_tickets(r, make_xlsx([["Customer Name"], ["ACME"]]))

    def test_header_only_sheet(self, r):
        with pytest.raises(ValidationError):
            services.import_tickets(r, make_xlsx([["Ticket Number"]]))

    def test_unreadable_file(self, r):
        with pytest.raises(ValidationError):
            services.import_tickets(r, b"definitely not a workbook")


def test_map_headers_first_match_wins():
    columns = excel.map_headers(["Note", None, "ticket number", "備註"])
    assert columns == {"note": 0, "ticket_number": 2}


def test_cell_text():
    assert excel.cell_text(None) == ""
    assert excel.cell_text(12.0) == "12"
    assert excel.cell_text(datetime(2026, 10, 19)) == "2026-10-19"
    assert excel.cell_text("  x ") == "x"

"""Excel export and import helpers built on openpyxl.

Export writes one styled sheet with a fixed column set.  Import reads the
first sheet and maps whatever header spellings it finds onto ticket fields;
the header aliases cover this service's own export, the camelCase API
names, and the labels used by the spreadsheets of the earlier system.
"""

from __future__ import annotations

from datetime import date, datetime
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional, Tuple

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from models import Ticket


SHEET_TITLE = "Tickets"
CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# (header, ticket attribute, column width)
EXPORT_COLUMNS: List[Tuple[str, str, int]] = [
    ("Ticket Number", "ticket_number", 14),
    ("Applicant", "applicant", 15),
    ("Customer Name", "customer_name", 20),
    ("Customer Requirement", "customer_requirement", 30),
    ("Machine Type", "machine_type", 20),
    ("Start Date", "start_date", 15),
    ("Expected Completion Date", "expected_completion_date", 15),
    ("FCST", "fcst", 12),
    ("Mass Production Date", "mass_production_date", 15),
    ("Status", "status", 12),
    ("Reply Date", "reply_date", 15),
    ("Note", "note", 30),
    ("Assignee", "assignee", 15),
]

HEADER_ALIASES: Dict[str, Tuple[str, ...]] = {
    "ticket_number": ("Ticket Number", "ticketNumber", "號碼", "票號"),
    "applicant": ("Applicant", "applicant", "申請人"),
    "customer_name": ("Customer Name", "customerName", "客戶名稱", "客戶姓名"),
    "customer_requirement": ("Customer Requirement", "customerRequirement", "客戶需求", "需求"),
    "machine_type": ("Machine Type", "machineType", "預計使用機種", "機種"),
    "start_date": ("Start Date", "startDate", "起始日期"),
    "expected_completion_date": (
        "Expected Completion Date",
        "expectedCompletionDate",
        "期望完成日期",
        "完成日期",
    ),
    "fcst": ("FCST", "fcst"),
    "mass_production_date": ("Mass Production Date", "massProductionDate", "量產日期"),
    "status": ("Status", "status", "處理進度", "狀態"),
    "reply_date": ("Reply Date", "replyDate", "回覆日期"),
    "note": ("Note", "note", "備註", "備註說明"),
    "assignee": ("Assignee", "assignee", "處理者"),
}


def export_filename(now: Optional[datetime] = None) -> str:
    return f"tickets_{(now or datetime.now()).strftime('%Y%m%d%H%M')}.xlsx"


def build_workbook(tickets: Iterable[Ticket]) -> bytes:
    """Render tickets as an .xlsx file and return its bytes."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE

    header_fill = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF")

    for col_num, (header, _, width) in enumerate(EXPORT_COLUMNS, 1):
        cell = ws.cell(row=1, column=col_num, value=header)
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center", vertical="center")
        ws.column_dimensions[get_column_letter(col_num)].width = width

    for ticket in tickets:
        row = []
        for _, attr, _ in EXPORT_COLUMNS:
            value = getattr(ticket, attr)
            row.append(value.value if attr == "status" else value)
        ws.append(row)

    ws.freeze_panes = "A2"

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def read_rows(content: bytes) -> List[List[Any]]:
    """Return every row of the first sheet as a list of cell values."""
    wb = openpyxl.load_workbook(BytesIO(content), data_only=True)
    ws = wb.worksheets[0]
    return [list(row) for row in ws.iter_rows(values_only=True)]


def map_headers(headers: Iterable[Any]) -> Dict[str, int]:
    """Map ticket attributes to column indexes using the known aliases.

    The first matching column wins when a sheet repeats a field.
    """
    lookup: Dict[str, str] = {}
    for attr, aliases in HEADER_ALIASES.items():
        for alias in aliases:
            lookup[alias.strip().lower()] = attr

    columns: Dict[str, int] = {}
    for index, header in enumerate(headers):
        if header is None:
            continue
        attr = lookup.get(str(header).strip().lower())
        if attr and attr not in columns:
            columns[attr] = index
    return columns


def cell_text(value: Any) -> str:
    """Render a cell the way it would read in the sheet."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def is_blank_row(row: Iterable[Any]) -> bool:
    return all(cell_text(value) == "" for value in row)

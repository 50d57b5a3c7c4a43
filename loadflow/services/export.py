"""
Spreadsheet export of loads (.xlsx via openpyxl).

``filter_for_export`` applies the export filter (all / paused / allocated
plus an optional inclusive created-date range); ``build_workbook`` renders
the filtered rows into a single "Loads" sheet.
"""

from __future__ import annotations

import io
from collections.abc import Iterable
from datetime import date, datetime, timezone, tzinfo

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from loadflow.core.lifecycle import LoadStatus, as_utc, parse_status
from loadflow.schemas.load import ExportFilters, LoadRecord

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

COLUMNS: list[tuple[str, int]] = [
    ("Client Name", 25),
    ("Client Number", 15),
    ("Status", 12),
    ("Assigned To", 20),
    ("Created Date", 15),
]


def filter_for_export(
    loads: Iterable[LoadRecord],
    filters: ExportFilters,
    tz: tzinfo = timezone.utc,
) -> list[LoadRecord]:
    rows = list(loads)
    if filters.filter_type == "paused":
        rows = [l for l in rows if parse_status(l.status) is LoadStatus.PAUSED]
    elif filters.filter_type == "allocated":
        rows = [l for l in rows if l.assigned_to is not None]

    def created_on(load: LoadRecord) -> date:
        return as_utc(load.created_at).astimezone(tz).date()

    if filters.date_from is not None:
        rows = [l for l in rows if created_on(l) >= filters.date_from]
    if filters.date_to is not None:
        rows = [l for l in rows if created_on(l) <= filters.date_to]
    return rows


def export_filename(filters: ExportFilters, today: date | None = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    if filters.filter_type == "paused":
        return f"paused_loads_{today.isoformat()}.xlsx"
    return f"loads_report_{today.isoformat()}.xlsx"


def _format_date(dt: datetime, tz: tzinfo) -> str:
    local = as_utc(dt).astimezone(tz)
    return f"{local:%b} {local.day}, {local.year}"


def build_workbook(loads: Iterable[LoadRecord], tz: tzinfo = timezone.utc) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Loads"

    header_fill = PatternFill("solid", fgColor="FFE2E8F0")
    for col_idx, (title, width) in enumerate(COLUMNS, start=1):
        cell = sheet.cell(row=1, column=col_idx, value=title)
        cell.font = Font(bold=True)
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center")
        sheet.column_dimensions[chr(64 + col_idx)].width = width

    for row_idx, load in enumerate(loads, start=2):
        values = (
            load.client_name,
            load.client_number,
            parse_status(load.status).label,
            load.assigned_to_name or "Unassigned",
            _format_date(load.created_at, tz),
        )
        for col_idx, value in enumerate(values, start=1):
            sheet.cell(row=row_idx, column=col_idx, value=value)

    sheet.freeze_panes = "A2"
    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()

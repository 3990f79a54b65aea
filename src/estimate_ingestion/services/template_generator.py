"""Blank estimate template generation."""

from __future__ import annotations

import io

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from estimate_ingestion.models import ColumnRole

TEMPLATE_SHEET_NAME = "Estimate"

# Header text per column, in template order. Every label is a resolver synonym.
TEMPLATE_COLUMNS: list[tuple[str, ColumnRole, int]] = [
    ("Category", ColumnRole.CATEGORY, 16),
    ("Description", ColumnRole.DESCRIPTION, 48),
    ("Quantity", ColumnRole.QUANTITY, 10),
    ("Unit", ColumnRole.UNIT, 8),
    ("Unit Price", ColumnRole.UNIT_PRICE, 12),
    ("Tax", ColumnRole.TAX, 10),
    ("O&P", ColumnRole.OVERHEAD_PROFIT, 10),
    ("Total", ColumnRole.TOTAL, 14),
    ("Activity", ColumnRole.ACTIVITY, 18),
    ("Sel", ColumnRole.SELECTOR, 10),
    ("Depreciation", ColumnRole.DEPRECIATION, 14),
    ("ACV", ColumnRole.ACV, 14),
    ("Recoverable", ColumnRole.RECOVERABLE, 12),
]

TEMPLATE_HEADERS: list[str] = [label for label, _, _ in TEMPLATE_COLUMNS]

_HEADER_FILL = PatternFill(fill_type="solid", start_color="DDE4EE", end_color="DDE4EE")


def generate_template() -> bytes:
    """Return an .xlsx workbook with the canonical header row and no data."""
    wb = Workbook()
    ws = wb.active
    ws.title = TEMPLATE_SHEET_NAME

    for col, (label, _, width) in enumerate(TEMPLATE_COLUMNS, start=1):
        cell = ws.cell(row=1, column=col, value=label)
        cell.font = Font(bold=True)
        cell.fill = _HEADER_FILL
        cell.alignment = Alignment(horizontal="center")
        ws.column_dimensions[get_column_letter(col)].width = width

    ws.freeze_panes = "A2"

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()

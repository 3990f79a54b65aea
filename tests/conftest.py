from __future__ import annotations

import io
import os
from collections.abc import Callable, Sequence
from typing import Any
from unittest.mock import patch

import pytest
from openpyxl import Workbook as OpenpyxlWorkbook

from estimate_ingestion.config import Settings
from estimate_ingestion.workbook import Sheet

Rows = list[list[Any]]

SCENARIO_A_ROWS: Rows = [
    ["Category", "Description", "Qty", "Unit Price", "Total"],
    ["Roofing", "30yr shingles", 20, 150.00, 3000.00],
    ["Roofing", "Ridge cap", 40, 12.50, 500.00],
    ["Total", "", None, None, 3500.00],
]


def build_xlsx(
    rows: Sequence[Sequence[Any]],
    title: str = "Estimate",
    extra_sheets: dict[str, Sequence[Sequence[Any]]] | None = None,
) -> bytes:
    """Serialize rows to .xlsx bytes, one worksheet per entry."""
    wb = OpenpyxlWorkbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(list(row))
    for name, sheet_rows in (extra_sheets or {}).items():
        extra = wb.create_sheet(name)
        for row in sheet_rows:
            extra.append(list(row))
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def test_settings() -> Settings:
    """Default settings, isolated from the environment and .env files."""
    with patch.dict(os.environ, {}, clear=True):
        return Settings(_env_file=None)


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Factory for settings overrides, isolated from the environment."""

    def _make(**overrides: Any) -> Settings:
        with patch.dict(os.environ, {}, clear=True):
            return Settings(_env_file=None, **overrides)

    return _make


@pytest.fixture
def make_xlsx() -> Callable[..., bytes]:
    return build_xlsx


@pytest.fixture
def make_sheet() -> Callable[..., Sheet]:
    def _make(rows: Sequence[Sequence[Any]], name: str = "Estimate") -> Sheet:
        return Sheet.from_values(name, [list(row) for row in rows])

    return _make


@pytest.fixture
def scenario_a_rows() -> Rows:
    """Two roofing items and a total row that matches them."""
    return [list(row) for row in SCENARIO_A_ROWS]


@pytest.fixture
def scenario_b_rows(scenario_a_rows: Rows) -> Rows:
    """Scenario A with a declared total 50.00 above the items."""
    scenario_a_rows[-1][-1] = 3550.00
    return scenario_a_rows


@pytest.fixture
def scenario_c_rows(scenario_a_rows: Rows) -> Rows:
    """Scenario A plus a row whose quantity is not a number (row index 3)."""
    scenario_a_rows.insert(3, ["Roofing", "Drip edge", "abc", 3.00, None])
    return scenario_a_rows


@pytest.fixture
def scenario_a_xlsx(scenario_a_rows: Rows) -> bytes:
    return build_xlsx(scenario_a_rows)


@pytest.fixture
def scenario_b_xlsx(scenario_b_rows: Rows) -> bytes:
    return build_xlsx(scenario_b_rows)


@pytest.fixture
def scenario_c_xlsx(scenario_c_rows: Rows) -> bytes:
    return build_xlsx(scenario_c_rows)


@pytest.fixture
def plain_text_bytes() -> bytes:
    return (
        b"Dear homeowner,\n\nThank you for choosing us for your roof repair. "
        b"We will be in touch next week to schedule the inspection.\n"
    )

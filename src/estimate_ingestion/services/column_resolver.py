"""Header row detection and column role resolution.

Estimate exports from different tools label the same column differently
("Qty", "QTY.", "Quantity"). Labels are normalized and matched against a
static synonym dictionary; the leading row with the most recognized labels
is taken as the header.
"""

from __future__ import annotations

import re
import unicodedata

from estimate_ingestion.config import Settings, settings as default_settings
from estimate_ingestion.models import ColumnMapping, ColumnRole
from estimate_ingestion.utils.exceptions import NoHeaderFoundError
from estimate_ingestion.utils.logging import get_logger
from estimate_ingestion.workbook import Sheet

logger = get_logger(__name__)

HEADER_SYNONYMS: dict[ColumnRole, list[str]] = {
    ColumnRole.CATEGORY: [
        "category",
        "cat",
        "cat code",
        "category code",
        "trade",
        "section",
        "group",
    ],
    ColumnRole.DESCRIPTION: [
        "description",
        "desc",
        "item",
        "item description",
        "line item",
        "scope",
        "scope of work",
        "work description",
    ],
    ColumnRole.QUANTITY: ["quantity", "qty", "quan", "count", "units used"],
    ColumnRole.UNIT: ["unit", "units", "uom", "u/m", "unit of measure"],
    ColumnRole.UNIT_PRICE: [
        "unit price",
        "unit cost",
        "price",
        "cost",
        "rate",
        "unit rate",
        "price each",
        "remove/replace",
    ],
    ColumnRole.TAX: ["tax", "taxes", "sales tax", "taxable", "is taxable"],
    ColumnRole.OVERHEAD_PROFIT: [
        "o&p",
        "op",
        "overhead & profit",
        "overhead and profit",
        "overhead profit",
    ],
    ColumnRole.TOTAL: [
        "total",
        "line total",
        "total cost",
        "total price",
        "amount",
        "extended",
        "extension",
        "ext price",
        "extended price",
        "rcv",
        "replacement cost",
        "replacement cost value",
    ],
    ColumnRole.ACTIVITY: ["activity", "act", "action", "work type"],
    ColumnRole.SELECTOR: ["sel", "selector", "sel code", "selector code", "item code"],
    ColumnRole.ACV: ["acv", "actual cash value", "actual cash"],
    ColumnRole.DEPRECIATION: [
        "depreciation",
        "depreciation amount",
        "dep",
        "depr",
        "dep amount",
        "depr amt",
    ],
    ColumnRole.RECOVERABLE: [
        "recoverable",
        "recov",
        "recoverable dep",
        "recoverable depreciation",
    ],
}

REQUIRED_ROLE = ColumnRole.DESCRIPTION
AMOUNT_ROLES = (ColumnRole.UNIT_PRICE, ColumnRole.TOTAL)

_DROPPED = re.compile(r"[&.'`’]")
_SEPARATORS = re.compile(r"[^a-z0-9 ]+")
_WHITESPACE = re.compile(r"\s+")


def normalize_label(value: object) -> str:
    """Normalize a header label for synonym lookup.

    Folds accents to ASCII, lower-cases, removes punctuation and collapses
    whitespace: "Qty." -> "qty", "O&P" -> "op", "Unit-Price ($)" ->
    "unit price".
    """
    if value is None:
        return ""
    text = unicodedata.normalize("NFKD", str(value))
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    text = _DROPPED.sub("", text)
    text = _SEPARATORS.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def _compact(label: str) -> str:
    return label.replace(" ", "")


def _build_lookup() -> dict[str, ColumnRole]:
    lookup: dict[str, ColumnRole] = {}
    for role, variants in HEADER_SYNONYMS.items():
        for variant in variants:
            key = _compact(normalize_label(variant))
            existing = lookup.setdefault(key, role)
            if existing is not role:
                raise ValueError(f"Header synonym '{variant}' maps to two roles")
    return lookup


SYNONYM_LOOKUP: dict[str, ColumnRole] = _build_lookup()


def match_role(label: object) -> ColumnRole | None:
    """Return the role a header label names, if any."""
    normalized = normalize_label(label)
    if not normalized:
        return None
    return SYNONYM_LOOKUP.get(_compact(normalized))


class ColumnResolver:
    """Locate the header row of a sheet and map its columns to roles."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or default_settings

    def map_row(
        self, sheet: Sheet, row: int
    ) -> tuple[dict[ColumnRole, int], dict[ColumnRole, str]]:
        """Map one candidate row's labels to roles.

        Each role binds to its leftmost matching column.

        Returns:
            Tuple of (role -> column index, role -> original header text).
        """
        columns: dict[ColumnRole, int] = {}
        labels: dict[ColumnRole, str] = {}
        for cell in sheet.rows[row]:
            role = match_role(cell.value)
            if role is None or role in columns:
                continue
            columns[role] = cell.column
            labels[role] = cell.text
        return columns, labels

    def find_header_row(self, sheet: Sheet) -> tuple[int, int]:
        """Return (row index, score) of the best scoring leading row.

        Ties go to the earliest row. Returns (-1, 0) for an empty sheet.
        """
        best_row, best_score = -1, 0
        for row in range(min(self._settings.header_scan_rows, sheet.row_count)):
            columns, _ = self.map_row(sheet, row)
            if len(columns) > best_score:
                best_row, best_score = row, len(columns)
        logger.debug(
            "Header scan finished",
            sheet=sheet.name,
            best_row=best_row,
            best_score=best_score,
        )
        return best_row, best_score

    def resolve_columns(self, sheet: Sheet) -> ColumnMapping:
        """Resolve the column mapping of a sheet.

        Raises:
            NoHeaderFoundError: No row has enough recognized labels, or the
                best row lacks a description column or any amount column.
        """
        header_row, score = self.find_header_row(sheet)
        if header_row < 0 or score < self._settings.header_min_matches:
            raise NoHeaderFoundError(
                f"No header row found in the first {self._settings.header_scan_rows} "
                f"rows of sheet '{sheet.name}'",
                sheet_name=sheet.name,
                missing_roles=[REQUIRED_ROLE.value, *(r.value for r in AMOUNT_ROLES)],
                details={"best_score": score},
            )

        columns, labels = self.map_row(sheet, header_row)
        missing: list[str] = []
        if REQUIRED_ROLE not in columns:
            missing.append(REQUIRED_ROLE.value)
        if not any(role in columns for role in AMOUNT_ROLES):
            missing.extend(role.value for role in AMOUNT_ROLES)
        if missing:
            raise NoHeaderFoundError(
                f"Header row {header_row + 1} of sheet '{sheet.name}' is missing "
                f"required columns: {', '.join(missing)}",
                sheet_name=sheet.name,
                missing_roles=missing,
                details={"header_row": header_row},
            )

        mapping = ColumnMapping(
            header_row=header_row, columns=columns, header_labels=labels
        )
        logger.info(
            "Columns resolved",
            sheet=sheet.name,
            header_row=header_row,
            roles=",".join(role.value for role in mapping.roles),
        )
        return mapping

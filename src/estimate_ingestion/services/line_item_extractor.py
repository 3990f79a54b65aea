"""Line-item extraction from a resolved worksheet.

Every row below the header either becomes a ParsedLineItem, a declared
total candidate, or a skipped row with a diagnostic explaining why. Row
problems never raise.

Only a garbled quantity or unit price blocks the import. Unreadable tax,
overhead & profit, total or depreciation cells are ignored with a warning,
and a yes/no tax cell marks the item taxable without adding an amount.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from estimate_ingestion.config import Settings, settings as default_settings
from estimate_ingestion.models import (
    BLOCKING_NUMERIC_ROLES,
    NUMERIC_ROLES,
    VALUATION_ROLES,
    ColumnMapping,
    ColumnRole,
    DeclaredTotal,
    DiagnosticCode,
    LineTotalSource,
    ParseDiagnostic,
    ParsedLineItem,
    Severity,
)
from estimate_ingestion.services.category_normalizer import CategoryNormalizer
from estimate_ingestion.services.column_resolver import normalize_label
from estimate_ingestion.services.numbers import (
    CENTS,
    normalize_activity,
    normalize_unit,
    parse_flag,
    parse_number,
    quantize_cents,
)
from estimate_ingestion.utils.logging import get_logger
from estimate_ingestion.workbook import Sheet

logger = get_logger(__name__)

SENTINEL_LABELS = frozenset({"total", "totals", "grand total", "subtotal", "sub total"})

# Amount columns that may hold a yes/no flag instead of an amount
FLAG_AMOUNT_ROLES = frozenset({ColumnRole.TAX, ColumnRole.OVERHEAD_PROFIT})


@dataclass
class ExtractionOutcome:
    """Everything the extractor learned from one sheet."""

    line_items: list[ParsedLineItem] = field(default_factory=list)
    diagnostics: list[ParseDiagnostic] = field(default_factory=list)
    declared_totals: list[DeclaredTotal] = field(default_factory=list)
    skipped_rows: list[int] = field(default_factory=list)


@dataclass
class RowValues:
    """Typed cell values of one row, plus the cells that did not parse."""

    numbers: dict[ColumnRole, Decimal | None] = field(default_factory=dict)
    valuation: dict[ColumnRole, Decimal | None] = field(default_factory=dict)
    taxable: bool | None = None
    recoverable: bool | None = None
    # Block the row: garbled quantity or unit price
    invalid: list[tuple[ColumnRole, str]] = field(default_factory=list)
    # Read as blank with a warning
    ignored: list[tuple[ColumnRole, str]] = field(default_factory=list)

    def has_amounts(self) -> bool:
        return any(value is not None for value in self.numbers.values())


def sentinel_label(text: str) -> str | None:
    """Return the normalized label when text marks a total row."""
    label = normalize_label(text)
    return label if label in SENTINEL_LABELS else None


def _is_flag(value: Any) -> bool:
    try:
        parse_flag(value)
    except ValueError:
        return False
    return True


def _shown(mapping: ColumnMapping, cells: list[tuple[ColumnRole, str]]) -> str:
    return ", ".join(
        f"{mapping.header_labels.get(role, role.value)}={raw!r}" for role, raw in cells
    )


class LineItemExtractor:
    """Turn worksheet rows into line items and row diagnostics."""

    def __init__(
        self,
        settings: Settings | None = None,
        normalizer: CategoryNormalizer | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._normalizer = normalizer or CategoryNormalizer(self._settings)

    def extract(self, sheet: Sheet, mapping: ColumnMapping) -> ExtractionOutcome:
        """Extract line items from every row after the header row.

        Args:
            sheet: The worksheet the mapping was resolved on.
            mapping: Column positions for the sheet.

        Returns:
            ExtractionOutcome with items, diagnostics and total-row candidates.
        """
        outcome = ExtractionOutcome()
        stopped_at: int | None = None
        section: str | None = None

        for row in range(mapping.header_row + 1, sheet.row_count):
            if sheet.is_blank_row(row):
                self._skip(outcome, row, DiagnosticCode.BLANK_ROW, "row is blank")
                continue

            description = self._text(sheet, row, mapping, ColumnRole.DESCRIPTION)
            category_text = self._text(sheet, row, mapping, ColumnRole.CATEGORY)

            label = sentinel_label(description or category_text)
            if label is not None:
                self._collect_total(outcome, sheet, row, mapping, label)
                if self._settings.stop_at_first_total and stopped_at is None:
                    stopped_at = row
                continue

            if stopped_at is not None:
                self._skip(
                    outcome,
                    row,
                    DiagnosticCode.ROW_AFTER_TOTAL,
                    f"row follows the total row {stopped_at + 1} "
                    "and was not imported",
                )
                continue

            if not description:
                self._skip(
                    outcome,
                    row,
                    DiagnosticCode.MISSING_DESCRIPTION,
                    "description is blank",
                    column=ColumnRole.DESCRIPTION,
                )
                continue

            values = self._parse_values(sheet, row, mapping)
            if values.invalid:
                self._skip(
                    outcome,
                    row,
                    DiagnosticCode.INVALID_NUMBER,
                    f"non-numeric value in {_shown(mapping, values.invalid)}",
                    severity=Severity.ERROR,
                    column=values.invalid[0][0],
                )
                continue

            quantity = values.numbers.get(ColumnRole.QUANTITY)
            if quantity is not None and quantity < 0:
                self._skip(
                    outcome,
                    row,
                    DiagnosticCode.NEGATIVE_QUANTITY,
                    f"quantity {quantity} is negative",
                    severity=Severity.ERROR,
                    column=ColumnRole.QUANTITY,
                )
                continue

            if not values.has_amounts() and not values.ignored:
                section = description
                self._skip(
                    outcome,
                    row,
                    DiagnosticCode.SECTION_HEADING,
                    f"'{description}' has no amounts and was read "
                    "as a section heading",
                )
                continue

            for role, raw in values.ignored:
                outcome.diagnostics.append(
                    self._diagnostic(
                        row,
                        DiagnosticCode.IGNORED_VALUE,
                        f"{_shown(mapping, [(role, raw)])} could not be read "
                        "and was ignored",
                        column=role,
                    )
                )

            item = self._build_item(
                outcome,
                sheet,
                row,
                mapping,
                description=description,
                category_text=category_text,
                section=section,
                values=values,
            )
            if item is not None:
                outcome.line_items.append(item)

        logger.debug(
            "Rows extracted",
            sheet=sheet.name,
            line_items=len(outcome.line_items),
            skipped=len(outcome.skipped_rows),
            total_rows=len(outcome.declared_totals),
        )
        return outcome

    # ------------------------------------------------------------------ #
    # Row handling
    # ------------------------------------------------------------------ #

    def _build_item(
        self,
        outcome: ExtractionOutcome,
        sheet: Sheet,
        row: int,
        mapping: ColumnMapping,
        *,
        description: str,
        category_text: str,
        section: str | None,
        values: RowValues,
    ) -> ParsedLineItem | None:
        numbers = values.numbers
        quantity = numbers.get(ColumnRole.QUANTITY)
        unit_price = numbers.get(ColumnRole.UNIT_PRICE)
        tax = numbers.get(ColumnRole.TAX)
        overhead_profit = numbers.get(ColumnRole.OVERHEAD_PROFIT)
        total = numbers.get(ColumnRole.TOTAL)

        derived: Decimal | None = None
        if unit_price is not None:
            derived = quantize_cents(
                (quantity if quantity is not None else Decimal(1)) * unit_price
                + (tax or Decimal(0))
                + (overhead_profit or Decimal(0))
            )

        if total is not None:
            line_total = quantize_cents(total)
            source = LineTotalSource.TOTAL_CELL
            if (
                derived is not None
                and quantity is not None
                and abs(derived - line_total) > CENTS
            ):
                outcome.diagnostics.append(
                    self._diagnostic(
                        row,
                        DiagnosticCode.LINE_TOTAL_MISMATCH,
                        f"total {line_total} differs from quantity x unit price "
                        f"= {derived}; the total cell was used",
                        column=ColumnRole.TOTAL,
                    )
                )
        elif derived is not None:
            line_total = derived
            source = LineTotalSource.DERIVED
        else:
            self._skip(
                outcome,
                row,
                DiagnosticCode.MISSING_AMOUNT,
                "row has neither a unit price nor a total",
            )
            return None

        raw_category = category_text or section or ""
        return ParsedLineItem(
            row_index=row,
            raw_category=raw_category,
            canonical_category=self._normalizer.normalize(raw_category),
            description=description,
            quantity=quantity,
            unit=normalize_unit(self._value(sheet, row, mapping, ColumnRole.UNIT)),
            unit_price=unit_price,
            tax=tax,
            overhead_profit=overhead_profit,
            line_total=line_total,
            line_total_source=source,
            is_taxable=bool(values.taxable) if tax is None else tax > 0,
            activity=normalize_activity(
                self._value(sheet, row, mapping, ColumnRole.ACTIVITY)
            ),
            selector=self._text(sheet, row, mapping, ColumnRole.SELECTOR) or None,
            acv=values.valuation.get(ColumnRole.ACV),
            depreciation=values.valuation.get(ColumnRole.DEPRECIATION),
            is_recoverable=bool(values.recoverable),
        )

    def _collect_total(
        self,
        outcome: ExtractionOutcome,
        sheet: Sheet,
        row: int,
        mapping: ColumnMapping,
        label: str,
    ) -> None:
        outcome.skipped_rows.append(row)
        amount = self._total_row_amount(sheet, row, mapping)
        if amount is None:
            outcome.diagnostics.append(
                self._diagnostic(
                    row,
                    DiagnosticCode.TOTAL_ROW_WITHOUT_AMOUNT,
                    f"'{label}' row has no amount",
                )
            )
            return
        outcome.declared_totals.append(
            DeclaredTotal(row_index=row, label=label, amount=quantize_cents(amount))
        )

    def _total_row_amount(
        self, sheet: Sheet, row: int, mapping: ColumnMapping
    ) -> Decimal | None:
        """TOTAL cell of a total row, else its rightmost numeric cell."""
        candidates = []
        total_column = mapping.get(ColumnRole.TOTAL)
        if total_column is not None:
            candidates.append(sheet.cell(row, total_column))
        candidates.extend(reversed(sheet.rows[row]))

        for cell in candidates:
            try:
                amount = parse_number(cell.value)
            except ValueError:
                continue
            if amount is not None:
                return amount
        return None

    def _parse_values(
        self, sheet: Sheet, row: int, mapping: ColumnMapping
    ) -> RowValues:
        values = RowValues()
        for role in NUMERIC_ROLES:
            if not mapping.has(role):
                continue
            raw = self._value(sheet, row, mapping, role)
            try:
                values.numbers[role] = parse_number(raw)
                continue
            except ValueError:
                values.numbers[role] = None
            if role in BLOCKING_NUMERIC_ROLES:
                values.invalid.append((role, str(raw)))
                continue
            if role in FLAG_AMOUNT_ROLES and _is_flag(raw):
                if role == ColumnRole.TAX:
                    values.taxable = parse_flag(raw)
                continue
            values.ignored.append((role, str(raw)))

        for role in VALUATION_ROLES:
            raw = self._value(sheet, row, mapping, role)
            try:
                values.valuation[role] = parse_number(raw)
            except ValueError:
                values.ignored.append((role, str(raw)))

        raw = self._value(sheet, row, mapping, ColumnRole.RECOVERABLE)
        try:
            values.recoverable = parse_flag(raw)
        except ValueError:
            values.ignored.append((ColumnRole.RECOVERABLE, str(raw)))
        return values

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _value(
        sheet: Sheet, row: int, mapping: ColumnMapping, role: ColumnRole
    ) -> Any:
        column = mapping.get(role)
        if column is None:
            return None
        return sheet.cell(row, column).value

    @staticmethod
    def _text(sheet: Sheet, row: int, mapping: ColumnMapping, role: ColumnRole) -> str:
        column = mapping.get(role)
        if column is None:
            return ""
        return " ".join(sheet.cell(row, column).text.split())

    @staticmethod
    def _diagnostic(
        row: int,
        code: DiagnosticCode,
        reason: str,
        severity: Severity = Severity.WARNING,
        column: ColumnRole | None = None,
    ) -> ParseDiagnostic:
        return ParseDiagnostic(
            severity=severity,
            row_index=row,
            message=f"Row {row + 1}: {reason}",
            code=code,
            column=column,
        )

    def _skip(
        self,
        outcome: ExtractionOutcome,
        row: int,
        code: DiagnosticCode,
        reason: str,
        severity: Severity = Severity.WARNING,
        column: ColumnRole | None = None,
    ) -> None:
        outcome.skipped_rows.append(row)
        outcome.diagnostics.append(
            self._diagnostic(row, code, reason, severity=severity, column=column)
        )

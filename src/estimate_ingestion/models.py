"""Pydantic models for parse results, builder output and API payloads.

Everything produced by the pipeline is frozen all the way down: models are
frozen, sequences are tuples and the column mapping's dicts are read-only
proxies. A parse result is never edited in place, corrections produce a new
instance via ``model_copy(update=...)``.
"""

from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# =============================================================================
# Enumerations
# =============================================================================


class ColumnRole(str, Enum):
    """Canonical role of a spreadsheet column."""

    CATEGORY = "category"
    DESCRIPTION = "description"
    QUANTITY = "quantity"
    UNIT = "unit"
    UNIT_PRICE = "unit_price"
    TAX = "tax"
    OVERHEAD_PROFIT = "overhead_profit"
    TOTAL = "total"
    ACTIVITY = "activity"
    SELECTOR = "selector"
    ACV = "acv"
    DEPRECIATION = "depreciation"
    RECOVERABLE = "recoverable"


# Roles whose values make a row a priced line item
NUMERIC_ROLES: tuple[ColumnRole, ...] = (
    ColumnRole.QUANTITY,
    ColumnRole.UNIT_PRICE,
    ColumnRole.TAX,
    ColumnRole.OVERHEAD_PROFIT,
    ColumnRole.TOTAL,
)

# A garbled value here blocks the import; elsewhere it is ignored with a warning
BLOCKING_NUMERIC_ROLES: frozenset[ColumnRole] = frozenset(
    {ColumnRole.QUANTITY, ColumnRole.UNIT_PRICE}
)

# Optional depreciation columns, carried through but never summed into totals
VALUATION_ROLES: tuple[ColumnRole, ...] = (ColumnRole.ACV, ColumnRole.DEPRECIATION)


class Severity(str, Enum):
    """Severity of a row-level diagnostic."""

    WARNING = "warning"
    ERROR = "error"


class DiagnosticCode(str, Enum):
    """Machine-readable reason attached to every diagnostic."""

    BLANK_ROW = "blank_row"
    MISSING_DESCRIPTION = "missing_description"
    SECTION_HEADING = "section_heading"
    INVALID_NUMBER = "invalid_number"
    IGNORED_VALUE = "ignored_value"
    NEGATIVE_QUANTITY = "negative_quantity"
    MISSING_AMOUNT = "missing_amount"
    LINE_TOTAL_MISMATCH = "line_total_mismatch"
    TOTAL_ROW_WITHOUT_AMOUNT = "total_row_without_amount"
    ROW_AFTER_TOTAL = "row_after_total"
    AMBIGUOUS_DECLARED_TOTAL = "ambiguous_declared_total"
    TOTALS_DO_NOT_RECONCILE = "totals_do_not_reconcile"
    FEW_COLUMNS_MAPPED = "few_columns_mapped"


class LineTotalSource(str, Enum):
    """How a line item's total was obtained."""

    TOTAL_CELL = "total_cell"
    DERIVED = "derived"


class SpreadsheetFormat(str, Enum):
    """Spreadsheet container kinds the reader can open."""

    XLSX = "xlsx"
    XLS = "xls"
    CSV = "csv"


def _read_only(value: dict[Any, Any]) -> Mapping[Any, Any]:
    return MappingProxyType(dict(value))


def _as_dict(value: Mapping[Any, Any]) -> dict[Any, Any]:
    return dict(value)


RoleIndexes = Annotated[
    dict[ColumnRole, int],
    AfterValidator(_read_only),
    PlainSerializer(_as_dict, return_type=dict[ColumnRole, int]),
]
RoleLabels = Annotated[
    dict[ColumnRole, str],
    AfterValidator(_read_only),
    PlainSerializer(_as_dict, return_type=dict[ColumnRole, str]),
]


# =============================================================================
# Parse Result
# =============================================================================


class ColumnMapping(_FrozenModel):
    """Resolved column positions for one worksheet.

    ``columns`` and ``header_labels`` are read-only mappings after validation.
    """

    header_row: int = Field(..., description="0-based index of the header row")
    columns: RoleIndexes = Field(..., description="Column index for each resolved role")
    header_labels: RoleLabels = Field(
        default_factory=dict, description="Original header text per role"
    )

    def get(self, role: ColumnRole) -> int | None:
        return self.columns.get(role)

    def has(self, role: ColumnRole) -> bool:
        return role in self.columns

    @property
    def roles(self) -> list[ColumnRole]:
        """Resolved roles in column order."""
        return sorted(self.columns, key=self.columns.__getitem__)


class ParsedLineItem(_FrozenModel):
    """One priced row of the estimate."""

    row_index: int = Field(..., description="0-based row in the source sheet")
    raw_category: str = Field(default="", description="Category text as written")
    canonical_category: str = Field(..., description="Normalized category")
    description: str
    quantity: Decimal | None = None
    unit: str | None = None
    unit_price: Decimal | None = None
    tax: Decimal | None = None
    overhead_profit: Decimal | None = None
    line_total: Decimal
    line_total_source: LineTotalSource
    is_taxable: bool = Field(
        default=False, description="Positive tax amount or a yes flag in the tax cell"
    )
    activity: str | None = Field(
        default=None, description="Normalized work activity, e.g. 'Remove and Replace'"
    )
    selector: str | None = Field(default=None, description="Xactimate selector code")
    acv: Decimal | None = Field(default=None, description="Actual cash value cell")
    depreciation: Decimal | None = Field(
        default=None, description="Depreciation amount cell"
    )
    is_recoverable: bool = False

    @property
    def subtotal(self) -> Decimal:
        """Line total net of tax and overhead & profit."""
        return (
            self.line_total
            - (self.tax or Decimal("0"))
            - (self.overhead_profit or Decimal("0"))
        )

    @property
    def actual_cash_value(self) -> Decimal:
        """The ACV cell, or the line total less depreciation when it is blank."""
        if self.acv is not None:
            return self.acv
        return self.line_total - (self.depreciation or Decimal("0"))

    @property
    def row_number(self) -> int:
        """1-based row number as shown by spreadsheet applications."""
        return self.row_index + 1


class ParseDiagnostic(_FrozenModel):
    """A warning or error about one row (or the whole sheet)."""

    severity: Severity
    row_index: int | None = None
    message: str
    code: DiagnosticCode
    column: ColumnRole | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR


class DeclaredTotal(_FrozenModel):
    """An amount written on a total/subtotal row of the sheet."""

    row_index: int
    label: str
    amount: Decimal


class CategoryTotal(_FrozenModel):
    """Per-category breakdown shown in the preview."""

    category: str
    item_count: int
    total: Decimal


class ActivityTotal(_FrozenModel):
    """Per-activity breakdown, largest total first."""

    activity: str
    item_count: int
    total: Decimal


class ParsedEstimateSummary(_FrozenModel):
    """Computed totals and the cross-check against the declared total."""

    item_count: int
    computed_subtotal: Decimal
    computed_tax: Decimal
    computed_overhead_profit: Decimal
    computed_grand_total: Decimal
    computed_depreciation: Decimal = Decimal("0.00")
    computed_acv: Decimal = Field(
        default=Decimal("0.00"), description="Sum of actual cash values"
    )
    declared_grand_total: Decimal | None = None
    declared_total_row: int | None = None
    discrepancy: Decimal | None = Field(
        default=None,
        description="computed_grand_total - declared_grand_total, in cents",
    )
    tolerance: Decimal = Decimal("0.01")
    category_totals: tuple[CategoryTotal, ...] = ()
    activity_totals: tuple[ActivityTotal, ...] = Field(
        default=(), description="Only items with an activity column value"
    )

    @property
    def reconciles(self) -> bool:
        """True when there is no declared total or it is within tolerance."""
        return self.discrepancy is None or abs(self.discrepancy) <= self.tolerance


class ParseMetadata(_FrozenModel):
    """Bookkeeping about the upload that produced a result."""

    file_name: str | None = None
    sheet_name: str
    source_format: SpreadsheetFormat
    total_rows: int = Field(..., description="Rows below the header row")
    parsed_rows: int
    skipped_rows: int
    parsed_at: datetime


class ExcelParseResult(_FrozenModel):
    """Immutable artifact handed to the preview UI and the converter."""

    sheet_name: str
    column_mapping: ColumnMapping
    line_items: tuple[ParsedLineItem, ...]
    summary: ParsedEstimateSummary
    categories: tuple[str, ...] = Field(
        ..., description="Unique canonical categories in first-seen order"
    )
    diagnostics: tuple[ParseDiagnostic, ...] = ()
    declared_totals: tuple[DeclaredTotal, ...] = ()
    metadata: ParseMetadata | None = None

    @property
    def errors(self) -> list[ParseDiagnostic]:
        return [diag for diag in self.diagnostics if diag.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[ParseDiagnostic]:
        return [
            diag for diag in self.diagnostics if diag.severity == Severity.WARNING
        ]

    @property
    def has_errors(self) -> bool:
        return any(diag.is_error for diag in self.diagnostics)

    @property
    def can_import(self) -> bool:
        """Whether the preview may enable the import action."""
        return not self.has_errors and bool(self.line_items)


# =============================================================================
# Builder Output
# =============================================================================


class BuilderLineItem(_FrozenModel):
    """A line item in the estimate-builder's shape."""

    id: str
    line_number: int
    row_index: int
    category_id: str
    category_name: str
    item_code: str = Field(
        ..., description="'<category code> <selector>' or '<category code>-<nnn>'"
    )
    description: str
    activity: str | None = None
    selector: str | None = None
    quantity: Decimal | None = None
    unit: str | None = None
    unit_price: Decimal | None = None
    tax: Decimal | None = None
    overhead_profit: Decimal | None = None
    line_total: Decimal
    acv: Decimal | None = None
    depreciation: Decimal | None = None
    depreciation_percent: Decimal | None = None
    is_recoverable: bool = False
    is_taxable: bool = False
    is_included: bool = True


class BuilderCategory(_FrozenModel):
    """A category section of the estimate builder with its items."""

    id: str
    code: str
    name: str
    icon: str
    color: str
    sort_order: int
    is_expanded: bool = False
    line_items: tuple[BuilderLineItem, ...] = ()


class BuilderEstimate(_FrozenModel):
    """Hierarchical category -> line items structure for the builder."""

    categories: tuple[BuilderCategory, ...]
    item_count: int
    total: Decimal


# =============================================================================
# API Models
# =============================================================================


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: str
    version: str


class ConvertRequest(BaseModel):
    """Request body for converting a previewed parse result."""

    result: ExcelParseResult = Field(..., description="Result returned by /parse")
    excluded_rows: list[int] = Field(
        default_factory=list,
        description="Row indices the user dropped in the preview",
    )
    category_overrides: dict[int, str] = Field(
        default_factory=dict,
        description="Manual re-categorization keyed by row index",
    )


class ErrorDetail(BaseModel):
    """Error detail model for API error responses."""

    detail: str = Field(..., description="Human-readable error message")
    error_code: str | None = Field(
        default=None,
        description="Machine-readable error code (e.g., 'E1001')",
    )
    details: dict[str, Any] | None = Field(
        default=None,
        description="Additional error details for debugging",
    )
    request_id: str | None = Field(
        default=None,
        description="Request ID for error correlation",
    )


class FormatInfo(BaseModel):
    """Spreadsheet format detection result."""

    mime_type: str = Field(..., description="MIME type used for the decision")
    extension: str = Field(..., description="Canonical extension including the dot")
    source_format: SpreadsheetFormat = Field(
        ..., description="Container kind the reader will open"
    )
    detected_from_content: bool = Field(
        default=False,
        description="Whether format was detected from file content (magic bytes)",
    )
    original_extension: str | None = Field(
        default=None,
        description="Original file extension if different from detected format",
    )

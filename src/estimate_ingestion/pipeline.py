"""End-to-end parse of one uploaded estimate spreadsheet.

The pipeline is synchronous and all-or-nothing: either a complete
ExcelParseResult is returned or a fatal error propagates. Row-level
problems travel as diagnostics on the result.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from estimate_ingestion.config import Settings, settings as default_settings
from estimate_ingestion.models import (
    ColumnMapping,
    DiagnosticCode,
    ExcelParseResult,
    ParseDiagnostic,
    ParseMetadata,
    Severity,
    SpreadsheetFormat,
)
from estimate_ingestion.services.assembler import assemble
from estimate_ingestion.services.category_normalizer import CategoryNormalizer
from estimate_ingestion.services.column_resolver import ColumnResolver
from estimate_ingestion.services.line_item_extractor import LineItemExtractor
from estimate_ingestion.services.summary_reconciler import SummaryReconciler
from estimate_ingestion.services.workbook_reader import WorkbookReader
from estimate_ingestion.utils.exceptions import NoHeaderFoundError, SheetNotFoundError
from estimate_ingestion.utils.logging import LogContext, get_logger, timed_operation
from estimate_ingestion.workbook import Sheet, Workbook

logger = get_logger(__name__)

PREFERRED_SHEET_KEYWORDS = ("estimate", "line", "detail")
MIN_MAPPED_COLUMNS = 3


class EstimateParser:
    """Runs reader, resolver, extractor, normalizer and reconciler in order.

    Collaborators can be injected for tests; by default each is built from
    the same Settings instance.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        reader: WorkbookReader | None = None,
        resolver: ColumnResolver | None = None,
        normalizer: CategoryNormalizer | None = None,
        extractor: LineItemExtractor | None = None,
        reconciler: SummaryReconciler | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.reader = reader or WorkbookReader(self.settings)
        self.resolver = resolver or ColumnResolver(self.settings)
        self.normalizer = normalizer or CategoryNormalizer(self.settings)
        self.extractor = extractor or LineItemExtractor(
            self.settings, normalizer=self.normalizer
        )
        self.reconciler = reconciler or SummaryReconciler(self.settings)

    def parse(
        self,
        content: bytes,
        filename: str | None = None,
        sheet_name: str | None = None,
        upload_id: str | None = None,
    ) -> ExcelParseResult:
        """Parse an uploaded spreadsheet into an ExcelParseResult.

        Args:
            content: Raw upload bytes.
            filename: Original file name.
            sheet_name: Worksheet to parse; chosen automatically when None.
            upload_id: Correlation id for logs; generated when None.

        Returns:
            The immutable parse result.

        Raises:
            UnreadableFileError: The upload is not a readable spreadsheet.
            TooLargeError: The upload exceeds the size guards.
            SheetNotFoundError: `sheet_name` is not in the workbook.
            NoHeaderFoundError: No sheet has a recognizable header row.
        """
        upload_id = upload_id or uuid.uuid4().hex[:12]
        with LogContext(upload_id=upload_id, file_name=filename):
            with timed_operation(logger, "parse_estimate") as metrics:
                workbook = self.reader.read(content, filename)
                metrics.cells_read = workbook.cell_count

                sheet, mapping = self.select_sheet(workbook, sheet_name)
                result = self._parse_sheet(workbook, sheet, mapping, filename)

                metrics.rows_processed = sheet.row_count - mapping.header_row - 1
                metrics.line_items = len(result.line_items)
                metrics.diagnostics = len(result.diagnostics)

            logger.log_parse_result(
                sheet_name=result.sheet_name,
                line_items=len(result.line_items),
                errors=len(result.errors),
                warnings=len(result.warnings),
                discrepancy=result.summary.discrepancy,
            )
        return result

    def select_sheet(
        self, workbook: Workbook, sheet_name: str | None = None
    ) -> tuple[Sheet, ColumnMapping]:
        """Pick the worksheet to parse and resolve its columns.

        An explicit `sheet_name` must exist. Otherwise sheets named like an
        estimate ("estimate", "line", "detail") are tried first, then the
        rest in workbook order; the first sheet with a resolvable header wins.

        Raises:
            SheetNotFoundError: The requested sheet does not exist.
            NoHeaderFoundError: No candidate sheet has a header row; the
                error of the first candidate is raised.
        """
        if sheet_name is not None:
            sheet = workbook.get_sheet(sheet_name)
            if sheet is None:
                raise SheetNotFoundError(sheet_name, available=workbook.sheet_names)
            return sheet, self.resolver.resolve_columns(sheet)

        preferred = [
            sheet
            for sheet in workbook.sheets
            if any(key in sheet.name.lower() for key in PREFERRED_SHEET_KEYWORDS)
        ]
        candidates = preferred + [
            sheet for sheet in workbook.sheets if all(sheet is not p for p in preferred)
        ]

        first_error: NoHeaderFoundError | None = None
        for sheet in candidates:
            try:
                mapping = self.resolver.resolve_columns(sheet)
            except NoHeaderFoundError as e:
                logger.debug("Sheet has no header row", sheet=sheet.name)
                first_error = first_error or e
                continue
            return sheet, mapping

        if first_error is None:
            raise NoHeaderFoundError("The workbook contains no worksheets")
        raise first_error

    def _parse_sheet(
        self,
        workbook: Workbook,
        sheet: Sheet,
        mapping: ColumnMapping,
        filename: str | None,
    ) -> ExcelParseResult:
        outcome = self.extractor.extract(sheet, mapping)
        diagnostics = list(outcome.diagnostics)

        if len(mapping.columns) < MIN_MAPPED_COLUMNS:
            diagnostics.append(
                ParseDiagnostic(
                    severity=Severity.WARNING,
                    code=DiagnosticCode.FEW_COLUMNS_MAPPED,
                    message=(
                        f"Only {len(mapping.columns)} columns were recognized "
                        f"({', '.join(role.value for role in mapping.roles)}); "
                        "check that the sheet follows the estimate template"
                    ),
                )
            )

        summary, summary_diagnostics = self.reconciler.reconcile(
            outcome.line_items, outcome.declared_totals
        )
        diagnostics.extend(summary_diagnostics)

        total_rows = max(sheet.row_count - mapping.header_row - 1, 0)
        metadata = ParseMetadata(
            file_name=filename,
            sheet_name=sheet.name,
            source_format=SpreadsheetFormat(workbook.source_format),
            total_rows=total_rows,
            parsed_rows=len(outcome.line_items),
            skipped_rows=total_rows - len(outcome.line_items),
            parsed_at=datetime.now(UTC),
        )

        return assemble(
            sheet.name,
            mapping,
            outcome.line_items,
            diagnostics,
            summary,
            self.normalizer.get_unique_categories(outcome.line_items),
            declared_totals=outcome.declared_totals,
            metadata=metadata,
        )


def parse_estimate(
    content: bytes,
    filename: str | None = None,
    sheet_name: str | None = None,
    settings: Settings | None = None,
) -> ExcelParseResult:
    """Parse an estimate spreadsheet with a default-configured parser."""
    return EstimateParser(settings).parse(content, filename, sheet_name)

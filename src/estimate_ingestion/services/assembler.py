"""Parse result assembly."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from estimate_ingestion.models import (
    ColumnMapping,
    DeclaredTotal,
    ExcelParseResult,
    ParseDiagnostic,
    ParsedEstimateSummary,
    ParsedLineItem,
    ParseMetadata,
)


def sort_diagnostics(diagnostics: Iterable[ParseDiagnostic]) -> list[ParseDiagnostic]:
    """Order diagnostics by row, sheet-level ones first; stable within a row."""
    return sorted(
        diagnostics,
        key=lambda diag: -1 if diag.row_index is None else diag.row_index,
    )


def assemble(
    sheet_name: str,
    column_mapping: ColumnMapping,
    line_items: Sequence[ParsedLineItem],
    diagnostics: Iterable[ParseDiagnostic],
    summary: ParsedEstimateSummary,
    categories: Sequence[str],
    *,
    declared_totals: Sequence[DeclaredTotal] = (),
    metadata: ParseMetadata | None = None,
) -> ExcelParseResult:
    """Bundle the pipeline outputs into one immutable ExcelParseResult."""
    return ExcelParseResult(
        sheet_name=sheet_name,
        column_mapping=column_mapping,
        line_items=tuple(line_items),
        summary=summary,
        categories=tuple(categories),
        diagnostics=tuple(sort_diagnostics(diagnostics)),
        declared_totals=tuple(declared_totals),
        metadata=metadata,
    )

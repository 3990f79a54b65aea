"""Import preview: functional edits of a parse result and the upload slot.

A parse result is never edited in place. Dropping rows or re-categorizing a
row returns a new ExcelParseResult with summary and categories recomputed,
leaving the original untouched for the preview's undo history.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Sequence

from estimate_ingestion.models import (
    BuilderEstimate,
    DeclaredTotal,
    DiagnosticCode,
    ExcelParseResult,
    ParseDiagnostic,
    ParsedLineItem,
)
from estimate_ingestion.pipeline import EstimateParser
from estimate_ingestion.services.assembler import assemble
from estimate_ingestion.services.builder_converter import BuilderConverter
from estimate_ingestion.services.category_normalizer import CategoryNormalizer
from estimate_ingestion.services.summary_reconciler import SummaryReconciler
from estimate_ingestion.utils.logging import get_logger

logger = get_logger(__name__)

# Diagnostics owned by the reconciler; recomputed on every edit
SUMMARY_CODES = frozenset(
    {DiagnosticCode.AMBIGUOUS_DECLARED_TOTAL, DiagnosticCode.TOTALS_DO_NOT_RECONCILE}
)


def _rebuild(
    result: ExcelParseResult,
    line_items: Sequence[ParsedLineItem],
    declared_totals: Sequence[DeclaredTotal],
    diagnostics: Iterable[ParseDiagnostic],
    reconciler: SummaryReconciler,
    normalizer: CategoryNormalizer,
) -> ExcelParseResult:
    kept = [diag for diag in diagnostics if diag.code not in SUMMARY_CODES]
    summary, summary_diagnostics = reconciler.reconcile(line_items, declared_totals)

    metadata = result.metadata
    if metadata is not None:
        metadata = metadata.model_copy(
            update={
                "parsed_rows": len(line_items),
                "skipped_rows": metadata.total_rows - len(line_items),
            }
        )

    return assemble(
        result.sheet_name,
        result.column_mapping,
        line_items,
        kept + summary_diagnostics,
        summary,
        normalizer.get_unique_categories(line_items),
        declared_totals=declared_totals,
        metadata=metadata,
    )


def drop_rows(
    result: ExcelParseResult,
    row_indices: Iterable[int],
    reconciler: SummaryReconciler | None = None,
    normalizer: CategoryNormalizer | None = None,
) -> ExcelParseResult:
    """Exclude rows from a parse result.

    Removes the line items, total-row candidates and every diagnostic of the
    given rows. Dropping the rows of ERROR diagnostics unblocks conversion.
    """
    dropped = set(row_indices)
    if not dropped:
        return result

    logger.info("Dropping rows from preview", rows=sorted(dropped))
    return _rebuild(
        result,
        [item for item in result.line_items if item.row_index not in dropped],
        [total for total in result.declared_totals if total.row_index not in dropped],
        [diag for diag in result.diagnostics if diag.row_index not in dropped],
        reconciler or SummaryReconciler(),
        normalizer or CategoryNormalizer(),
    )


def recategorize(
    result: ExcelParseResult,
    row_index: int,
    category: str,
    normalizer: CategoryNormalizer | None = None,
    reconciler: SummaryReconciler | None = None,
) -> ExcelParseResult:
    """Move one line item to another category.

    Raises:
        KeyError: No line item was extracted from `row_index`.
    """
    normalizer = normalizer or CategoryNormalizer()
    if not any(item.row_index == row_index for item in result.line_items):
        raise KeyError(f"No line item at row {row_index + 1}")

    canonical = normalizer.normalize(category)
    line_items = [
        item.model_copy(
            update={"raw_category": category, "canonical_category": canonical}
        )
        if item.row_index == row_index
        else item
        for item in result.line_items
    ]
    return _rebuild(
        result,
        line_items,
        result.declared_totals,
        result.diagnostics,
        reconciler or SummaryReconciler(),
        normalizer,
    )


def apply_edits(
    result: ExcelParseResult,
    excluded_rows: Iterable[int] = (),
    category_overrides: dict[int, str] | None = None,
    normalizer: CategoryNormalizer | None = None,
    reconciler: SummaryReconciler | None = None,
) -> ExcelParseResult:
    """Apply the preview's exclusions, then its category overrides."""
    normalizer = normalizer or CategoryNormalizer()
    reconciler = reconciler or SummaryReconciler()
    edited = drop_rows(result, excluded_rows, reconciler, normalizer)
    extracted = {item.row_index for item in edited.line_items}
    for row_index, category in (category_overrides or {}).items():
        if row_index in extracted:
            edited = recategorize(edited, row_index, category, normalizer, reconciler)
    return edited


class ImportSession:
    """Single upload slot of the import dialog; the latest upload wins.

    Each upload takes a ticket from :meth:`begin`. A result completed under
    an older ticket is discarded, so an earlier upload finishing late never
    replaces a newer one. :meth:`discard` cancels without side effects.
    """

    def __init__(
        self,
        parser: EstimateParser | None = None,
        converter: BuilderConverter | None = None,
    ) -> None:
        self._parser = parser or EstimateParser()
        self._converter = converter or BuilderConverter(self._parser.normalizer)
        self._lock = threading.Lock()
        self._generation = 0
        self._result: ExcelParseResult | None = None

    @property
    def result(self) -> ExcelParseResult | None:
        """The current preview result, if any."""
        with self._lock:
            return self._result

    def begin(self) -> int:
        """Start a new upload, invalidating any in-flight one."""
        with self._lock:
            self._generation += 1
            self._result = None
            return self._generation

    def complete(self, ticket: int, result: ExcelParseResult) -> bool:
        """Store a finished parse if its upload is still the current one."""
        with self._lock:
            if ticket != self._generation:
                logger.info(
                    "Discarding stale parse result",
                    ticket=ticket,
                    current=self._generation,
                )
                return False
            self._result = result
            return True

    def discard(self) -> None:
        """Cancel the preview: drop the current result and in-flight uploads."""
        with self._lock:
            self._generation += 1
            self._result = None

    def submit(
        self,
        content: bytes,
        filename: str | None = None,
        sheet_name: str | None = None,
    ) -> ExcelParseResult | None:
        """Parse an upload under a fresh ticket.

        Returns:
            The result, or None when a newer upload superseded this one
            while it was parsing.
        """
        ticket = self.begin()
        result = self._parser.parse(content, filename, sheet_name)
        return result if self.complete(ticket, result) else None

    def drop_rows(self, row_indices: Iterable[int]) -> ExcelParseResult:
        """Exclude rows from the current preview."""
        return self._edit(
            lambda current: drop_rows(
                current,
                row_indices,
                self._parser.reconciler,
                self._parser.normalizer,
            )
        )

    def recategorize(self, row_index: int, category: str) -> ExcelParseResult:
        """Re-categorize one row of the current preview."""
        return self._edit(
            lambda current: recategorize(
                current,
                row_index,
                category,
                self._parser.normalizer,
                self._parser.reconciler,
            )
        )

    def convert(self) -> BuilderEstimate:
        """Convert the current preview for the estimate builder.

        Raises:
            LookupError: There is no preview to convert.
            ConversionBlockedError: The preview still carries ERROR diagnostics.
        """
        result = self.result
        if result is None:
            raise LookupError("No parse result to convert")
        return self._converter.convert(result)

    def _edit(
        self, edit: Callable[[ExcelParseResult], ExcelParseResult]
    ) -> ExcelParseResult:
        with self._lock:
            if self._result is None:
                raise LookupError("No parse result to edit")
            self._result = edit(self._result)
            return self._result

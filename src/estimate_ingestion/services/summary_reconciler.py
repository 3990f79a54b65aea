"""Computed totals and the cross-check against the sheet's declared total."""

from __future__ import annotations

import math
from collections.abc import Sequence
from decimal import Decimal

from estimate_ingestion.config import Settings, settings as default_settings
from estimate_ingestion.models import (
    ActivityTotal,
    CategoryTotal,
    DeclaredTotal,
    DiagnosticCode,
    ParseDiagnostic,
    ParsedEstimateSummary,
    ParsedLineItem,
    Severity,
)
from estimate_ingestion.services.numbers import CENTS, quantize_cents
from estimate_ingestion.utils.exceptions import ConfigurationError
from estimate_ingestion.utils.logging import get_logger

logger = get_logger(__name__)

GRAND_TOTAL_LABEL = "grand total"


class SummaryReconciler:
    """Sum line items with Decimal arithmetic and compare to the declared total."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or default_settings

    def reconcile(
        self,
        line_items: Sequence[ParsedLineItem],
        declared_totals: Sequence[DeclaredTotal] = (),
    ) -> tuple[ParsedEstimateSummary, list[ParseDiagnostic]]:
        """Compute the estimate summary.

        Args:
            line_items: Extracted items, in sheet order.
            declared_totals: Amounts read from total/subtotal rows.

        Returns:
            Tuple of (summary, advisory diagnostics). Diagnostics are only
            ever WARNINGs: a mismatch never blocks the import.
        """
        zero = Decimal("0")
        subtotal = sum((item.subtotal for item in line_items), zero)
        tax = sum((item.tax or zero for item in line_items), zero)
        overhead_profit = sum(
            (item.overhead_profit or zero for item in line_items), zero
        )
        grand_total = sum((item.line_total for item in line_items), zero)
        depreciation = sum((item.depreciation or zero for item in line_items), zero)
        acv = sum((item.actual_cash_value for item in line_items), zero)

        diagnostics: list[ParseDiagnostic] = []
        declared = self.select_declared_total(declared_totals)
        candidates = self._candidates(declared_totals)
        if declared is not None and len({total.amount for total in candidates}) > 1:
            diagnostics.append(
                ParseDiagnostic(
                    severity=Severity.WARNING,
                    row_index=declared.row_index,
                    code=DiagnosticCode.AMBIGUOUS_DECLARED_TOTAL,
                    message=(
                        f"Sheet has {len(candidates)} total rows with different "
                        f"amounts; row {declared.row_index + 1} "
                        f"({declared.amount}) was used as the declared total"
                    ),
                )
            )

        tolerance = self.tolerance_for(len(line_items))
        discrepancy: Decimal | None = None
        if declared is not None:
            discrepancy = quantize_cents(grand_total - declared.amount)
            if abs(discrepancy) > tolerance:
                diagnostics.append(
                    ParseDiagnostic(
                        severity=Severity.WARNING,
                        row_index=declared.row_index,
                        code=DiagnosticCode.TOTALS_DO_NOT_RECONCILE,
                        message=(
                            f"Line items sum to {quantize_cents(grand_total)} but "
                            f"the sheet declares {declared.amount} "
                            f"(difference {discrepancy})"
                        ),
                    )
                )

        summary = ParsedEstimateSummary(
            item_count=len(line_items),
            computed_subtotal=quantize_cents(subtotal),
            computed_tax=quantize_cents(tax),
            computed_overhead_profit=quantize_cents(overhead_profit),
            computed_grand_total=quantize_cents(grand_total),
            computed_depreciation=quantize_cents(depreciation),
            computed_acv=quantize_cents(acv),
            declared_grand_total=declared.amount if declared else None,
            declared_total_row=declared.row_index if declared else None,
            discrepancy=discrepancy,
            tolerance=tolerance,
            category_totals=self.category_totals(line_items),
            activity_totals=self.activity_totals(line_items),
        )
        logger.debug(
            "Summary reconciled",
            items=summary.item_count,
            computed=summary.computed_grand_total,
            declared=summary.declared_grand_total,
            discrepancy=discrepancy,
        )
        return summary, diagnostics

    def select_declared_total(
        self, declared_totals: Sequence[DeclaredTotal]
    ) -> DeclaredTotal | None:
        """Pick the authoritative declared total.

        Rows labelled "grand total" win over plain total/subtotal rows; among
        the remaining candidates the configured policy decides.

        Raises:
            ConfigurationError: The configured policy is unknown.
        """
        if not declared_totals:
            return None
        candidates = self._candidates(declared_totals)

        policy = self._settings.declared_total_policy
        if policy == "last":
            return candidates[-1]
        if policy == "first":
            return candidates[0]
        if policy == "largest":
            return max(candidates, key=lambda total: total.amount)
        raise ConfigurationError(
            f"Unknown declared total policy: {policy}",
            setting="declared_total_policy",
        )

    @staticmethod
    def _candidates(
        declared_totals: Sequence[DeclaredTotal],
    ) -> list[DeclaredTotal]:
        grand = [t for t in declared_totals if t.label == GRAND_TOTAL_LABEL]
        return grand or list(declared_totals)

    def tolerance_for(self, item_count: int) -> Decimal:
        """Allowed |discrepancy|: the per-hundred tolerance per started 100 items."""
        per_hundred = self._settings.reconciliation_tolerance_per_hundred_items
        blocks = max(1, math.ceil(item_count / 100))
        return max(CENTS, quantize_cents(per_hundred * blocks))

    @staticmethod
    def category_totals(
        line_items: Sequence[ParsedLineItem],
    ) -> tuple[CategoryTotal, ...]:
        """Item count and total per canonical category, first-seen order."""
        counts: dict[str, int] = {}
        totals: dict[str, Decimal] = {}
        for item in line_items:
            category = item.canonical_category
            counts[category] = counts.get(category, 0) + 1
            totals[category] = totals.get(category, Decimal("0")) + item.line_total
        return tuple(
            CategoryTotal(category=category, item_count=count, total=totals[category])
            for category, count in counts.items()
        )

    @staticmethod
    def activity_totals(
        line_items: Sequence[ParsedLineItem],
    ) -> tuple[ActivityTotal, ...]:
        """Item count and total per activity, largest total first.

        Items without an activity are left out; ties keep first-seen order.
        """
        counts: dict[str, int] = {}
        totals: dict[str, Decimal] = {}
        for item in line_items:
            if item.activity is None:
                continue
            counts[item.activity] = counts.get(item.activity, 0) + 1
            totals[item.activity] = (
                totals.get(item.activity, Decimal("0")) + item.line_total
            )
        ranked = sorted(counts, key=lambda activity: totals[activity], reverse=True)
        return tuple(
            ActivityTotal(
                activity=activity, item_count=counts[activity], total=totals[activity]
            )
            for activity in ranked
        )

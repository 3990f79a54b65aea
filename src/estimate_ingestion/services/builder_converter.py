"""Conversion of an approved parse result into the estimate builder's shape."""

from __future__ import annotations

from decimal import Decimal

from estimate_ingestion.models import (
    BuilderCategory,
    BuilderEstimate,
    BuilderLineItem,
    ExcelParseResult,
    ParsedLineItem,
)
from estimate_ingestion.services.category_normalizer import CategoryNormalizer
from estimate_ingestion.services.numbers import quantize_cents
from estimate_ingestion.utils.exceptions import ConversionBlockedError
from estimate_ingestion.utils.logging import get_logger

logger = get_logger(__name__)


class BuilderConverter:
    """Group line items by category for the estimate builder.

    Numeric fields are copied unchanged; the converter never recomputes an
    item, so the builder total equals the sum of the parsed line totals.
    """

    def __init__(self, normalizer: CategoryNormalizer | None = None) -> None:
        self._normalizer = normalizer or CategoryNormalizer()

    def convert(self, result: ExcelParseResult) -> BuilderEstimate:
        """Convert a parse result.

        Raises:
            ConversionBlockedError: The result carries ERROR diagnostics.
        """
        blocking = result.errors
        if blocking:
            logger.warning(
                "Conversion blocked",
                sheet=result.sheet_name,
                blocking=len(blocking),
            )
            raise ConversionBlockedError(blocking)

        by_category: dict[str, list[ParsedLineItem]] = {
            name: [] for name in result.categories
        }
        for item in result.line_items:
            by_category.setdefault(item.canonical_category, []).append(item)

        categories: list[BuilderCategory] = []
        used_ids: set[str] = set()
        line_number = 0
        for name, items in by_category.items():
            if not items:
                continue
            info = self._normalizer.describe(name)
            category_id = self._unique_id(info.code.lower(), used_ids)

            line_items = []
            for item in items:
                line_number += 1
                line_items.append(
                    BuilderLineItem(
                        id=f"item-{item.row_number}",
                        line_number=line_number,
                        row_index=item.row_index,
                        category_id=category_id,
                        category_name=name,
                        item_code=self.item_code(info.code, item.selector, line_number),
                        description=item.description,
                        activity=item.activity,
                        selector=item.selector,
                        quantity=item.quantity,
                        unit=item.unit,
                        unit_price=item.unit_price,
                        tax=item.tax,
                        overhead_profit=item.overhead_profit,
                        line_total=item.line_total,
                        acv=item.acv,
                        depreciation=item.depreciation,
                        depreciation_percent=self.depreciation_percent(item),
                        is_recoverable=item.is_recoverable,
                        is_taxable=item.is_taxable,
                    )
                )

            categories.append(
                BuilderCategory(
                    id=category_id,
                    code=info.code,
                    name=name,
                    icon=info.icon,
                    color=info.color,
                    sort_order=len(categories),
                    is_expanded=not categories,
                    line_items=tuple(line_items),
                )
            )

        estimate = BuilderEstimate(
            categories=tuple(categories),
            item_count=line_number,
            total=sum((item.line_total for item in result.line_items), Decimal("0")),
        )
        logger.info(
            "Estimate converted",
            sheet=result.sheet_name,
            categories=len(categories),
            items=estimate.item_count,
            total=estimate.total,
        )
        return estimate

    @staticmethod
    def _unique_id(base: str, used: set[str]) -> str:
        candidate, suffix = base, 2
        while candidate in used:
            candidate = f"{base}-{suffix}"
            suffix += 1
        used.add(candidate)
        return candidate

    @staticmethod
    def item_code(category_code: str, selector: str | None, line_number: int) -> str:
        """Builder item code: the selector when known, else a running number."""
        if selector:
            return f"{category_code} {selector}"
        return f"{category_code}-{line_number:03d}"

    @staticmethod
    def depreciation_percent(item: ParsedLineItem) -> Decimal | None:
        """Depreciation as a percentage of the line total, to two places."""
        if not item.depreciation or item.line_total <= 0:
            return None
        percent = item.depreciation / item.line_total * 100
        return quantize_cents(percent)

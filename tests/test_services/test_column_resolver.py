"""Tests for header row detection and column role resolution."""

from collections.abc import Callable

import pytest

from estimate_ingestion.config import Settings
from estimate_ingestion.models import ColumnMapping, ColumnRole
from estimate_ingestion.services.column_resolver import (
    HEADER_SYNONYMS,
    ColumnResolver,
    match_role,
    normalize_label,
)
from estimate_ingestion.utils.exceptions import NoHeaderFoundError
from estimate_ingestion.workbook import Sheet


@pytest.fixture
def resolver(test_settings: Settings) -> ColumnResolver:
    return ColumnResolver(test_settings)


class TestNormalizeLabel:
    """Tests for label normalization."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Qty.", "qty"),
            ("  QUANTITY ", "quantity"),
            ("O&P", "op"),
            ("Unit-Price ($)", "unit price"),
            ("Description\n", "description"),
            ("Catégorie", "categorie"),
            (None, ""),
            (42, "42"),
        ],
    )
    def test_normalize(self, raw: object, expected: str) -> None:
        assert normalize_label(raw) == expected


class TestMatchRole:
    """Tests for synonym lookup."""

    @pytest.mark.parametrize(
        ("label", "role"),
        [
            ("Qty", ColumnRole.QUANTITY),
            ("QTY.", ColumnRole.QUANTITY),
            ("qty", ColumnRole.QUANTITY),
            ("Quantity", ColumnRole.QUANTITY),
            ("O&P", ColumnRole.OVERHEAD_PROFIT),
            ("Overhead & Profit", ColumnRole.OVERHEAD_PROFIT),
            ("Unit Price", ColumnRole.UNIT_PRICE),
            ("UnitPrice", ColumnRole.UNIT_PRICE),
            ("Remove/Replace", ColumnRole.UNIT_PRICE),
            ("Line Total", ColumnRole.TOTAL),
            ("RCV", ColumnRole.TOTAL),
            ("Amount", ColumnRole.TOTAL),
            ("UOM", ColumnRole.UNIT),
            ("Scope of Work", ColumnRole.DESCRIPTION),
            ("Trade", ColumnRole.CATEGORY),
            ("Sales Tax", ColumnRole.TAX),
            ("Taxable", ColumnRole.TAX),
            ("Activity", ColumnRole.ACTIVITY),
            ("Work Type", ColumnRole.ACTIVITY),
            ("Sel", ColumnRole.SELECTOR),
            ("Selector Code", ColumnRole.SELECTOR),
            ("ACV", ColumnRole.ACV),
            ("Actual Cash Value", ColumnRole.ACV),
            ("Depr. Amt", ColumnRole.DEPRECIATION),
            ("Depreciation", ColumnRole.DEPRECIATION),
            ("Recoverable", ColumnRole.RECOVERABLE),
        ],
    )
    def test_known_labels(self, label: str, role: ColumnRole) -> None:
        assert match_role(label) == role

    @pytest.mark.parametrize("label", ["Notes", "Smith Residence", "", None, 3000])
    def test_unknown_labels(self, label: object) -> None:
        assert match_role(label) is None

    def test_every_role_has_synonyms(self) -> None:
        assert set(HEADER_SYNONYMS) == set(ColumnRole)

    def test_every_synonym_matches_its_role(self) -> None:
        for role, variants in HEADER_SYNONYMS.items():
            for variant in variants:
                assert match_role(variant) == role, variant


class TestResolveColumns:
    """Tests for ColumnResolver.resolve_columns."""

    def test_header_in_first_row(
        self,
        resolver: ColumnResolver,
        make_sheet: Callable[..., Sheet],
        scenario_a_rows: list[list[object]],
    ) -> None:
        mapping = resolver.resolve_columns(make_sheet(scenario_a_rows))

        assert mapping.header_row == 0
        assert mapping.columns == {
            ColumnRole.CATEGORY: 0,
            ColumnRole.DESCRIPTION: 1,
            ColumnRole.QUANTITY: 2,
            ColumnRole.UNIT_PRICE: 3,
            ColumnRole.TOTAL: 4,
        }
        assert mapping.header_labels[ColumnRole.UNIT_PRICE] == "Unit Price"

    def test_mapping_is_read_only(
        self,
        resolver: ColumnResolver,
        make_sheet: Callable[..., Sheet],
        scenario_a_rows: list[list[object]],
    ) -> None:
        mapping = resolver.resolve_columns(make_sheet(scenario_a_rows))

        with pytest.raises(TypeError):
            mapping.columns[ColumnRole.TOTAL] = 0  # type: ignore[index]
        with pytest.raises(TypeError):
            mapping.header_labels[ColumnRole.UNIT] = "Unit"  # type: ignore[index]
        assert mapping.model_dump(mode="json")["columns"]["total"] == 4
        assert ColumnMapping.model_validate_json(mapping.model_dump_json()) == mapping

    def test_skips_title_rows(
        self, resolver: ColumnResolver, make_sheet: Callable[..., Sheet]
    ) -> None:
        """Company and project lines above the header are ignored."""
        sheet = make_sheet(
            [
                ["ACME Roofing LLC", None, None, None],
                ["Estimate for: Smith Residence", None, None, None],
                [None, None, None, None],
                ["Item", "Qty.", "Rate", "Amount"],
                ["Shingles", 20, 150, 3000],
            ]
        )

        mapping = resolver.resolve_columns(sheet)

        assert mapping.header_row == 3
        assert mapping.get(ColumnRole.DESCRIPTION) == 0
        assert mapping.get(ColumnRole.TOTAL) == 3

    def test_highest_score_wins(
        self, resolver: ColumnResolver, make_sheet: Callable[..., Sheet]
    ) -> None:
        sheet = make_sheet(
            [
                ["Description", "Total"],
                ["Description", "Qty", "Unit Price", "Total"],
            ]
        )

        header_row, score = resolver.find_header_row(sheet)

        assert (header_row, score) == (1, 4)

    def test_tie_goes_to_earliest_row(
        self, resolver: ColumnResolver, make_sheet: Callable[..., Sheet]
    ) -> None:
        sheet = make_sheet(
            [
                ["Description", "Total"],
                ["Item", "Amount"],
            ]
        )

        assert resolver.find_header_row(sheet) == (0, 2)

    def test_leftmost_column_wins(
        self, resolver: ColumnResolver, make_sheet: Callable[..., Sheet]
    ) -> None:
        sheet = make_sheet([["Description", "Total", "Notes", "Total"]])

        mapping = resolver.resolve_columns(sheet)

        assert mapping.get(ColumnRole.TOTAL) == 1

    def test_roles_in_column_order(
        self, resolver: ColumnResolver, make_sheet: Callable[..., Sheet]
    ) -> None:
        sheet = make_sheet([["Total", "Qty", "Description"]])

        mapping = resolver.resolve_columns(sheet)

        assert mapping.roles == [
            ColumnRole.TOTAL,
            ColumnRole.QUANTITY,
            ColumnRole.DESCRIPTION,
        ]

    def test_header_beyond_scan_limit(
        self,
        make_settings: Callable[..., Settings],
        make_sheet: Callable[..., Sheet],
    ) -> None:
        resolver = ColumnResolver(make_settings(header_scan_rows=2))
        sheet = make_sheet(
            [["Title"], ["Subtitle"], ["Description", "Qty", "Total"]]
        )

        with pytest.raises(NoHeaderFoundError) as exc_info:
            resolver.resolve_columns(sheet)

        assert exc_info.value.http_status == 422
        assert "hint" in exc_info.value.details

    def test_below_min_matches(
        self,
        make_settings: Callable[..., Settings],
        make_sheet: Callable[..., Sheet],
    ) -> None:
        resolver = ColumnResolver(make_settings(header_min_matches=3))
        sheet = make_sheet([["Description", "Total"], ["Shingles", 3000]])

        with pytest.raises(NoHeaderFoundError):
            resolver.resolve_columns(sheet)

    def test_missing_description(
        self, resolver: ColumnResolver, make_sheet: Callable[..., Sheet]
    ) -> None:
        sheet = make_sheet([["Qty", "Unit Price", "Total"], [1, 2, 2]])

        with pytest.raises(NoHeaderFoundError) as exc_info:
            resolver.resolve_columns(sheet)

        assert exc_info.value.missing_roles == ["description"]

    def test_missing_amount_columns(
        self, resolver: ColumnResolver, make_sheet: Callable[..., Sheet]
    ) -> None:
        sheet = make_sheet([["Category", "Description", "Qty"]])

        with pytest.raises(NoHeaderFoundError) as exc_info:
            resolver.resolve_columns(sheet)

        assert exc_info.value.missing_roles == ["unit_price", "total"]

    def test_prose_sheet(
        self, resolver: ColumnResolver, make_sheet: Callable[..., Sheet]
    ) -> None:
        sheet = make_sheet([["Dear homeowner,"], ["Thank you for your business."]])

        with pytest.raises(NoHeaderFoundError) as exc_info:
            resolver.resolve_columns(sheet)

        assert exc_info.value.sheet_name == "Estimate"

    def test_empty_sheet(
        self, resolver: ColumnResolver, make_sheet: Callable[..., Sheet]
    ) -> None:
        sheet = make_sheet([])

        assert resolver.find_header_row(sheet) == (-1, 0)
        with pytest.raises(NoHeaderFoundError):
            resolver.resolve_columns(sheet)

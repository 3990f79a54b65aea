"""Services for estimate spreadsheet ingestion."""

from estimate_ingestion.services.builder_converter import BuilderConverter
from estimate_ingestion.services.category_normalizer import (
    CategoryInfo,
    CategoryNormalizer,
)
from estimate_ingestion.services.column_resolver import ColumnResolver
from estimate_ingestion.services.format_detector import FormatDetector
from estimate_ingestion.services.line_item_extractor import (
    ExtractionOutcome,
    LineItemExtractor,
)
from estimate_ingestion.services.summary_reconciler import SummaryReconciler
from estimate_ingestion.services.template_generator import generate_template
from estimate_ingestion.services.workbook_reader import WorkbookReader

__all__ = [
    "BuilderConverter",
    "CategoryInfo",
    "CategoryNormalizer",
    "ColumnResolver",
    "ExtractionOutcome",
    "FormatDetector",
    "LineItemExtractor",
    "SummaryReconciler",
    "WorkbookReader",
    "generate_template",
]

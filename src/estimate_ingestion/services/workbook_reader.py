"""Workbook reader: turns uploaded bytes into an in-memory Workbook.

Supported containers:
- .xlsx/.xlsm via openpyxl (cached formula values, read-only mode)
- legacy .xls via xlrd
- .csv/.tsv via pandas, with chardet encoding detection

The reader never touches the network or the disk. Oversized uploads are
rejected from the byte length and, for workbooks, from the sheet
dimensions before any cell is materialized.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Any

import chardet
import pandas as pd
import xlrd
from openpyxl import load_workbook

from estimate_ingestion.config import Settings, settings as default_settings
from estimate_ingestion.models import SpreadsheetFormat
from estimate_ingestion.services.format_detector import FormatDetector, TSV_MIME
from estimate_ingestion.utils.exceptions import (
    EncodingError,
    TooLargeError,
    UnreadableFileError,
)
from estimate_ingestion.utils.logging import get_logger
from estimate_ingestion.workbook import Sheet, Workbook

logger = get_logger(__name__)


class WorkbookReader:
    """Read spreadsheet bytes into a :class:`Workbook`."""

    MIN_ENCODING_CONFIDENCE = 0.5
    FALLBACK_ENCODINGS = ["utf-8", "cp1252", "latin-1"]
    CSV_DELIMITERS = ",;\t|"

    def __init__(
        self,
        settings: Settings | None = None,
        format_detector: FormatDetector | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._detector = format_detector or FormatDetector()

    def read(self, content: bytes, filename: str | None = None) -> Workbook:
        """Read an uploaded spreadsheet.

        Args:
            content: Raw upload bytes.
            filename: Original file name, used for the extension fallback
                and for naming the single sheet of a CSV upload.

        Returns:
            Workbook with every worksheet in workbook order.

        Raises:
            UnreadableFileError: Empty, corrupt, non-spreadsheet or
                sheet-less upload.
            TooLargeError: Upload over the byte or cell-count guard.
        """
        if not content:
            raise UnreadableFileError("The uploaded file is empty", file_name=filename)

        limit = self._settings.max_file_size_bytes
        if len(content) > limit:
            raise TooLargeError(size=len(content), limit=limit, file_name=filename)

        format_info = self._detector.detect_from_content(content, filename)
        logger.debug(
            "Detected spreadsheet format",
            file_name=filename,
            mime_type=format_info.mime_type,
            source_format=format_info.source_format.value,
        )

        if format_info.source_format == SpreadsheetFormat.XLSX:
            sheets = self._read_xlsx(content, filename)
        elif format_info.source_format == SpreadsheetFormat.XLS:
            sheets = self._read_xls(content, filename)
        else:
            delimiter = "\t" if format_info.mime_type == TSV_MIME else None
            sheets = self._read_csv(content, filename, delimiter)

        if not sheets:
            raise UnreadableFileError(
                "The workbook does not contain any worksheets",
                detected_mime=format_info.mime_type,
                file_name=filename,
            )

        workbook = Workbook(
            sheets=tuple(sheets),
            source_format=format_info.source_format.value,
            metadata={
                "file_name": filename,
                "sheet_names": [sheet.name for sheet in sheets],
                "mime_type": format_info.mime_type,
            },
        )
        workbook.metadata["cell_count"] = workbook.cell_count

        logger.info(
            "Workbook read",
            file_name=filename,
            sheets=len(sheets),
            cells=workbook.cell_count,
        )
        return workbook

    # ------------------------------------------------------------------ #
    # Container readers
    # ------------------------------------------------------------------ #

    def _read_xlsx(self, content: bytes, filename: str | None) -> list[Sheet]:
        try:
            wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except Exception as e:
            raise UnreadableFileError(
                f"Could not open the workbook: {e}",
                file_name=filename,
                details={"error_type": type(e).__name__},
            ) from e

        try:
            declared = sum(
                (ws.max_row or 0) * (ws.max_column or 0) for ws in wb.worksheets
            )
            self._check_cell_count(declared, filename)

            sheets: list[Sheet] = []
            budget = self._settings.max_cell_count
            for ws in wb.worksheets:
                values: list[list[Any]] = []
                for row in ws.iter_rows(values_only=True):
                    values.append(list(row))
                    budget -= len(row)
                    # Sheets without a stored dimension report no size up front
                    if budget < 0:
                        self._check_cell_count(
                            self._settings.max_cell_count - budget, filename
                        )
                sheets.append(Sheet.from_values(ws.title, values))
            return sheets
        finally:
            wb.close()

    def _read_xls(self, content: bytes, filename: str | None) -> list[Sheet]:
        try:
            book = xlrd.open_workbook(file_contents=content, on_demand=True)
        except Exception as e:
            raise UnreadableFileError(
                f"Could not open the legacy Excel workbook: {e}",
                file_name=filename,
                details={"error_type": type(e).__name__},
            ) from e

        try:
            sheets_xls = [book.sheet_by_index(i) for i in range(book.nsheets)]
            self._check_cell_count(
                sum(sh.nrows * sh.ncols for sh in sheets_xls), filename
            )
            return [
                Sheet.from_values(
                    sh.name,
                    [
                        [
                            self._xls_value(sh.cell(r, c), book.datemode)
                            for c in range(sh.ncols)
                        ]
                        for r in range(sh.nrows)
                    ],
                )
                for sh in sheets_xls
            ]
        finally:
            book.release_resources()

    @staticmethod
    def _xls_value(cell: Any, datemode: int) -> Any:
        """Convert an xlrd cell to the value types used by :class:`Cell`."""
        if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
            return None
        if cell.ctype == xlrd.XL_CELL_BOOLEAN:
            return bool(cell.value)
        if cell.ctype == xlrd.XL_CELL_DATE:
            return xlrd.xldate_as_datetime(cell.value, datemode)
        if cell.ctype == xlrd.XL_CELL_ERROR:
            return xlrd.error_text_from_code.get(cell.value, "#ERR")
        return cell.value

    def _read_csv(
        self, content: bytes, filename: str | None, delimiter: str | None
    ) -> list[Sheet]:
        encoding, confidence = self._detect_encoding(content)
        text = self._decode_content(content, encoding, filename)
        if text.startswith("\ufeff"):
            text = text[1:]
        if not text.strip():
            raise UnreadableFileError("The CSV file is empty", file_name=filename)

        if delimiter is None:
            delimiter = self._detect_csv_delimiter(text)

        # Title rows above the header are often narrower than the data rows
        width = max(
            (len(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter)),
            default=0,
        )
        try:
            df = pd.read_csv(
                io.StringIO(text),
                sep=delimiter,
                header=None,
                names=list(range(width)),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,
            )
        except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
            raise UnreadableFileError(
                f"Could not parse the CSV file: {e}",
                file_name=filename,
                details={"encoding": encoding, "delimiter": delimiter},
            ) from e

        self._check_cell_count(df.shape[0] * df.shape[1], filename)

        values = [
            [None if pd.isna(value) or value == "" else value for value in row]
            for row in df.itertuples(index=False, name=None)
        ]
        logger.debug(
            "CSV decoded",
            encoding=encoding,
            confidence=round(confidence, 2),
            delimiter=repr(delimiter),
            rows=len(values),
        )
        name = Path(filename).stem if filename else "Sheet1"
        return [Sheet.from_values(name or "Sheet1", values)]

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _check_cell_count(self, cells: int, filename: str | None) -> None:
        limit = self._settings.max_cell_count
        if cells > limit:
            raise TooLargeError(
                size=cells, limit=limit, unit="cells", file_name=filename
            )

    def _detect_encoding(self, content: bytes) -> tuple[str, float]:
        """Detect the encoding of CSV bytes.

        Returns:
            Tuple of (encoding_name, confidence_score).
        """
        result = chardet.detect(content)
        encoding = result.get("encoding")
        confidence = result.get("confidence", 0.0) or 0.0

        if encoding and confidence >= self.MIN_ENCODING_CONFIDENCE:
            return self._normalize_encoding(encoding), confidence

        for fallback in self.FALLBACK_ENCODINGS:
            try:
                content.decode(fallback)
                return fallback, 0.5
            except (UnicodeDecodeError, LookupError):
                continue

        logger.warning("Could not detect CSV encoding, falling back to latin-1")
        return "latin-1", 0.3

    @staticmethod
    def _normalize_encoding(encoding: str) -> str:
        encoding = encoding.lower().replace("-", "_")
        normalizations = {
            "ascii": "utf-8",
            "utf_8": "utf-8",
            "utf_8_sig": "utf-8-sig",
            "iso_8859_1": "latin-1",
            "latin_1": "latin-1",
            "windows_1252": "cp1252",
            "cp1252": "cp1252",
        }
        return normalizations.get(encoding, encoding.replace("_", "-"))

    def _decode_content(self, content: bytes, encoding: str, source: str | None) -> str:
        try:
            return content.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            for fallback in self.FALLBACK_ENCODINGS:
                try:
                    return content.decode(fallback)
                except (UnicodeDecodeError, LookupError):
                    continue

            raise EncodingError(
                f"Failed to decode CSV content with encoding {encoding}: {e}",
                encoding=encoding,
                file_name=source,
            ) from e

    def _detect_csv_delimiter(self, text: str) -> str:
        """Sniff the delimiter from the start of the text, comma by default."""
        sample = text[:8192]
        try:
            dialect = csv.Sniffer().sniff(sample, delimiters=self.CSV_DELIMITERS)
            return dialect.delimiter
        except csv.Error:
            return ","

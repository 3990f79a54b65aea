"""Spreadsheet format detection service.

This module detects the container kind of an upload from magic bytes (file
content signatures) and the file extension, and decides whether the
workbook reader can open it at all. Plain text is only accepted as a
spreadsheet when the upload is named or sniffed as CSV/TSV.
"""

from pathlib import Path

import magic

from estimate_ingestion.models import FormatInfo, SpreadsheetFormat
from estimate_ingestion.utils.exceptions import UnreadableFileError
from estimate_ingestion.utils.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "FormatDetector",
    "UnreadableFileError",
    "EXTENSION_TO_MIME",
    "MIME_TO_EXTENSION",
    "SUPPORTED_MIME_TYPES",
]

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLSM_MIME = "application/vnd.ms-excel.sheet.macroenabled.12"
XLS_MIME = "application/vnd.ms-excel"
CSV_MIME = "text/csv"
TSV_MIME = "text/tab-separated-values"

# Mapping of file extensions to MIME types
EXTENSION_TO_MIME: dict[str, str] = {
    ".xlsx": XLSX_MIME,
    ".xlsm": XLSM_MIME,
    ".xls": XLS_MIME,
    ".csv": CSV_MIME,
    ".tsv": TSV_MIME,
}

# Reverse mapping for MIME to extension (using canonical extensions)
MIME_TO_EXTENSION: dict[str, str] = {
    XLSX_MIME: ".xlsx",
    XLSM_MIME: ".xlsm",
    XLS_MIME: ".xls",
    CSV_MIME: ".csv",
    TSV_MIME: ".tsv",
}

MIME_TO_SOURCE_FORMAT: dict[str, SpreadsheetFormat] = {
    XLSX_MIME: SpreadsheetFormat.XLSX,
    XLSM_MIME: SpreadsheetFormat.XLSX,
    XLS_MIME: SpreadsheetFormat.XLS,
    CSV_MIME: SpreadsheetFormat.CSV,
    TSV_MIME: SpreadsheetFormat.CSV,
}

SUPPORTED_MIME_TYPES: set[str] = set(MIME_TO_SOURCE_FORMAT.keys())

# Generic containers libmagic reports for Office files; the concrete kind
# comes from the extension, else the default listed here.
CONTAINER_DEFAULTS: dict[str, str] = {
    "application/zip": XLSX_MIME,
    "application/x-zip-compressed": XLSX_MIME,
    "application/x-ole-storage": XLS_MIME,
    "application/cdfv2": XLS_MIME,
    "application/cdfv2-unknown": XLS_MIME,
    "application/cdfv2-corrupt": XLS_MIME,
}

CONTAINER_COMPATIBLE: dict[str, set[str]] = {
    XLSX_MIME: {XLSX_MIME, XLSM_MIME},
    XLS_MIME: {XLS_MIME},
}

TABULAR_TEXT_MIMES = {CSV_MIME, TSV_MIME}


class FormatDetector:
    """Detects and classifies spreadsheet uploads.

    Uses magic bytes first and falls back to the extension when content
    analysis is not possible or only identifies a generic container.
    """

    def __init__(self) -> None:
        """Initialize the format detector with a magic instance."""
        self._magic = magic.Magic(mime=True)

    def detect_from_content(
        self,
        content: bytes,
        filename: str | None = None,
    ) -> FormatInfo:
        """Detect format from file content bytes.

        Args:
            content: File content as bytes.
            filename: Optional filename for extension-based fallback.

        Returns:
            FormatInfo with detected format information.

        Raises:
            UnreadableFileError: If the content is empty or not a spreadsheet.
        """
        if not content:
            raise UnreadableFileError("The uploaded file is empty", file_name=filename)

        original_extension = None
        if filename:
            ext = Path(filename).suffix.lower()
            original_extension = ext if ext else None

        return self._detect(content, filename, original_extension)

    def _detect(
        self,
        content: bytes,
        filename: str | None,
        original_extension: str | None,
    ) -> FormatInfo:
        """Internal detection logic.

        Priority:
        1. A supported MIME type detected from magic bytes
        2. A generic container (ZIP/OLE) refined by the extension
        3. Text content, accepted only when the extension says CSV/TSV
        4. The extension alone when magic detection fails or only reports
           an opaque byte stream
        """
        detected_mime = self._detect_mime_from_content(content)
        mime_from_extension = self._get_mime_from_extension(original_extension)

        final_mime: str
        detected_from_content = True
        original_ext_differs: str | None = None

        if detected_mime in SUPPORTED_MIME_TYPES:
            final_mime = detected_mime
            if mime_from_extension and mime_from_extension != detected_mime:
                original_ext_differs = original_extension
                logger.warning(
                    "File extension does not match detected MIME type",
                    extension=original_extension,
                    detected_mime=detected_mime,
                )
        elif detected_mime in CONTAINER_DEFAULTS:
            default_mime = CONTAINER_DEFAULTS[detected_mime]
            compatible = CONTAINER_COMPATIBLE[default_mime]
            final_mime = (
                mime_from_extension
                if mime_from_extension in compatible
                else default_mime
            )
        elif detected_mime is not None and detected_mime.startswith("text/"):
            if (
                mime_from_extension is None
                or mime_from_extension not in TABULAR_TEXT_MIMES
            ):
                raise UnreadableFileError(
                    "The uploaded file is plain text, not a spreadsheet. "
                    "Upload an .xlsx, .xls or .csv export.",
                    detected_mime=detected_mime,
                    file_name=filename,
                )
            final_mime = mime_from_extension
            detected_from_content = False
        elif (
            detected_mime in (None, "application/octet-stream")
            and mime_from_extension is not None
        ):
            final_mime = mime_from_extension
            detected_from_content = False
        elif detected_mime is not None:
            raise UnreadableFileError(
                f"Unsupported file format: {detected_mime}",
                detected_mime=detected_mime,
                file_name=filename,
                details={"supported_extensions": self.get_supported_extensions()},
            )
        else:
            raise UnreadableFileError(
                "Unable to detect the file format. "
                "Upload an .xlsx, .xls or .csv export.",
                file_name=filename,
            )

        return FormatInfo(
            mime_type=final_mime,
            extension=MIME_TO_EXTENSION[final_mime],
            source_format=MIME_TO_SOURCE_FORMAT[final_mime],
            detected_from_content=detected_from_content,
            original_extension=original_ext_differs,
        )

    def _detect_mime_from_content(self, content: bytes) -> str | None:
        """Detect MIME type from file content using magic bytes.

        Returns:
            Normalized MIME type or None if detection fails.
        """
        try:
            detected = self._magic.from_buffer(content)
        except Exception as e:
            logger.warning(
                "Magic detection failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        return self._normalize_mime_type(detected)

    def _normalize_mime_type(self, mime_type: str) -> str:
        """Normalize MIME type to canonical form.

        Args:
            mime_type: Raw MIME type string.

        Returns:
            Normalized, lower-cased MIME type.
        """
        normalizations: dict[str, str] = {
            "text/x-csv": CSV_MIME,
            "application/csv": CSV_MIME,
            "text/comma-separated-values": CSV_MIME,
            "application/excel": XLS_MIME,
            "application/x-excel": XLS_MIME,
            "application/x-msexcel": XLS_MIME,
        }
        lowered = mime_type.strip().lower()
        return normalizations.get(lowered, lowered)

    def _get_mime_from_extension(self, extension: str | None) -> str | None:
        if not extension:
            return None
        return EXTENSION_TO_MIME.get(extension)

    @staticmethod
    def get_supported_extensions() -> list[str]:
        """Get list of supported file extensions.

        Returns:
            List of supported extensions (with dots).
        """
        return sorted(EXTENSION_TO_MIME.keys())

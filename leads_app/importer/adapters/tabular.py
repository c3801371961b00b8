"""Tabular upload adapter for lead imports.

Parses uploaded CSV text or XLSX workbooks into an ordered header plus one
field bag per data line. The first row is always the header; blank lines are
skipped. Validation failures raise ``UploadError`` subclasses so the run
service can reject the upload before anything is persisted.
"""

from __future__ import annotations

import csv
import io
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import PurePath
from typing import Iterable, Iterator, Sequence

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

ZIP_SIGNATURE = b"PK\x03\x04"
CSV_EXTENSIONS = frozenset({".csv", ".txt"})
XLSX_EXTENSIONS = frozenset({".xlsx", ".xlsm"})

Scalar = str | int | float | bool | None


class UploadError(Exception):
    """Base exception for upload parsing failures."""


class UploadFormatError(UploadError):
    """Raised when the file cannot be decoded as CSV or XLSX."""


class UploadTooLargeError(UploadError):
    """Raised when the upload exceeds the configured size cap."""

    def __init__(self, size_bytes: int, max_bytes: int) -> None:
        super().__init__(
            f"Upload is {size_bytes} bytes which exceeds the {max_bytes} byte limit."
        )
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes


class UploadHeaderError(UploadError):
    """Raised when the header row is missing, blank or repeats a column."""

    def __init__(self, message: str, *, duplicates: Sequence[str] | None = None) -> None:
        super().__init__(message)
        self.duplicates = tuple(duplicates or ())


class UploadEmptyError(UploadError):
    """Raised when the upload has no content or no data rows."""


@dataclass(frozen=True)
class TabularRow:
    """One non-blank data line keyed by header."""

    row_number: int
    source_line: int
    values: dict[str, Scalar]


@dataclass
class TabularStatistics:
    rows_parsed: int = 0
    rows_skipped_blank: int = 0


@dataclass
class ParsedUpload:
    source_format: str
    headers: tuple[str, ...]
    rows: list[TabularRow] = field(default_factory=list)
    statistics: TabularStatistics = field(default_factory=TabularStatistics)


def _sanitize_header(header: object | None) -> str:
    token = "" if header is None else str(header).strip()
    return token.lstrip("\ufeff").strip()


def _coerce_cell(value: object | None) -> Scalar:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def _is_blank(values: Iterable[Scalar]) -> bool:
    return all(value is None or (isinstance(value, str) and value.strip() == "") for value in values)


def _validate_headers(raw_headers: Sequence[object | None]) -> tuple[str, ...]:
    headers = [_sanitize_header(header) for header in raw_headers]
    while headers and not headers[-1]:
        headers.pop()
    if not headers:
        raise UploadHeaderError("Header row is missing or blank.")
    if any(not header for header in headers):
        raise UploadHeaderError("Header row contains a blank column name.")

    seen: set[str] = set()
    duplicates: list[str] = []
    for header in headers:
        folded = header.casefold()
        if folded in seen and header not in duplicates:
            duplicates.append(header)
        seen.add(folded)
    if duplicates:
        raise UploadHeaderError(
            "Duplicate columns detected: " + ", ".join(duplicates) + ". Each column name must appear once.",
            duplicates=duplicates,
        )
    return tuple(headers)


def detect_format(filename: str | None, content: bytes | str) -> str:
    """Return ``"xlsx"`` or ``"csv"`` from the extension, falling back to the zip signature."""

    suffix = PurePath(filename or "").suffix.lower()
    if suffix in XLSX_EXTENSIONS:
        return "xlsx"
    if suffix in CSV_EXTENSIONS:
        return "csv"
    if isinstance(content, bytes) and content.startswith(ZIP_SIGNATURE):
        return "xlsx"
    return "csv"


class TabularUploadAdapter:
    """Reader that turns an uploaded file into header-keyed row bags."""

    def __init__(
        self,
        content: bytes | str,
        *,
        filename: str | None = None,
        max_bytes: int | None = None,
        skip_blank_rows: bool = True,
    ) -> None:
        self._content = content
        self.filename = filename
        self.max_bytes = max_bytes
        self.skip_blank_rows = skip_blank_rows
        self.source_format = detect_format(filename, content)
        self.statistics = TabularStatistics()

    def parse(self) -> ParsedUpload:
        """Parse the whole upload, raising ``UploadError`` on any structural problem."""

        self._check_size()
        if self.source_format == "xlsx":
            raw_rows = self._iter_xlsx_rows()
        else:
            raw_rows = self._iter_csv_rows()

        header_cells = next(raw_rows, None)
        if header_cells is None:
            raise UploadEmptyError("Upload is empty.")
        headers = _validate_headers(header_cells)

        parsed = ParsedUpload(source_format=self.source_format, headers=headers, statistics=self.statistics)
        row_number = 0
        for source_line, cells in enumerate(raw_rows, start=2):
            values = {
                header: _coerce_cell(cells[index]) if index < len(cells) else None
                for index, header in enumerate(headers)
            }
            if self.skip_blank_rows and _is_blank(values.values()):
                self.statistics.rows_skipped_blank += 1
                continue
            row_number += 1
            self.statistics.rows_parsed += 1
            parsed.rows.append(TabularRow(row_number=row_number, source_line=source_line, values=values))

        if not parsed.rows:
            raise UploadEmptyError("Upload contains a header row but no data rows.")
        return parsed

    def _check_size(self) -> None:
        size = len(self._content.encode("utf-8")) if isinstance(self._content, str) else len(self._content)
        if size == 0 or (isinstance(self._content, str) and not self._content.strip()):
            raise UploadEmptyError("Upload is empty.")
        if self.max_bytes is not None and size > self.max_bytes:
            raise UploadTooLargeError(size, self.max_bytes)

    def _iter_csv_rows(self) -> Iterator[list[Scalar]]:
        if isinstance(self._content, bytes):
            try:
                text = self._content.decode("utf-8-sig")
            except UnicodeDecodeError as exc:
                raise UploadFormatError("CSV upload is not valid UTF-8 text.") from exc
        else:
            text = self._content.lstrip("\ufeff")

        reader = csv.reader(io.StringIO(text, newline=""))
        try:
            for cells in reader:
                yield list(cells)
        except csv.Error as exc:
            raise UploadFormatError(f"CSV parse error on line {reader.line_num}: {exc}") from exc

    def _iter_xlsx_rows(self) -> Iterator[list[Scalar]]:
        if isinstance(self._content, str):
            raise UploadFormatError("XLSX uploads must be provided as bytes.")
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(self._content), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
            raise UploadFormatError(f"Unable to open spreadsheet: {exc}") from exc
        try:
            sheet = workbook.active
            if sheet is None:
                return
            for cells in sheet.iter_rows(values_only=True):
                yield [_coerce_cell(cell) for cell in cells]
        finally:
            workbook.close()


def parse_upload(
    content: bytes | str,
    *,
    filename: str | None = None,
    max_bytes: int | None = None,
) -> ParsedUpload:
    return TabularUploadAdapter(content, filename=filename, max_bytes=max_bytes).parse()

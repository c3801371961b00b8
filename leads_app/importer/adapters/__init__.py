"""Upload adapters for the lead importer."""

from __future__ import annotations

from .tabular import (
    ParsedUpload,
    TabularRow,
    TabularStatistics,
    TabularUploadAdapter,
    UploadEmptyError,
    UploadError,
    UploadFormatError,
    UploadHeaderError,
    UploadTooLargeError,
    detect_format,
    parse_upload,
)

__all__ = [
    "ParsedUpload",
    "TabularRow",
    "TabularStatistics",
    "TabularUploadAdapter",
    "UploadEmptyError",
    "UploadError",
    "UploadFormatError",
    "UploadHeaderError",
    "UploadTooLargeError",
    "detect_format",
    "parse_upload",
]

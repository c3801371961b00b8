import io

import pytest
from openpyxl import Workbook

from leads_app.importer.adapters import (
    UploadEmptyError,
    UploadFormatError,
    UploadHeaderError,
    UploadTooLargeError,
    detect_format,
    parse_upload,
)


def _xlsx_bytes(rows) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_csv_with_bom_parses_headers_and_rows():
    parsed = parse_upload(b"\xef\xbb\xbfCompany,Email\nAcme,a@acme.com\n", filename="leads.csv")

    assert parsed.source_format == "csv"
    assert parsed.headers == ("Company", "Email")
    assert len(parsed.rows) == 1
    row = parsed.rows[0]
    assert row.row_number == 1
    assert row.source_line == 2
    assert row.values == {"Company": "Acme", "Email": "a@acme.com"}


def test_blank_rows_are_skipped_without_consuming_row_numbers():
    parsed = parse_upload("Company,Email\nAcme,a@x.com\n,\nBeta,b@x.com\n", filename="leads.csv")

    assert [row.row_number for row in parsed.rows] == [1, 2]
    assert [row.source_line for row in parsed.rows] == [2, 4]
    assert parsed.statistics.rows_skipped_blank == 1
    assert parsed.statistics.rows_parsed == 2


def test_short_rows_are_padded_and_extra_cells_dropped():
    parsed = parse_upload("A,B,\n1\n1,2,3\n", filename="leads.csv")

    assert parsed.headers == ("A", "B")
    assert parsed.rows[0].values == {"A": "1", "B": None}
    assert parsed.rows[1].values == {"A": "1", "B": "2"}


def test_duplicate_headers_are_rejected_case_insensitively():
    with pytest.raises(UploadHeaderError) as excinfo:
        parse_upload("Email,email\na,b\n", filename="leads.csv")

    assert excinfo.value.duplicates == ("email",)


def test_interior_blank_header_is_rejected():
    with pytest.raises(UploadHeaderError):
        parse_upload("A,,B\n1,2,3\n", filename="leads.csv")


@pytest.mark.parametrize("content", [b"", "Company,Email\n", "Company\n\n\n"])
def test_uploads_without_data_rows_are_rejected(content):
    with pytest.raises(UploadEmptyError):
        parse_upload(content, filename="leads.csv")


def test_upload_size_cap():
    with pytest.raises(UploadTooLargeError) as excinfo:
        parse_upload(b"Company\nAcme Plumbing\n", filename="leads.csv", max_bytes=10)

    assert excinfo.value.max_bytes == 10


def test_invalid_utf8_csv_is_a_format_error():
    with pytest.raises(UploadFormatError):
        parse_upload(b"Company\n\xff\xfe\xfa\n", filename="leads.csv")


def test_xlsx_upload_reads_first_sheet():
    content = _xlsx_bytes(
        [
            ["Company", "Phone", "Founded"],
            ["Acme", 4155550101, 1999],
            ["Beta", "512-555-0100", 2004],
        ]
    )

    parsed = parse_upload(content, filename="leads.xlsx")

    assert parsed.source_format == "xlsx"
    assert parsed.headers == ("Company", "Phone", "Founded")
    assert parsed.rows[0].values == {"Company": "Acme", "Phone": 4155550101, "Founded": 1999}
    assert parsed.rows[1].values["Phone"] == "512-555-0100"


def test_corrupt_xlsx_is_a_format_error():
    with pytest.raises(UploadFormatError):
        parse_upload(b"definitely not a zip archive", filename="leads.xlsx")


def test_detect_format():
    assert detect_format("leads.CSV", b"Company\n") == "csv"
    assert detect_format("leads.xlsx", b"") == "xlsx"
    assert detect_format(None, b"PK\x03\x04rest") == "xlsx"
    assert detect_format("upload", "Company\n") == "csv"

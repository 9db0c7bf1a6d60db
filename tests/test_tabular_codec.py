"""
Tests for the CSV codec.
"""

from datetime import date, datetime

import pytest

from bulk_data_exchange.core.exceptions import InvalidInputError
from bulk_data_exchange.models.values import BooleanValue, NumberValue
from bulk_data_exchange.utils.tabular_codec import count_rows, decode, encode, iter_rows, render_cell


class TestDecode:
    """Tests for decoding uploads."""

    def test_headers_and_values_are_trimmed(self):
        table = decode(b" Code , Name \r\n WH-1 ,  Central \r\n")
        assert table.headers == ["Code", "Name"]
        assert table.rows == [{"Code": "WH-1", "Name": "Central"}]

    def test_utf8_bom_is_stripped(self):
        table = decode("\ufeffCode,Name\nWH-1,Zürich\n".encode("utf-8"))
        assert table.headers == ["Code", "Name"]
        assert table.rows[0]["Name"] == "Zürich"

    def test_quoted_fields_keep_commas_and_newlines(self):
        table = decode(b'Code,Notes\nWH-1,"first, line\nsecond line"\n')
        assert table.total_rows == 1
        assert table.rows[0]["Notes"] == "first, line\nsecond line"

    def test_short_rows_are_padded_and_blank_lines_skipped(self):
        table = decode(b"Code,Name,Capacity\nWH-1,Central\n\nWH-2,North,5\n")
        assert table.total_rows == 2
        assert table.rows[0] == {"Code": "WH-1", "Name": "Central", "Capacity": ""}

    def test_limit_keeps_first_rows(self):
        table = decode(b"Code\n1\n2\n3\n", limit=2)
        assert [r["Code"] for r in table.rows] == ["1", "2"]

    def test_empty_buffer_rejected(self):
        with pytest.raises(InvalidInputError):
            decode(b"")

    def test_missing_header_rejected(self):
        with pytest.raises(InvalidInputError):
            decode(b",,\n")

    def test_invalid_utf8_rejected(self):
        with pytest.raises(InvalidInputError):
            iter_rows(b"\xff\xfe\xfa,broken\n")

    def test_count_rows(self):
        assert count_rows(b"Code\n1\n2\n") == 2


class TestEncode:
    """Tests for encoding exports."""

    def test_header_and_crlf_line_endings(self):
        text = encode(["code", "name"], [{"code": "WH-1", "name": "Central"}])
        assert text == "code,name\r\nWH-1,Central\r\n"

    def test_special_characters_are_quoted(self):
        text = encode(["notes"], [{"notes": 'say "hi", then\nleave'}])
        assert text == 'notes\r\n"say ""hi"", then\nleave"\r\n'

    def test_missing_keys_become_empty_cells(self):
        assert encode(["a", "b"], [{"a": 1}]) == "a,b\r\n1,\r\n"

    def test_render_cell(self):
        assert render_cell(None) == ""
        assert render_cell(True) == "true"
        assert render_cell(3.0) == "3"
        assert render_cell(2.5) == "2.5"
        assert render_cell(date(2024, 3, 1)) == "2024-03-01"
        assert render_cell(datetime(2024, 3, 1, 8, 30)) == "2024-03-01T08:30:00"
        assert render_cell(BooleanValue(False)) == "false"
        assert render_cell(NumberValue(7.0)) == "7"
        assert render_cell({"a": 1}) == '{"a": 1}'


class TestRoundTrip:

    def test_decode_encode_decode_preserves_cells(self):
        source = b'Code,Notes\nWH-1,"a, ""quoted""\nvalue"\nWH-2,\n'
        first = decode(source)

        second = decode(encode(first.headers, first.rows).encode("utf-8"))

        assert second.headers == first.headers
        assert second.rows == first.rows

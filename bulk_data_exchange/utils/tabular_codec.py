"""
Spreadsheet (CSV) codec for the Bulk Data Exchange Pipeline

Decodes uploaded byte buffers into header lists and ordered rows of trimmed
text, and encodes projected export rows back into RFC 4180 CSV text.
"""

import csv
import io
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..core.exceptions import InvalidInputError
from ..models import values as tagged


@dataclass
class DecodedTable:
    """Header names plus rows keyed by header."""

    headers: List[str]
    rows: List[Dict[str, str]] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)


def _text_stream(buffer: bytes) -> io.TextIOWrapper:
    if not buffer:
        raise InvalidInputError("Empty file", field="file")
    # newline="" lets the csv module handle \r\n, \n and quoted line breaks
    return io.TextIOWrapper(io.BytesIO(buffer), encoding="utf-8-sig", newline="")


def iter_rows(buffer: bytes) -> Tuple[List[str], Iterator[Dict[str, str]]]:
    """
    Decode a CSV buffer lazily.

    Args:
        buffer: Raw uploaded bytes

    Returns:
        Tuple of (trimmed header names, iterator of row dictionaries)

    Raises:
        InvalidInputError: If the buffer is empty, has no header line or is not UTF-8
    """
    stream = _text_stream(buffer)
    reader = csv.reader(stream)

    try:
        raw_headers = next(reader)
    except StopIteration:
        raise InvalidInputError("File has no header row", field="file")
    except (UnicodeDecodeError, csv.Error) as e:
        raise InvalidInputError(f"Unreadable spreadsheet: {e}", field="file")

    headers = [str(h or "").strip() for h in raw_headers]
    if not any(headers):
        raise InvalidInputError("File has no header row", field="file")

    def _rows() -> Iterator[Dict[str, str]]:
        try:
            for record in reader:
                # Blank physical lines carry no cells
                if not record or (len(record) == 1 and not record[0].strip() and len(headers) > 1):
                    continue
                row = {}
                for index, name in enumerate(headers):
                    value = record[index] if index < len(record) else ""
                    row[name] = (value or "").strip()
                yield row
        except (UnicodeDecodeError, csv.Error) as e:
            raise InvalidInputError(f"Unreadable spreadsheet at line {reader.line_num}: {e}", field="file")

    return headers, _rows()


def decode(buffer: bytes, limit: Optional[int] = None) -> DecodedTable:
    """
    Decode a CSV buffer into a full table.

    Args:
        buffer: Raw uploaded bytes
        limit: Optional maximum number of rows to keep (preview path)

    Returns:
        DecodedTable with trimmed headers and values
    """
    headers, rows = iter_rows(buffer)
    table = DecodedTable(headers=headers)
    for row in rows:
        if limit is not None and len(table.rows) >= limit:
            break
        table.rows.append(row)
    return table


def count_rows(buffer: bytes) -> int:
    """Count data rows without materialising them."""
    _, rows = iter_rows(buffer)
    return sum(1 for _ in rows)


def render_cell(value: Any) -> str:
    """Render one value as CSV cell text."""
    if value is None:
        return ""
    if isinstance(value, (tagged.StringValue, tagged.NumberValue, tagged.IntegerValue,
                          tagged.BooleanValue, tagged.DateValue, tagged.EnumValue)):
        value = value.value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str, ensure_ascii=False)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def encode(columns: Sequence[str], rows: Iterable[Mapping[str, Any]]) -> str:
    """
    Encode rows as CSV text.

    Args:
        columns: Ordered column names, written as the header line
        rows: Row mappings; missing keys are written as empty cells

    Returns:
        CSV text with \\r\\n line endings and minimal RFC 4180 quoting
    """
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(list(columns))
    for row in rows:
        writer.writerow([render_cell(row.get(column)) for column in columns])
    return output.getvalue()


def encode_bytes(columns: Sequence[str], rows: Iterable[Mapping[str, Any]]) -> bytes:
    return encode(columns, rows).encode("utf-8")

"""
Row coercion for imports.

Turns raw spreadsheet text into tagged values according to each template
field's type, and builds default column mappings from uploaded headers.
"""

import math
from typing import Dict, List, Optional, Sequence

from dateutil import parser as date_parser

from ..core.exceptions import RowError
from ..models.job import ColumnDef, ColumnMapping, FieldType
from ..models.values import (
    BooleanValue,
    CoercedRow,
    DateValue,
    EnumValue,
    FieldValue,
    IntegerValue,
    NumberValue,
    StringValue,
)

TRUE_WORDS = frozenset({"true", "1", "yes", "y"})
FALSE_WORDS = frozenset({"false", "0", "no", "n", ""})


def to_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in TRUE_WORDS:
        return True
    if lowered in FALSE_WORDS:
        return False
    raise RowError(f"Invalid boolean: {raw}")


def to_number(raw: str) -> float:
    text = raw.strip()
    if not text:
        raise RowError("Missing number")
    if "_" in text:
        raise RowError(f"Invalid number: {raw}")
    try:
        number = float(text)
    except ValueError:
        raise RowError(f"Invalid number: {raw}")
    if not math.isfinite(number):
        raise RowError(f"Invalid number: {raw}")
    return number


def to_int(raw: str) -> int:
    number = to_number(raw)
    if not number.is_integer():
        raise RowError(f"Invalid integer: {raw}")
    return int(number)


def to_date(raw: str):
    text = raw.strip()
    if not text:
        raise RowError("Missing date")
    try:
        return date_parser.parse(text)
    except (ValueError, OverflowError):
        raise RowError(f"Invalid date: {raw}")


def coerce_value(raw: Optional[str], column: ColumnDef) -> Optional[FieldValue]:
    """
    Coerce one raw cell for a template field.

    Empty cells become None for every type; required-ness is checked by the caller.

    Raises:
        RowError: If the text does not parse as the field's type
    """
    text = "" if raw is None else str(raw).strip()
    if text == "":
        return None

    if column.type == FieldType.STRING:
        return StringValue(text)
    if column.type == FieldType.NUMBER:
        return NumberValue(to_number(text))
    if column.type == FieldType.INTEGER:
        return IntegerValue(to_int(text))
    if column.type == FieldType.BOOLEAN:
        return BooleanValue(to_bool(text))
    if column.type == FieldType.DATE:
        return DateValue(to_date(text))
    if column.type == FieldType.ENUM:
        if text not in column.enum_values:
            raise RowError(f"Invalid enum for {column.key}: {text}", field=column.key)
        return EnumValue(text, tuple(column.enum_values))
    return StringValue(text)


def coerce_row(
    row: Dict[str, str],
    columns: Sequence[ColumnDef],
    mappings: Sequence[ColumnMapping]
) -> CoercedRow:
    """
    Coerce every template field of one decoded row.

    Args:
        row: Decoded row keyed by uploaded header name
        columns: The module's template fields
        mappings: The job's column mapping

    Raises:
        RowError: On a missing required field or a coercion failure
    """
    by_key = {m.key: m for m in mappings}
    output = CoercedRow()

    for column in columns:
        mapping = by_key.get(column.key)
        source = mapping.source_column if mapping else None
        raw = row.get(source, "") if source else ""
        if column.required and (raw is None or str(raw).strip() == ""):
            raise RowError(f"Missing required field: {column.key}", field=column.key)
        output[column.key] = coerce_value(raw, column)

    return output


def build_default_mappings(headers: Sequence[str], columns: Sequence[ColumnDef]) -> List[ColumnMapping]:
    """Map each template field to the uploaded header of the same name, ignoring case."""
    lowered = [h.lower() for h in headers]
    mappings = []
    for column in columns:
        try:
            source = headers[lowered.index(column.header.lower())]
        except ValueError:
            source = None
        mappings.append(ColumnMapping(
            key=column.key,
            header=column.header,
            source_column=source,
            required=column.required,
            type=column.type,
            enum_values=list(column.enum_values),
        ))
    return mappings


def missing_required_mappings(
    columns: Sequence[ColumnDef],
    mappings: Sequence[ColumnMapping],
    headers: Sequence[str]
) -> List[str]:
    """Keys of required fields that are unmapped or mapped to a header the file lacks."""
    by_key = {m.key: m for m in mappings}
    present = set(headers)
    missing = []
    for column in columns:
        if not column.required:
            continue
        mapping = by_key.get(column.key)
        if not mapping or not mapping.source_column or mapping.source_column not in present:
            missing.append(column.key)
    return missing

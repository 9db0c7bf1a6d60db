"""
Tests for row coercion and default mappings.
"""

from datetime import datetime

import pytest

from bulk_data_exchange.core.exceptions import RowError
from bulk_data_exchange.models.job import ColumnDef, ColumnMapping, FieldType
from bulk_data_exchange.models.values import BooleanValue, DateValue, EnumValue, IntegerValue, NumberValue
from bulk_data_exchange.utils.coercion import (
    build_default_mappings,
    coerce_row,
    coerce_value,
    missing_required_mappings,
    to_bool,
)


COLUMNS = [
    ColumnDef(key="code", header="Code", required=True),
    ColumnDef(key="capacity", header="Capacity", type=FieldType.INTEGER),
    ColumnDef(key="kind", header="Kind", type=FieldType.ENUM, enum_values=["main", "transit"]),
]


class TestCoerceValue:
    """Tests for single-cell coercion."""

    @pytest.mark.parametrize("raw", ["true", "1", "YES", "y"])
    def test_true_words(self, raw):
        assert to_bool(raw) is True

    @pytest.mark.parametrize("raw", ["false", "0", "no", "N", ""])
    def test_false_words(self, raw):
        assert to_bool(raw) is False

    def test_invalid_boolean(self):
        with pytest.raises(RowError, match="Invalid boolean"):
            to_bool("maybe")

    def test_number(self):
        assert coerce_value("12.5", ColumnDef("n", "N", type=FieldType.NUMBER)) == NumberValue(12.5)

    def test_invalid_number(self):
        with pytest.raises(RowError, match="Invalid number"):
            coerce_value("twelve", ColumnDef("n", "N", type=FieldType.NUMBER))

    @pytest.mark.parametrize("raw", ["1_000", "1_0.5"])
    def test_digit_separators_are_rejected(self, raw):
        with pytest.raises(RowError, match="Invalid number"):
            coerce_value(raw, ColumnDef("n", "N", type=FieldType.NUMBER))
        with pytest.raises(RowError, match="Invalid"):
            coerce_value(raw, ColumnDef("n", "N", type=FieldType.INTEGER))

    def test_integer_accepts_whole_float_text(self):
        assert coerce_value("3.0", ColumnDef("n", "N", type=FieldType.INTEGER)) == IntegerValue(3)

    def test_integer_rejects_fraction(self):
        with pytest.raises(RowError, match="Invalid integer"):
            coerce_value("3.5", ColumnDef("n", "N", type=FieldType.INTEGER))

    def test_boolean_value(self):
        assert coerce_value("Yes", ColumnDef("b", "B", type=FieldType.BOOLEAN)) == BooleanValue(True)

    def test_date(self):
        value = coerce_value("2024-02-29", ColumnDef("d", "D", type=FieldType.DATE))
        assert isinstance(value, DateValue)
        assert value.value == datetime(2024, 2, 29)

    def test_invalid_date(self):
        with pytest.raises(RowError, match="Invalid date"):
            coerce_value("not a date", ColumnDef("d", "D", type=FieldType.DATE))

    def test_enum_domain(self):
        assert coerce_value("main", COLUMNS[2]) == EnumValue("main", ("main", "transit"))
        with pytest.raises(RowError, match="Invalid enum for kind"):
            coerce_value("virtual", COLUMNS[2])

    def test_empty_cell_is_none_for_every_type(self):
        for field_type in FieldType:
            assert coerce_value("  ", ColumnDef("x", "X", type=field_type)) is None


class TestCoerceRow:
    """Tests for whole-row coercion."""

    def test_coerces_mapped_columns(self):
        mappings = build_default_mappings(["Code", "Capacity", "Kind"], COLUMNS)
        row = coerce_row({"Code": "WH-1", "Capacity": "40", "Kind": "main"}, COLUMNS, mappings)
        assert row.plain("code") == "WH-1"
        assert row.plain("capacity") == 40
        assert row.text("kind") == "main"

    def test_unmapped_optional_column_is_none(self):
        mappings = build_default_mappings(["Code"], COLUMNS)
        row = coerce_row({"Code": "WH-1"}, COLUMNS, mappings)
        assert row["capacity"] is None
        assert row.plain("capacity", 0) == 0

    def test_missing_required_value(self):
        mappings = build_default_mappings(["Code"], COLUMNS)
        with pytest.raises(RowError, match="Missing required field: code"):
            coerce_row({"Code": " "}, COLUMNS, mappings)


class TestMappings:
    """Tests for default mappings and required-mapping checks."""

    def test_default_mapping_ignores_case(self):
        mappings = build_default_mappings(["CODE", "kind"], COLUMNS)
        by_key = {m.key: m.source_column for m in mappings}
        assert by_key == {"code": "CODE", "capacity": None, "kind": "kind"}

    def test_required_unmapped(self):
        mappings = build_default_mappings(["Capacity"], COLUMNS)
        assert missing_required_mappings(COLUMNS, mappings, ["Capacity"]) == ["code"]

    def test_required_mapped_to_absent_header(self):
        mappings = [ColumnMapping(key="code", header="Code", source_column="Warehouse Code")]
        assert missing_required_mappings(COLUMNS, mappings, ["Code"]) == ["code"]
        assert missing_required_mappings(COLUMNS, mappings, ["Warehouse Code"]) == []

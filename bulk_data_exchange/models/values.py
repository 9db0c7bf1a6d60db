"""
Tagged field values produced by row coercion.

Row appliers receive a ``CoercedRow`` mapping each template key to one of the
value classes below, or ``None`` for an empty cell, and dispatch on the class.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class StringValue:
    value: str


@dataclass(frozen=True)
class NumberValue:
    value: float


@dataclass(frozen=True)
class IntegerValue:
    value: int


@dataclass(frozen=True)
class BooleanValue:
    value: bool


@dataclass(frozen=True)
class DateValue:
    value: datetime


@dataclass(frozen=True)
class EnumValue:
    value: str
    domain: tuple = ()


FieldValue = Union[StringValue, NumberValue, IntegerValue, BooleanValue, DateValue, EnumValue]


class CoercedRow(Dict[str, Optional[FieldValue]]):
    """Template key -> tagged value for one decoded row."""

    def plain(self, key: str, default: Any = None) -> Any:
        """Untagged value of ``key``, or ``default`` when the cell was empty."""
        tagged = self.get(key)
        return default if tagged is None else tagged.value

    def text(self, key: str) -> str:
        """Value of ``key`` as trimmed text ("" when empty)."""
        value = self.plain(key)
        return "" if value is None else str(value).strip()

    def to_plain_dict(self) -> Dict[str, Any]:
        return {key: (None if tagged is None else tagged.value) for key, tagged in self.items()}

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from functools import singledispatch
from typing import Union
from uuid import UUID

ZERO_DATETIME = "'0000-00-00 00:00:00'"

_ESCAPES = str.maketrans(
    {
        "\0": "\\0",
        "\b": "\\b",
        "\n": "\\n",
        "\r": "\\r",
        "\t": "\\t",
        "\x1a": "\\Z",
        "\\": "\\\\",
        "'": "\\'",
        '"': '\\"',
    }
)


def escape_string(value: str) -> str:
    return value.translate(_ESCAPES)


@dataclass(frozen=True, slots=True)
class NullValue:
    def render(self) -> str:
        return "NULL"


@dataclass(frozen=True, slots=True)
class BoolValue:
    value: bool

    def render(self) -> str:
        return "1" if self.value else "0"


@dataclass(frozen=True, slots=True)
class BinaryValue:
    value: bytes

    def render(self) -> str:
        if not self.value:
            return "''"
        return "0x" + self.value.hex().upper()


@dataclass(frozen=True, slots=True)
class TemporalValue:
    text: str | None

    def render(self) -> str:
        if self.text is None:
            return ZERO_DATETIME
        return f"'{self.text}'"


@dataclass(frozen=True, slots=True)
class NumericValue:
    text: str

    def render(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class TextValue:
    value: str

    def render(self) -> str:
        return f"'{escape_string(self.value)}'"


SqlValue = Union[NullValue, BoolValue, BinaryValue, TemporalValue, NumericValue, TextValue]

_NULL = NullValue()


def _format_clock(total_seconds: int) -> str:
    sign = "-" if total_seconds < 0 else ""
    hours, remainder = divmod(abs(total_seconds), 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"


@singledispatch
def classify(value: object) -> SqlValue:
    if value is None:
        return _NULL
    return TextValue(str(value))


@classify.register
def _(value: bool) -> SqlValue:
    return BoolValue(value)


@classify.register
def _(value: int) -> SqlValue:
    return NumericValue(str(value))


@classify.register
def _(value: float) -> SqlValue:
    if math.isnan(value) or math.isinf(value):
        return _NULL
    return NumericValue(repr(value))


@classify.register
def _(value: Decimal) -> SqlValue:
    if not value.is_finite():
        return _NULL
    return NumericValue(str(value))


@classify.register(bytes)
@classify.register(bytearray)
@classify.register(memoryview)
def _(value: bytes | bytearray | memoryview) -> SqlValue:
    return BinaryValue(bytes(value))


@classify.register
def _(value: datetime) -> SqlValue:
    if value.replace(tzinfo=None) == datetime.min:
        return TemporalValue(None)
    return TemporalValue(value.strftime("%Y-%m-%d %H:%M:%S"))


@classify.register
def _(value: date) -> SqlValue:
    if value == date.min:
        return TemporalValue(None)
    return TemporalValue(value.strftime("%Y-%m-%d"))


@classify.register
def _(value: time) -> SqlValue:
    return TemporalValue(value.strftime("%H:%M:%S"))


@classify.register
def _(value: timedelta) -> SqlValue:
    return TemporalValue(_format_clock(int(value.total_seconds())))


@classify.register
def _(value: UUID) -> SqlValue:
    return TextValue(str(value))


@classify.register
def _(value: str) -> SqlValue:
    return TextValue(value)


def to_sql_literal(value: object) -> str:
    return classify(value).render()


def render_row(values: tuple[object, ...] | list[object]) -> str:
    return "(" + ", ".join(to_sql_literal(value) for value in values) + ")"

"""
Row model and value rendering.

A Row is one source record as fetched by the access layer. Rows are
immutable; a batch is a tuple of rows produced by a single fetch.
"""

from dataclasses import dataclass
from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Any, Iterator, Optional, Sequence, Tuple


@dataclass(frozen=True)
class RowFormatter:
    """
    Renders column values as text.

    Every override is optional; unset overrides fall back to the ISO/str
    rendering. Date and time patterns use strftime syntax, numeric patterns
    use format() specs such as ``.2f`` or ``,.2f``.
    """

    null: Optional[str] = None
    bool_true: str = "TRUE"
    bool_false: str = "FALSE"
    date_format: Optional[str] = None
    time_format: Optional[str] = None
    datetime_format: Optional[str] = None
    timestamp_format: Optional[str] = None
    timestamp_tz_format: Optional[str] = None
    currency_format: Optional[str] = None
    float_format: Optional[str] = None

    def format(self, value: Any) -> Optional[str]:
        if value is None:
            return self.null
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return self.bool_true if value else self.bool_false
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                pattern = self.timestamp_tz_format or self.timestamp_format or self.datetime_format
            else:
                pattern = self.timestamp_format or self.datetime_format
            return value.strftime(pattern) if pattern else value.isoformat(sep=" ")
        if isinstance(value, date):
            return value.strftime(self.date_format) if self.date_format else value.isoformat()
        if isinstance(value, dt_time):
            return value.strftime(self.time_format) if self.time_format else value.isoformat()
        if isinstance(value, Decimal):
            pattern = self.currency_format or self.float_format
            return format(value, pattern) if pattern else str(value)
        if isinstance(value, float):
            return format(value, self.float_format) if self.float_format else repr(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value).hex()
        return str(value)


DEFAULT_FORMATTER = RowFormatter()


class Row:
    """Immutable, fixed-arity sequence of column values."""

    __slots__ = ("_values", "_formatter")

    def __init__(self, values: Sequence[Any], formatter: RowFormatter = DEFAULT_FORMATTER):
        object.__setattr__(self, "_values", tuple(values))
        object.__setattr__(self, "_formatter", formatter)

    def __setattr__(self, name, value):
        raise AttributeError("Row is immutable")

    @property
    def values(self) -> Tuple[Any, ...]:
        return self._values

    def get_string(self, index: int) -> Optional[str]:
        """Column value at a zero-based position, rendered as text."""
        return self._formatter.format(self._values[index])

    def __getitem__(self, index):
        return self._values[index]

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __eq__(self, other) -> bool:
        if isinstance(other, Row):
            return self._values == other._values
        if isinstance(other, tuple):
            return self._values == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._values)

    def __repr__(self) -> str:
        return f"Row{self._values!r}"


Batch = Tuple[Row, ...]

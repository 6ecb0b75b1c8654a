"""
rowcsv: line-oriented CSV tokenizer with typed, header-addressed row access (stdlib-only).

Contract (v0):
- Input is read one physical line at a time; a record is one logical line.
- Fields are split on a single delimiter character (default ",").
- A single escape character (default '"') opens a quoted field. Inside quotes,
  delimiters and line breaks are literal text. An escape character inside quotes
  closes the quote only when it is the last character of the line or is followed
  by the delimiter; otherwise it is dropped and the field stays quoted.
    a,"b,c",d          -> ["a", "b,c", "d"]
    a,"say "hi" now",b -> ["a", "say hi now", "b"]
- A quote left open at the end of a physical line pulls in the next physical
  line, joined with "\\n".
- The first record fixes the row width; any later record with a different
  field count raises RowWidthMismatch. Rows are never padded or truncated.
- Header index: name -> 0-based position, last duplicate wins.
- Row view: typed accessors by column name. A column missing from the header
  reads as "" (never an error). Typed accessors raise FieldParseError on text
  they cannot parse, empty text included; get_enum alone returns None for "".
- Errors: IOFailure (source failed), RowWidthMismatch, FieldParseError.

API:
- reader(source, ...) -> RowReader, an iterator of list[str] records
- RowReader.header_index() / rows() / for_each() / for_each_row() / records()
- Row(record, header) -> get, get_int, get_float, get_iso_date, get_excel_date,
  get_money, get_enum, as_list

Python: 3.10+
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum, auto
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

logger = logging.getLogger(__name__)

__version__ = "0.1.0"


# ----------------------------
# Exceptions
# ----------------------------

class RowCSVError(Exception):
    """Base class for every error raised by rowcsv."""


class IOFailure(RowCSVError):
    """The line source failed while fetching a physical line."""

    def __init__(self, *, line: int, reason: str) -> None:
        super().__init__(f"IOFailure(line={line}): {reason}")
        self.line = line        # 1-based physical line being read
        self.reason = reason


class RowWidthMismatch(RowCSVError, ValueError):
    """A record's field count differs from the first record's."""

    def __init__(self, *, expected: int, actual: int, line: int) -> None:
        msg = (
            f"RowWidthMismatch(line={line}, expected={expected}, actual={actual}): "
            f"found a row with {actual} fields when we previously saw a row with {expected} fields"
        )
        super().__init__(msg)
        self.expected = expected
        self.actual = actual
        self.line = line        # physical line where the record starts


class FieldParseError(RowCSVError, ValueError):
    """A typed accessor could not interpret a column's raw text."""

    def __init__(self, *, column: str, value: str, type_name: str, reason: str) -> None:
        msg = (
            f"FieldParseError(column={column!r}, value={value!r}): "
            f"couldn't parse as {type_name}: {reason}"
        )
        super().__init__(msg)
        self.column = column
        self.value = value
        self.type_name = type_name
        self.reason = reason


# ----------------------------
# Dialect
# ----------------------------

@dataclass(frozen=True)
class Dialect:
    delimiter: str = ","
    escape: str = '"'
    # When set, next_record() hands back the same list on every call, cleared
    # and refilled. A record is then only valid until the next call.
    reuse_buffer: bool = False
    skip_lines: int = 0
    # used for bytes sources and binary streams
    encoding: str = "utf-8"

    def __post_init__(self) -> None:
        if len(self.delimiter) != 1:
            raise ValueError(f"delimiter must be a single character, got {self.delimiter!r}")
        if len(self.escape) != 1:
            raise ValueError(f"escape must be a single character, got {self.escape!r}")
        if self.delimiter == self.escape:
            raise ValueError(f"delimiter and escape must differ, both are {self.delimiter!r}")
        if self.skip_lines < 0:
            raise ValueError(f"skip_lines must be >= 0, got {self.skip_lines!r}")


DEFAULT = Dialect()

Source = Union[str, bytes, bytearray, Iterable[str], Iterable[bytes]]


# ----------------------------
# Line source
# ----------------------------

def _strip_terminator(line: str) -> str:
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n") or line.endswith("\r"):
        return line[:-1]
    return line


class LineSource:
    """
    One physical line at a time, terminator stripped, or None at end of input.

    Accepts the CSV text itself (str), raw bytes, a text or binary stream, or
    any iterable of lines. Bytes are decoded line by line with `encoding`.
    """

    def __init__(self, source: Source, encoding: str = "utf-8") -> None:
        if isinstance(source, str):
            source = io.StringIO(source, newline="")
        elif isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(source)
        self._lines = iter(source)
        self._encoding = encoding
        self.line_num = 0

    def read_line(self) -> Optional[str]:
        try:
            raw = next(self._lines)
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode(self._encoding)
        except StopIteration:
            return None
        except (OSError, ValueError) as e:
            # ValueError covers decode errors and reads from a closed stream
            raise IOFailure(line=self.line_num + 1, reason=str(e)) from e
        self.line_num += 1
        return _strip_terminator(raw)


# ----------------------------
# Record tokenizer
# ----------------------------

class _State(Enum):
    UNQUOTED = auto()
    QUOTED = auto()


class RowReader:
    """
    Pull-based tokenizer: each call to next_record() returns one logical record.

    With reuse_buffer enabled the returned list is borrowed: the same object is
    cleared and refilled by the following call. Copy it (list(record)) before
    asking for the next one if you need to keep it.

    If the input ends while a quote is still open, the partial field is returned
    as it stands (no trailing "\\n" is added for the missing line) and a warning
    is logged.
    """

    def __init__(self, source: Source, dialect: Dialect = DEFAULT, **fmtparams: Any) -> None:
        if fmtparams:
            dialect = replace(dialect, **fmtparams)
        self.dialect = dialect
        self._source = source if isinstance(source, LineSource) else LineSource(source, dialect.encoding)
        self._width: Optional[int] = None
        self._buffer: Optional[List[str]] = None

        for _ in range(dialect.skip_lines):
            if self._source.read_line() is None:
                break
        if dialect.skip_lines:
            logger.debug("Skipped %d leading line(s)", self._source.line_num)

    @property
    def line_num(self) -> int:
        """Number of physical lines consumed so far."""
        return self._source.line_num

    def __iter__(self) -> "RowReader":
        return self

    def __next__(self) -> List[str]:
        record = self.next_record()
        if record is None:
            raise StopIteration
        return record

    def _new_record(self) -> List[str]:
        if not self.dialect.reuse_buffer:
            return []
        if self._buffer is None:
            self._buffer = []
        else:
            self._buffer.clear()
        return self._buffer

    def next_record(self) -> Optional[List[str]]:
        """Tokenize the next logical record, or return None at end of input."""
        line = self._source.read_line()
        if line is None:
            return None
        start = self._source.line_num

        delimiter = self.dialect.delimiter
        escape = self.dialect.escape
        record = self._new_record()
        field: List[str] = []
        state = _State.UNQUOTED

        i = 0
        while i < len(line):
            c = line[i]
            last = i == len(line) - 1
            if c == escape:
                if state is _State.QUOTED:
                    # closes only before a delimiter or at end of line
                    if last or line[i + 1] == delimiter:
                        state = _State.UNQUOTED
                else:
                    state = _State.QUOTED
            elif state is _State.UNQUOTED and c == delimiter:
                record.append("".join(field))
                field.clear()
            else:
                field.append(c)

            if last and state is _State.QUOTED:
                more = self._source.read_line()
                if more is None:
                    logger.warning(
                        "Input ended inside a quoted field (record starting at line %d)", start
                    )
                else:
                    line = line + "\n" + more
            i += 1

        record.append("".join(field))

        if self._width is None:
            self._width = len(record)
        elif len(record) != self._width:
            raise RowWidthMismatch(expected=self._width, actual=len(record), line=start)
        return record

    # ----------------------------
    # Bulk helpers
    # ----------------------------

    def header_index(self) -> Dict[str, int]:
        """Read one record as the header row and map each name to its position."""
        index: Dict[str, int] = {}
        record = self.next_record()
        if record is None:
            return index
        for i, name in enumerate(record):
            index[name] = i
        return index

    def for_each(self, callback: Callable[[List[str]], Any]) -> None:
        for record in self:
            callback(record)

    def for_each_row(self, header: Mapping[str, int], callback: Callable[["Row"], Any]) -> None:
        for record in self:
            callback(Row(record, header))

    def rows(self, header: Optional[Mapping[str, int]] = None) -> Iterator["Row"]:
        """
        Yield a Row per remaining record, reading the header row first if none is given.
        Each Row owns a copy of its record when the reader reuses its buffer.
        """
        if header is None:
            header = self.header_index()
        for record in self:
            if self.dialect.reuse_buffer:
                record = list(record)
            yield Row(record, header)

    def records(self) -> List[List[str]]:
        """All remaining records. Copied when the reader reuses its buffer."""
        if self.dialect.reuse_buffer:
            return [list(r) for r in self]
        return list(self)


# ----------------------------
# Value parsers
# ----------------------------

EXCEL_EPOCH = date(1899, 12, 30)


def normalize(text: Optional[str]) -> str:
    """Trim whitespace (non-breaking spaces included); None becomes ""."""
    if text is None:
        return ""
    return text.replace("\u00a0", " ").strip()


def parse_int(text: str) -> int:
    return int(text.replace(",", "").strip())


def parse_float(text: str) -> float:
    return float(text.replace(",", "").strip())


def parse_iso_date(text: str) -> date:
    return date.fromisoformat(text)


def parse_excel_date(text: str) -> date:
    """Day count from the spreadsheet epoch (1899-12-30); fractions are truncated."""
    return EXCEL_EPOCH + timedelta(days=int(float(text)))


@dataclass(frozen=True)
class Money:
    amount: Decimal

    @classmethod
    def parse(cls, text: str) -> "Money":
        """
        Parse "$1,234.50", "-3", "(5.00)" style amounts.
        Parentheses mean negative. Rounded half-up to cents.
        """
        s = text.strip().replace("$", "").replace(",", "").strip()
        negative = s.startswith("(") and s.endswith(")")
        if negative:
            s = s[1:-1].strip()
        try:
            amount = Decimal(s)
        except InvalidOperation:
            raise ValueError(f"Invalid money literal: {text!r}") from None
        if not amount.is_finite():
            raise ValueError(f"Invalid money literal: {text!r}")
        if negative:
            amount = -amount
        return cls(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

    def __str__(self) -> str:
        sign = "-" if self.amount < 0 else ""
        return f"{sign}${abs(self.amount):,.2f}"


def lookup_enum(name: str, choices: Any) -> Any:
    """
    Resolve `name` against a mapping of case name -> value. An Enum class is
    accepted as its members mapping. Tries the exact name, then the name
    upper-cased with spaces and dashes as underscores.
    """
    if isinstance(choices, type) and issubclass(choices, Enum):
        choices = choices.__members__
    if name in choices:
        return choices[name]
    key = name.strip().upper().replace(" ", "_").replace("-", "_")
    if key in choices:
        return choices[key]
    raise ValueError(f"no case named {name!r} (expected one of {sorted(choices)!r})")


# ----------------------------
# Row view
# ----------------------------

class Row:
    """
    One record bound to a header index. Neither is copied, and values are
    parsed on every call.
    """

    __slots__ = ("_record", "_header")

    def __init__(self, record: Sequence[str], header: Mapping[str, int]) -> None:
        self._record = record
        self._header = header

    def __repr__(self) -> str:
        return f"Row({list(self._record)!r})"

    def __len__(self) -> int:
        return len(self._record)

    def __contains__(self, column: object) -> bool:
        return column in self._header

    def __getitem__(self, column: str) -> str:
        return self.get(column)

    def as_list(self) -> List[str]:
        return list(self._record)

    def get(self, column: str) -> str:
        """Normalized text of `column`; "" when the column is unknown."""
        index = self._header.get(column)
        if index is None:
            logger.debug("Could not find header: %r", column)
            return ""
        if index >= len(self._record):
            return ""
        return normalize(self._record[index])

    def _parse(self, column: str, type_name: str, parser: Callable[[str], Any]) -> Any:
        raw = self.get(column)
        try:
            return parser(raw)
        except Exception as e:
            raise FieldParseError(column=column, value=raw, type_name=type_name, reason=str(e)) from e

    def get_int(self, column: str) -> int:
        return self._parse(column, "int", parse_int)

    def get_float(self, column: str) -> float:
        return self._parse(column, "float", parse_float)

    def get_iso_date(self, column: str) -> date:
        """YYYY-MM-DD. See also get_excel_date()."""
        return self._parse(column, "date", parse_iso_date)

    def get_excel_date(self, column: str) -> date:
        """Date stored as a spreadsheet serial number (days since 1899-12-30)."""
        return self._parse(column, "excel date", parse_excel_date)

    def get_money(self, column: str) -> Money:
        return self._parse(column, "money", Money.parse)

    def get_enum(self, column: str, choices: Any) -> Any:
        """None for empty text; otherwise the case named by the text."""
        if self.get(column) == "":
            return None
        type_name = getattr(choices, "__name__", "enum")
        return self._parse(column, type_name, lambda s: lookup_enum(s, choices))


# ----------------------------
# Factory
# ----------------------------

def reader(source: Source, dialect: Dialect = DEFAULT, **fmtparams: Any) -> RowReader:
    return RowReader(source, dialect, **fmtparams)


__all__ = [
    "RowCSVError",
    "IOFailure",
    "RowWidthMismatch",
    "FieldParseError",
    "Dialect",
    "DEFAULT",
    "LineSource",
    "RowReader",
    "Row",
    "Money",
    "EXCEL_EPOCH",
    "normalize",
    "parse_int",
    "parse_float",
    "parse_iso_date",
    "parse_excel_date",
    "lookup_enum",
    "reader",
    "__version__",
]

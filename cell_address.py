"""
Cell address algebra.

Converts between spreadsheet notation ("B12", "A1:B10") and 0-based
(row, col) coordinates. Display columns are 1-based letters in bijective
base-26 (A=1, Z=26, AA=27); internal coordinates are 0-based.
"""
import re
from typing import Iterator, NamedTuple, Optional

from errors import RuleEvaluationError

CELL_PATTERN = re.compile(r"^([A-Z]+)([0-9]+)$")
COLUMN_PATTERN = re.compile(r"^[A-Z]+$")

FIELD_CELL = "cell"
FIELD_RANGE = "range"
FIELD_COLUMN = "column"


class CellReference(NamedTuple):
    """A resolved 0-based coordinate pair"""
    row: int
    col: int

    @property
    def address(self) -> str:
        return cell_to_string(self.row, self.col)


def column_to_number(letters: str) -> int:
    """Convert column letters to a 1-based column number ("AA" -> 27)."""
    if not isinstance(letters, str) or not COLUMN_PATTERN.match(letters):
        raise ValueError(f"Invalid column letters: {letters!r}")
    number = 0
    for char in letters:
        number = number * 26 + (ord(char) - ord("A") + 1)
    return number


def number_to_column(number: int) -> str:
    """Convert a 1-based column number to its letters (27 -> "AA")."""
    if number < 1:
        raise ValueError(f"Column numbers start at 1, got {number}")
    letters = ""
    while number > 0:
        number -= 1
        letters = chr(number % 26 + ord("A")) + letters
        number //= 26
    return letters


def parse_cell(ref: str) -> Optional[CellReference]:
    """
    Parse a single cell address into 0-based coordinates.

    Returns None for anything that is not an address so the caller can treat
    the text as a column name instead.
    """
    if not isinstance(ref, str):
        return None
    match = CELL_PATTERN.match(ref.strip())
    if not match:
        return None
    row_number = int(match.group(2))
    if row_number < 1:
        return None
    return CellReference(row=row_number - 1, col=column_to_number(match.group(1)) - 1)


def cell_to_string(row: int, col: int) -> str:
    """Inverse of parse_cell: (0, 0) -> "A1"."""
    return f"{number_to_column(col + 1)}{row + 1}"


def expand_range(start: CellReference, end: CellReference) -> Iterator[CellReference]:
    """
    Lazily walk the rectangle between two corners in row-major order.

    Every column of a row is produced before moving to the next row. Corners
    given in the wrong order are swapped per axis.
    """
    first_row, last_row = sorted((start.row, end.row))
    first_col, last_col = sorted((start.col, end.col))
    for row in range(first_row, last_row + 1):
        for col in range(first_col, last_col + 1):
            yield CellReference(row, col)


class FieldSpec(NamedTuple):
    """A rule field classified as a cell, a range or a column name"""
    kind: str
    raw: str
    start: Optional[CellReference] = None
    end: Optional[CellReference] = None

    @property
    def column_name(self) -> Optional[str]:
        return self.raw.strip() if self.kind == FIELD_COLUMN else None

    @property
    def row_bounds(self):
        if self.kind == FIELD_COLUMN:
            return None
        return min(self.start.row, self.end.row), max(self.start.row, self.end.row)

    @property
    def col_bounds(self):
        if self.kind == FIELD_COLUMN:
            return None
        return min(self.start.col, self.end.col), max(self.start.col, self.end.col)

    def reference_count(self) -> Optional[int]:
        """Number of cells addressed, or None for a column name."""
        if self.kind == FIELD_COLUMN:
            return None
        first_row, last_row = self.row_bounds
        first_col, last_col = self.col_bounds
        return (last_row - first_row + 1) * (last_col - first_col + 1)

    def references(self, first_row: int = 0, last_row: Optional[int] = None) -> Iterator[CellReference]:
        """Cells of this field whose row falls inside [first_row, last_row]."""
        if self.kind == FIELD_COLUMN:
            raise RuleEvaluationError("Column fields need a header row to resolve", field=self.raw)
        low, high = self.row_bounds
        low = max(low, first_row)
        if last_row is not None:
            high = min(high, last_row)
        if low > high:
            return iter(())
        first_col, last_col = self.col_bounds
        return expand_range(CellReference(low, first_col), CellReference(high, last_col))


def parse_field(field: str) -> FieldSpec:
    """
    Classify a rule field.

    "A1:B10" is a range, "B12" is a cell, anything else is a logical column
    name matched later against the header row.
    """
    if field is None:
        raise RuleEvaluationError("Rule field is empty")
    text = field.strip()
    if ":" in text:
        start_text, _, end_text = text.partition(":")
        start, end = parse_cell(start_text), parse_cell(end_text)
        if start is None or end is None:
            raise RuleEvaluationError(f"Invalid cell range: {field}", field=field)
        return FieldSpec(FIELD_RANGE, text, start, end)
    cell = parse_cell(text)
    if cell is not None:
        return FieldSpec(FIELD_CELL, text, cell, cell)
    if not text:
        raise RuleEvaluationError("Rule field is empty", field=field)
    return FieldSpec(FIELD_COLUMN, text)

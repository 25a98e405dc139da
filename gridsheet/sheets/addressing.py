"""
Cell addressing helpers.

Converts between column letters and zero-based indices and parses
``A1``-style cell references and ``A1:B2`` / ``B:B`` range strings.
External addresses are 1-indexed for rows; everything returned here is
zero-based.
"""

import re
from typing import NamedTuple, Optional, Sequence, Tuple

from .errors import InvalidRange, InvalidReference

CELL_REF_RE = re.compile(r'^([A-Za-z]+)([0-9]+)$')
COLUMN_RE = re.compile(r'^[A-Za-z]+$')


class CellRange(NamedTuple):
    """Rectangular span; ``end_row`` is None for open column ranges (``B:B``)."""
    start_row: int
    start_col: int
    end_row: Optional[int]
    end_col: int

    @property
    def is_column_span(self) -> bool:
        return self.end_row is None

    def bounded(self, row_count: int) -> 'CellRange':
        """Close an open column span over the current row count."""
        if self.end_row is not None:
            return self
        return CellRange(0, self.start_col, max(row_count - 1, -1), self.end_col)


def column_letter_to_index(name: str) -> int:
    """Convert column letters to index (A->0, Z->25, AA->26)."""
    name = name.strip()
    if not COLUMN_RE.match(name):
        raise InvalidReference(f"Invalid column: '{name}'")
    index = 0
    for char in name.upper():
        index = index * 26 + (ord(char) - 64)
    return index - 1


def index_to_column_letter(index: int) -> str:
    """Convert column index to letters (0->A, 25->Z, 26->AA)."""
    if index < 0:
        raise InvalidReference(f"Invalid column index: {index}")
    result = ""
    while index >= 0:
        result = chr(65 + index % 26) + result
        index = index // 26 - 1
    return result


def cell_address(row: int, col: int) -> str:
    return f"{index_to_column_letter(col)}{row + 1}"


def parse_cell_ref(text: str) -> Tuple[int, int]:
    """Parse ``"B3"`` into zero-based ``(row, col)``."""
    match = CELL_REF_RE.match(text.strip())
    if not match:
        raise InvalidReference(f"Invalid cell reference: '{text}'")
    letters, digits = match.groups()
    row = int(digits) - 1
    if row < 0:
        raise InvalidReference(f"Row numbers start at 1: '{text}'")
    return row, column_letter_to_index(letters)


def parse_range(text: str) -> CellRange:
    """Parse ``"A1:C5"`` or ``"B:D"`` into a normalized CellRange."""
    parts = text.strip().split(':')
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise InvalidRange(f"Invalid range: '{text}'")
    left, right = parts[0].strip(), parts[1].strip()

    if COLUMN_RE.match(left) and COLUMN_RE.match(right):
        first, last = sorted((column_letter_to_index(left), column_letter_to_index(right)))
        return CellRange(0, first, None, last)

    if CELL_REF_RE.match(left) and CELL_REF_RE.match(right):
        r1, c1 = parse_cell_ref(left)
        r2, c2 = parse_cell_ref(right)
        return CellRange(min(r1, r2), min(c1, c2), max(r1, r2), max(c1, c2))

    raise InvalidRange(f"Invalid range: '{text}'")


def resolve_column_token(token: str, headers: Sequence[str]) -> int:
    """Resolve a header name or column letter to a column index.

    Exact header match wins, then a case-insensitive header match, then the
    token is parsed as column letters (whose error propagates).
    """
    token = str(token).strip()
    if token in headers:
        return list(headers).index(token)

    lowered = token.lower()
    for idx, header in enumerate(headers):
        if header.lower() == lowered:
            return idx

    return column_letter_to_index(token)

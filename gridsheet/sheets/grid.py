"""
Grid store.

Two parallel planes of text share the grid's dimensions: ``data`` holds the
displayed value of every cell and ``formulas`` holds the formula text (or an
empty string) for every cell. A non-empty formula always has its last
computed result in the value plane.
"""

import logging
from typing import Dict, List, Optional

from .addressing import CellRange, cell_address, index_to_column_letter
from .errors import RowNotFound
from .formula_engine import FormulaEvaluator

logger = logging.getLogger(__name__)

DEFAULT_ROWS = 20
DEFAULT_COLS = 10


def is_formula(value: str) -> bool:
    return isinstance(value, str) and value.startswith('=')


class Grid:
    """Rectangular value/formula planes plus column headers."""

    def __init__(self, data: List[List[str]], formulas: List[List[str]], headers: List[str]):
        self.data = data
        self.formulas = formulas
        self.headers = headers

    @classmethod
    def empty(cls, rows: int = DEFAULT_ROWS, cols: int = DEFAULT_COLS) -> 'Grid':
        grid = cls([], [], [])
        grid.resize(rows, cols)
        return grid

    @property
    def row_count(self) -> int:
        return len(self.data)

    @property
    def col_count(self) -> int:
        return len(self.headers)

    # --- Capacity ---

    def ensure_capacity(self, row: int, col: int):
        """Grow so that (row, col) is inside the grid. Never shrinks."""
        while self.col_count <= col:
            self.headers.append(index_to_column_letter(self.col_count))
            for values, formulas in zip(self.data, self.formulas):
                values.append('')
                formulas.append('')
        while self.row_count <= row:
            self.data.append([''] * self.col_count)
            self.formulas.append([''] * self.col_count)

    def resize(self, rows: Optional[int] = None, cols: Optional[int] = None):
        """Explicitly truncate or grow rows and/or columns."""
        if cols is not None:
            cols = max(int(cols), 0)
            if cols < self.col_count:
                del self.headers[cols:]
                for values, formulas in zip(self.data, self.formulas):
                    del values[cols:]
                    del formulas[cols:]
            elif cols > self.col_count:
                self.ensure_capacity(-1, cols - 1)
        if rows is not None:
            rows = max(int(rows), 0)
            if rows < self.row_count:
                del self.data[rows:]
                del self.formulas[rows:]
            elif rows > self.row_count:
                self.ensure_capacity(rows - 1, -1)

    # --- Cell access ---

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.row_count and 0 <= col < self.col_count

    def get_cell(self, row: int, col: int) -> str:
        if not self.in_bounds(row, col):
            return ''
        return self.data[row][col]

    def get_formula(self, row: int, col: int) -> str:
        if not self.in_bounds(row, col):
            return ''
        return self.formulas[row][col]

    def get_raw(self, row: int, col: int) -> str:
        """Formula text if the cell has one, otherwise its value."""
        return self.get_formula(row, col) or self.get_cell(row, col)

    def set_value(self, row: int, col: int, value: str):
        self.ensure_capacity(row, col)
        self.data[row][col] = value

    def set_cell(self, row: int, col: int, value: str):
        """Store a plain value, or a formula when it starts with ``=``."""
        value = '' if value is None else str(value)
        self.ensure_capacity(row, col)
        if is_formula(value):
            self.formulas[row][col] = value
        else:
            self.formulas[row][col] = ''
            self.data[row][col] = value

    def clear_cell(self, row: int, col: int):
        if self.in_bounds(row, col):
            self.data[row][col] = ''
            self.formulas[row][col] = ''

    def clear_range(self, cell_range: CellRange):
        rng = cell_range.bounded(self.row_count)
        for row in range(rng.start_row, min(rng.end_row, self.row_count - 1) + 1):
            for col in range(rng.start_col, min(rng.end_col, self.col_count - 1) + 1):
                self.clear_cell(row, col)

    # --- Rows ---

    def remove_row(self, row_number: int):
        """Delete a 1-indexed row from both planes."""
        if not 1 <= row_number <= self.row_count:
            raise RowNotFound(
                f"Row {row_number} not found",
                f"Grid has {self.row_count} rows",
            )
        del self.data[row_number - 1]
        del self.formulas[row_number - 1]

    def is_row_empty(self, row: int) -> bool:
        return not any(self.data[row]) and not any(self.formulas[row])

    def last_non_empty_row(self) -> int:
        """Index of the bottom-most row with content, -1 when the grid is blank."""
        for row in range(self.row_count - 1, -1, -1):
            if not self.is_row_empty(row):
                return row
        return -1

    def first_empty_row(self) -> int:
        """First wholly empty row, or the index just past the grid."""
        for row in range(self.row_count):
            if self.is_row_empty(row):
                return row
        return self.row_count

    def rows(self) -> List[List[str]]:
        return [list(values) for values in self.data]

    def raw_rows(self) -> List[List[str]]:
        return [
            [formula or value for value, formula in zip(values, formulas)]
            for values, formulas in zip(self.data, self.formulas)
        ]

    def formula_map(self) -> Dict[str, str]:
        result = {}
        for row, formulas in enumerate(self.formulas):
            for col, formula in enumerate(formulas):
                if formula:
                    result[cell_address(row, col)] = formula
        return result

    # --- Recalculation ---

    def recalculate_all(self):
        """Re-evaluate every formula once, row by row, left to right.

        There is no dependency ordering: a formula that reads a cell later in
        the sweep sees the value that cell held before this pass.
        """
        evaluator = FormulaEvaluator(self)
        count = 0
        for row in range(self.row_count):
            for col in range(self.col_count):
                formula = self.formulas[row][col]
                if formula:
                    self.data[row][col] = evaluator.evaluate(formula, row, col)
                    count += 1
        logger.debug("Recalculated %d formula cells", count)

"""
Row-level operations on a grid: query, sort, fill, add/update/push rows,
CSV import/export and schema detection.

These functions mutate the grid in memory only. Recalculation is done here
where an operation changes values; persistence is the caller's job.
"""

import functools
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .addressing import CellRange, index_to_column_letter, parse_range, resolve_column_token
from .errors import InvalidArgument, InvalidReference, RowNotFound, UnknownColumn
from .formula_engine import FormulaEvaluator, parse_number
from .grid import Grid, is_formula
from .storage import build_grid

logger = logging.getLogger(__name__)

# Checked in this order so that '>' never matches inside '>='.
QUERY_OPERATORS = ('>=', '<=', '!=', '>', '<', '=', 'contains')


def resolve_column(grid: Grid, token: str) -> int:
    """Header name or column letter -> index inside the current grid."""
    try:
        col = resolve_column_token(token, grid.headers)
    except InvalidReference:
        col = grid.col_count
    if col >= grid.col_count:
        raise UnknownColumn(
            f"Column '{token}' not found",
            f"Available columns: {', '.join(grid.headers)}",
        )
    return col


def _resolve_values(grid: Grid, values: Mapping[str, Any]) -> List[Tuple[int, str]]:
    return [(resolve_column(grid, column), _cell_text(value)) for column, value in values.items()]


def _cell_text(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    return str(value)


# --- Row editing ---

def add_row(grid: Grid, values: Mapping[str, Any]) -> int:
    """Write values into the first wholly empty row; returns its 1-indexed number."""
    resolved = _resolve_values(grid, values)
    row = grid.first_empty_row()
    grid.ensure_capacity(row, -1)
    for col, value in resolved:
        grid.set_cell(row, col, value)
    grid.recalculate_all()
    return row + 1


def update_row(grid: Grid, row_number: int, values: Mapping[str, Any]) -> List[str]:
    if not 1 <= row_number <= grid.row_count:
        raise RowNotFound(f"Row {row_number} not found", f"Grid has {grid.row_count} rows")
    resolved = _resolve_values(grid, values)
    changes = []
    for col, value in resolved:
        grid.set_cell(row_number - 1, col, value)
        changes.append(f"{grid.headers[col]}={value}")
    grid.recalculate_all()
    return changes


def push_rows(grid: Grid, rows: Sequence[Union[Sequence[Any], Mapping[str, Any]]]) -> int:
    """Append rows after the last non-empty row.

    A row is either a list in column order or a ``{column: value}`` mapping.
    """
    prepared = []
    for row in rows:
        if isinstance(row, Mapping):
            prepared.append(_resolve_values(grid, row))
        else:
            prepared.append([(col, _cell_text(value)) for col, value in enumerate(row)])

    start = grid.last_non_empty_row() + 1
    for offset, cells in enumerate(prepared):
        grid.ensure_capacity(start + offset, -1)
        for col, value in cells:
            grid.set_cell(start + offset, col, value)
    grid.recalculate_all()
    return len(prepared)


def fill_range(grid: Grid, range_text: str, pattern: str) -> int:
    """Repeat a comma-separated pattern across a range in row-major order."""
    items = [item.strip() for item in pattern.split(',')]
    cell_range = parse_range(range_text)
    if cell_range.is_column_span:
        grid.ensure_capacity(-1, cell_range.end_col)
    else:
        grid.ensure_capacity(cell_range.end_row, cell_range.end_col)
    rng = cell_range.bounded(grid.row_count)

    count = 0
    for row in range(rng.start_row, rng.end_row + 1):
        for col in range(rng.start_col, rng.end_col + 1):
            grid.formulas[row][col] = ''
            grid.data[row][col] = items[count % len(items)]
            count += 1
    grid.recalculate_all()
    return count


# --- Query / sort ---

def parse_condition(where: str) -> Tuple[str, str, str]:
    """Split ``"Age >= 30"`` into (column, operator, value)."""
    for op in QUERY_OPERATORS:
        token = f' {op} ' if op == 'contains' else op
        index = where.find(token)
        if index > 0:
            column = where[:index].strip()
            value = where[index + len(token):].strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            if column:
                return column, op, value
    raise InvalidArgument(
        f"Invalid condition: '{where}'",
        f"Expected '<column> <op> <value>' with op in {', '.join(QUERY_OPERATORS)}",
    )


def _matches(cell: str, op: str, value: str) -> bool:
    if op == 'contains':
        return value.lower() in cell.lower()

    a, b = parse_number(cell), parse_number(value)
    if a is None or b is None:
        a, b = cell, value
    if op == '=':
        return a == b
    if op == '!=':
        return a != b
    if op == '>':
        return a > b
    if op == '<':
        return a < b
    if op == '>=':
        return a >= b
    return a <= b


def query_rows(grid: Grid, where: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Rows whose column satisfies the condition, as ``{"row": n, "values": {...}}``."""
    column, op, value = parse_condition(where)
    col = resolve_column(grid, column)

    matches = []
    for row in range(grid.row_count):
        if not any(grid.data[row]):
            continue
        if _matches(grid.data[row][col], op, value):
            matches.append({
                'row': row + 1,
                'values': dict(zip(grid.headers, grid.data[row])),
            })
            if limit and len(matches) >= limit:
                break
    return matches


def _compare_cells(a: str, b: str) -> int:
    x, y = parse_number(a), parse_number(b)
    if x is None or y is None:
        x, y = a, b
    return (x > y) - (x < y)


def sort_rows(grid: Grid, column: str, order: str = 'asc'):
    """Stable sort of all rows by one column; blank values always go last."""
    order = (order or 'asc').lower()
    if order not in ('asc', 'desc'):
        raise InvalidArgument(f"Invalid sort order: '{order}'", "Use 'asc' or 'desc'")
    col = resolve_column(grid, column)
    direction = -1 if order == 'desc' else 1

    def compare(i: int, j: int) -> int:
        a, b = grid.data[i][col], grid.data[j][col]
        if a == '' or b == '':
            return (a == '') - (b == '')
        return direction * _compare_cells(a, b)

    ordering = sorted(range(grid.row_count), key=functools.cmp_to_key(compare))
    grid.data = [grid.data[i] for i in ordering]
    grid.formulas = [grid.formulas[i] for i in ordering]
    grid.recalculate_all()


# --- Import / export ---

def grid_from_rows(rows: List[List[str]], default_rows: int, default_cols: int) -> Grid:
    """Build a grid from imported rows; the first row holds the headers.

    Formula cells are evaluated as their row is added, so they only see rows
    imported before them. One full recalculation follows.
    """
    # drop blank lines; a row of empty fields such as ',,' is kept
    rows = [row for row in rows if len(row) > 1 or (row and str(row[0]).strip())]
    if not rows:
        return Grid.empty(default_rows, default_cols)

    grid = build_grid(rows[:1])
    grid.ensure_capacity(-1, max(len(row) for row in rows) - 1)
    evaluator = FormulaEvaluator(grid)
    for values in rows[1:]:
        row = grid.row_count
        grid.ensure_capacity(row, -1)
        for col, value in enumerate(str(v) for v in values):
            if is_formula(value):
                grid.formulas[row][col] = value
                grid.data[row][col] = evaluator.evaluate(value, row, col)
            else:
                grid.data[row][col] = value
    grid.recalculate_all()
    return grid


def dump_rows(grid: Grid) -> List[List[str]]:
    """Headers plus raw rows (formula text kept) without trailing empty rows."""
    last = grid.last_non_empty_row()
    return [list(grid.headers)] + grid.raw_rows()[:last + 1]


def schema(grid: Grid) -> List[Dict[str, Any]]:
    result = []
    for col, header in enumerate(grid.headers):
        values = [grid.data[row][col] for row in range(grid.row_count) if grid.data[row][col] != '']
        if not values:
            kind = 'empty'
        elif sum(parse_number(v) is not None for v in values) > len(values) / 2:
            kind = 'number'
        else:
            kind = 'text'
        result.append({
            'column': header,
            'type': kind,
            'nonEmpty': len(values),
            'total': grid.row_count,
        })
    return result


def extract_range(grid: Grid, cell_range: CellRange) -> Tuple[List[str], List[List[str]]]:
    """Headers and values of a sub-grid; cells past the grid read as blank."""
    rng = cell_range.bounded(grid.row_count)
    columns = range(rng.start_col, rng.end_col + 1)
    headers = [
        grid.headers[col] if col < grid.col_count else index_to_column_letter(col)
        for col in columns
    ]
    data = [
        [grid.get_cell(row, col) for col in columns]
        for row in range(rng.start_row, rng.end_row + 1)
    ]
    return headers, data


def render_table(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    """Markdown table."""
    def cell(value):
        return str(value).replace('|', '\\|').replace('\n', ' ')

    lines = [
        '| ' + ' | '.join(cell(h) for h in headers) + ' |',
        '|' + '|'.join('---' for _ in headers) + '|',
    ]
    for row in rows:
        lines.append('| ' + ' | '.join(cell(v) for v in row) + ' |')
    return '\n'.join(lines)

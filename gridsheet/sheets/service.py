"""
Spreadsheet operations.

``Spreadsheet`` wraps one named instance and exposes the operations callers
use (view, get, set, add, push, remove, update, query, sort, fill, schema,
resize, ingest, dump, clear, rename). Every mutating operation runs to
completion in memory, recalculates, saves, and then sends ``sheet_changed``.
All reads return copies of the grid.
"""

import functools
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from . import operations
from .addressing import parse_cell_ref, parse_range
from .errors import InvalidArgument, MissingIngestSource
from .registry import SheetInstance, SheetRegistry
from .signals import sheet_changed
from .storage import (
    EXCEL_EXTENSIONS,
    atomic_write,
    confined_path,
    parse_csv,
    read_source,
    to_csv,
    write_excel,
)

logger = logging.getLogger(__name__)


class Spreadsheet:
    """Operations on one named spreadsheet instance."""

    def __init__(self, instance: SheetInstance):
        self.instance = instance

    @property
    def name(self) -> str:
        return self.instance.name

    # --- Response helpers ---

    def _snapshot(self, message: str) -> Dict[str, Any]:
        grid = self.instance.grid
        return {
            'message': message,
            'instance': self.name,
            'file': str(self.instance.path),
            'headers': list(grid.headers),
            'data': [row for row in grid.rows() if any(row)],
            'formulas': grid.formula_map(),
            'rows': grid.row_count,
            'cols': grid.col_count,
        }

    def _commit(self, message: str) -> Dict[str, Any]:
        self.instance.save()
        snapshot = self._snapshot(message)
        sheet_changed.send(sender=self.__class__, instance=self.name, message=message, snapshot=snapshot)
        return snapshot

    # --- Reads ---

    def view(self, range: Optional[str] = None) -> Dict[str, Any]:
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            if not range:
                snapshot = self._snapshot(self.instance.path.name)
                last = grid.last_non_empty_row()
                snapshot['table'] = operations.render_table(grid.headers, grid.rows()[:last + 1])
                return snapshot

            headers, data = operations.extract_range(grid, parse_range(range))
            snapshot = self._snapshot(f"Viewing range {range}")
            snapshot.update({
                'headers': headers,
                'data': data,
                'table': operations.render_table(headers, data),
            })
            return snapshot

    def get(self, cell: str) -> Dict[str, Any]:
        row, col = parse_cell_ref(cell)
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            if not grid.in_bounds(row, col):
                return {'cell': cell, 'value': '', 'formula': '', 'message': 'Cell is empty'}

            value = grid.get_cell(row, col)
            formula = grid.get_formula(row, col)
            if formula:
                message = f"{cell} = {value} ({formula})"
            else:
                message = f"{cell} = {value or '(empty)'}"
            return {'cell': cell, 'value': value, 'formula': formula, 'message': message}

    def query(self, where: str, limit: Optional[int] = None) -> Dict[str, Any]:
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            matches = operations.query_rows(grid, where, limit)
            table = operations.render_table(
                ['Row'] + list(grid.headers),
                [[m['row']] + list(m['values'].values()) for m in matches],
            )
            return {
                'table': table,
                'data': matches,
                'matchCount': len(matches),
                'message': f"{len(matches)} row(s) match '{where}'",
            }

    def schema(self) -> Dict[str, Any]:
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            columns = operations.schema(grid)
            table = operations.render_table(
                ['Column', 'Type', 'Non-empty', 'Total'],
                [[c['column'], c['type'], c['nonEmpty'], c['total']] for c in columns],
            )
            return {
                'table': table,
                'schema': columns,
                'headers': list(grid.headers),
                'message': f"{grid.col_count} columns, {grid.row_count} rows",
            }

    def dump(self, file: Optional[str] = None) -> Dict[str, Any]:
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            rows = operations.dump_rows(grid)

            if file:
                path = confined_path(file, self.instance.folder)
                if path.suffix.lower() in EXCEL_EXTENSIONS:
                    last = grid.last_non_empty_row()
                    write_excel(grid.headers, grid.rows()[:last + 1], path)
                else:
                    atomic_write(path, to_csv(rows))
                logger.info("Exported %s to %s", self.name, path)
                return {'message': f"Exported to {file}", 'file': str(file)}

            return {'csv': to_csv(rows), 'message': f"CSV export ({len(rows) - 1} rows)"}

    # --- Mutations ---

    def set(self, cell: str, value: Any) -> Dict[str, Any]:
        row, col = parse_cell_ref(cell)
        value = '' if value is None else str(value)
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            old = grid.get_cell(row, col)
            had_content = bool(grid.get_raw(row, col))

            grid.set_cell(row, col, value)
            grid.recalculate_all()

            result = grid.get_cell(row, col)
            message = f"Set {cell} = {result} (was: {old})" if had_content else f"Set {cell} = {result}"
            return self._commit(message)

    def add(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            row_number = operations.add_row(grid, values or {})
            return self._commit(f"Added row {row_number}")

    def push(self, rows: Sequence[Any]) -> Dict[str, Any]:
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            added = operations.push_rows(grid, rows or [])
            return self._commit(f"Pushed {added} row(s) ({grid.last_non_empty_row() + 1} total)")

    def remove(self, row: int) -> Dict[str, Any]:
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            grid.remove_row(int(row))
            grid.recalculate_all()
            return self._commit(f"Removed row {row}")

    def update(self, row: int, values: Mapping[str, Any]) -> Dict[str, Any]:
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            changes = operations.update_row(grid, int(row), values or {})
            return self._commit(f"Updated row {row}: {', '.join(changes)}")

    def sort(self, column: str, order: Optional[str] = None) -> Dict[str, Any]:
        order = order or 'asc'
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            operations.sort_rows(grid, column, order)
            return self._commit(f"Sorted by {column} ({order})")

    def fill(self, range: str, pattern: str) -> Dict[str, Any]:
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            count = operations.fill_range(grid, range, pattern)
            return self._commit(f"Filled {range} with pattern [{pattern}] ({count} cells)")

    def resize(self, rows: Optional[int] = None, cols: Optional[int] = None) -> Dict[str, Any]:
        for label, value in (('rows', rows), ('cols', cols)):
            if value is not None and int(value) < 0:
                raise InvalidArgument(f"{label} must not be negative")
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            grid.resize(rows, cols)
            grid.recalculate_all()
            return self._commit(f"Resized to {grid.row_count} rows x {grid.col_count} cols")

    def ingest(self, file=None, csv: Optional[str] = None) -> Dict[str, Any]:
        """Replace the sheet with CSV (or Excel) data; the first row is the header."""
        if file is None and csv is None:
            raise MissingIngestSource('Provide either "file" path or "csv" text')
        if file is not None and csv is not None:
            raise MissingIngestSource('Provide either "file" path or "csv" text, not both')

        if isinstance(file, (str, Path)):
            file = confined_path(file, self.instance.folder)
        source = getattr(file, 'name', file)
        try:
            rows = read_source(file) if file is not None else parse_csv(csv)
        except FileNotFoundError as e:
            raise MissingIngestSource(f"File not found: {source}", str(e)) from e
        except OSError as e:
            raise MissingIngestSource(f"Cannot read {source}", str(e)) from e
        except ValueError as e:
            # includes UnicodeDecodeError and unreadable workbooks
            raise InvalidArgument(f"Cannot parse {source}", str(e)) from e
        with self.instance.lock:
            store = self.instance.store
            grid = operations.grid_from_rows(rows, store.default_rows, store.default_cols)
            self.instance.replace(grid)
            logger.info("Ingested %d rows x %d cols into %s", grid.row_count, grid.col_count, self.name)
            return self._commit(f"Imported {grid.row_count} rows x {grid.col_count} cols")

    def clear(self, range: Optional[str] = None) -> Dict[str, Any]:
        cell_range = parse_range(range) if range else None
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            if cell_range is None:
                self.instance.reset()
                return self._commit("Cleared all cells")
            grid.clear_range(cell_range)
            grid.recalculate_all()
            return self._commit(f"Cleared range {range}")

    def rename(self, column: str, name: str) -> Dict[str, Any]:
        name = (name or '').strip()
        if not name:
            raise InvalidArgument("New column name must not be empty")
        with self.instance.lock:
            grid = self.instance.ensure_loaded()
            col = operations.resolve_column(grid, column)
            old = grid.headers[col]
            grid.headers[col] = name
            grid.recalculate_all()
            return self._commit(f'Renamed column: "{old}" -> "{name}"')


@functools.lru_cache(maxsize=None)
def get_registry() -> SheetRegistry:
    return SheetRegistry()


def open_sheet(name: Optional[str] = None, registry: Optional[SheetRegistry] = None) -> Spreadsheet:
    """Spreadsheet for a named instance in the given (or default) registry."""
    registry = registry or get_registry()
    return Spreadsheet(registry.get(name))

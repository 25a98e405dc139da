"""
Flat-file persistence for spreadsheet instances.

Each instance is a CSV file (header row + displayed values) and, when at
least one formula exists, a JSON sidecar mapping cell addresses to formula
text. Files are always rewritten whole: content goes to a temporary file in
the same directory which then replaces the target.
"""

import csv
import io
import json
import logging
import os
import tempfile
import zipfile
from pathlib import Path
from typing import Dict, List, Sequence, Union

import pandas as pd

from .addressing import index_to_column_letter, parse_cell_ref
from .errors import InvalidArgument, InvalidReference
from .formula_engine import parse_number
from .grid import DEFAULT_COLS, DEFAULT_ROWS, Grid, is_formula

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = '.formulas.json'
EXCEL_EXTENSIONS = ('.xlsx', '.xls')


def parse_csv(text: str) -> List[List[str]]:
    """Parse CSV text into rows of strings. Rows may have different lengths."""
    text = text.lstrip('\ufeff')
    return [list(row) for row in csv.reader(io.StringIO(text, newline=''))]


def to_csv(rows: Sequence[Sequence[str]]) -> str:
    """Serialize rows with RFC-4180 quoting (only fields that need it are quoted)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerows(rows)
    return buffer.getvalue()


def build_grid(rows: List[List[str]]) -> Grid:
    """Turn a header row plus data rows into a Grid sized to the widest row."""
    header_row = rows[0] if rows else []
    body = rows[1:]
    width = max([len(header_row)] + [len(row) for row in body])

    headers = [
        (header_row[col].strip() if col < len(header_row) else '') or index_to_column_letter(col)
        for col in range(width)
    ]
    data = []
    formulas = []
    for row in body:
        data.append([str(v) for v in row] + [''] * (width - len(row)))
        formulas.append([''] * width)
    return Grid(data, formulas, headers)


def read_excel_rows(source) -> List[List[str]]:
    """Read the first sheet of an Excel workbook as rows of text."""
    try:
        df = pd.read_excel(source, header=None, dtype=object)
    except zipfile.BadZipFile as e:
        raise ValueError(f"Not a valid workbook: {e}") from e
    df = df.fillna('')
    rows = []
    for record in df.itertuples(index=False):
        rows.append([_excel_text(value) for value in record])
    return rows


def _excel_text(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def write_excel(headers: List[str], rows: List[List[str]], path: Union[str, Path]):
    """Write headers + rows to an .xlsx file; numeric text is stored as numbers."""
    converted = []
    for row in rows:
        out = []
        for value in row:
            number = parse_number(value)
            if number is None:
                out.append(value)
            elif number.is_integer():
                out.append(int(number))
            else:
                out.append(number)
        converted.append(out)

    df = pd.DataFrame(converted, columns=headers)
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_excel(path, index=False, engine='openpyxl')


def read_source(source) -> List[List[str]]:
    """Read rows from a file path or an uploaded file object (CSV or Excel)."""
    name = str(getattr(source, 'name', source))
    if name.lower().endswith(EXCEL_EXTENSIONS):
        return read_excel_rows(source)
    if isinstance(source, (str, Path)):
        with open(source, encoding='utf-8-sig', newline='') as fh:
            return parse_csv(fh.read())
    content = source.read()
    if isinstance(content, bytes):
        content = content.decode('utf-8-sig')
    return parse_csv(content)


def atomic_write(path: Path, text: str):
    """Replace ``path`` with ``text`` in one step."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8', newline='') as fh:
            fh.write(text)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class SheetStore:
    """CSV + formula sidecar for one spreadsheet instance."""

    def __init__(self, path: Union[str, Path], default_rows: int = DEFAULT_ROWS,
                 default_cols: int = DEFAULT_COLS):
        self.path = Path(path)
        self.default_rows = default_rows
        self.default_cols = default_cols

    @property
    def sidecar_path(self) -> Path:
        return self.path.with_name(self.path.stem + SIDECAR_SUFFIX)

    def load(self) -> Grid:
        """Read the instance from disk, or return an empty grid if there is none."""
        if not self.path.exists():
            logger.info("No file at %s, starting empty sheet", self.path)
            return Grid.empty(self.default_rows, self.default_cols)

        with open(self.path, encoding='utf-8-sig', newline='') as fh:
            text = fh.read()
        if not text.strip():
            return Grid.empty(self.default_rows, self.default_cols)

        grid = build_grid(parse_csv(text))
        formulas = self._read_sidecar()
        for address, formula in formulas.items():
            try:
                row, col = parse_cell_ref(address)
            except InvalidReference:
                logger.warning("Skipping formula at invalid address %r in %s", address, self.sidecar_path)
                continue
            if is_formula(formula):
                grid.ensure_capacity(row, col)
                grid.formulas[row][col] = formula
        grid.recalculate_all()

        logger.info(
            "Loaded %s (%d rows x %d cols, %d formulas)",
            self.path, grid.row_count, grid.col_count, len(formulas),
        )
        return grid

    def save(self, grid: Grid):
        """Write headers + non-trailing-empty rows, then write or drop the sidecar."""
        last = grid.last_non_empty_row()
        rows = [grid.headers] + grid.rows()[:last + 1]
        atomic_write(self.path, to_csv(rows))

        formulas = grid.formula_map()
        if formulas:
            atomic_write(self.sidecar_path, json.dumps(formulas, indent=2))
        elif self.sidecar_path.exists():
            self.sidecar_path.unlink()

        logger.info("Saved %s (%d rows, %d formulas)", self.path, last + 1, len(formulas))

    def _read_sidecar(self) -> Dict[str, str]:
        if not self.sidecar_path.exists():
            return {}
        with open(self.sidecar_path, encoding='utf-8') as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed formula sidecar %s", self.sidecar_path)
            return {}
        return {str(k): str(v) for k, v in data.items()}


def instance_path(name: str, folder: Union[str, Path]) -> Path:
    """Map an instance name to its CSV path.

    Plain names live in ``folder``; absolute paths or names containing a
    path separator are used as given. '.csv' is appended when missing.
    """
    name = name or 'default'
    filename = name if name.lower().endswith('.csv') else name + '.csv'
    if os.path.isabs(name) or '/' in name or '\\' in name:
        return Path(filename).resolve()
    return Path(folder) / filename


def confined_path(file: Union[str, Path], folder: Union[str, Path]) -> Path:
    """Resolve ``file`` against ``folder``; anything that escapes the folder is refused."""
    root = Path(folder).resolve()
    path = (root / file).resolve()
    try:
        path.relative_to(root)
    except ValueError:
        raise InvalidArgument(
            f"Path '{file}' is outside the spreadsheet folder",
            f"Files must live under {root}",
        ) from None
    return path

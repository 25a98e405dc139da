"""
Pytest fixtures: Django configured against a throwaway spreadsheet folder,
plus registries and sheets rooted in each test's tmp_path.
"""

import os
import tempfile

import django
import pytest

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'gridsheet.settings')
os.environ.setdefault('SPREADSHEET_FOLDER', tempfile.mkdtemp(prefix='gridsheet-tests-'))
django.setup()

from sheets.grid import Grid  # noqa: E402
from sheets.operations import grid_from_rows  # noqa: E402
from sheets.registry import SheetRegistry  # noqa: E402
from sheets.service import open_sheet  # noqa: E402


@pytest.fixture
def registry(tmp_path):
    return SheetRegistry(folder=tmp_path, default_rows=20, default_cols=10)


@pytest.fixture
def sheet(registry):
    """Spreadsheet service for a fresh instance named 'test'."""
    return open_sheet('test', registry)


@pytest.fixture
def make_grid():
    """Import a header row plus data rows the way ingest does."""

    def _make(rows):
        return grid_from_rows(rows, 20, 10)

    return _make


@pytest.fixture
def empty_grid():
    return Grid.empty(5, 3)

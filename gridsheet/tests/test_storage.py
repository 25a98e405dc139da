import json

import pytest

from sheets.grid import Grid
from sheets.storage import (
    SheetStore,
    build_grid,
    instance_path,
    parse_csv,
    read_source,
    to_csv,
    write_excel,
)


@pytest.fixture
def store(tmp_path):
    return SheetStore(tmp_path / "budget.csv", default_rows=4, default_cols=3)


def test_missing_file_loads_empty_grid(store):
    grid = store.load()
    assert (grid.row_count, grid.col_count) == (4, 3)
    assert grid.headers == ["A", "B", "C"]


def test_csv_quoting_round_trips():
    rows = [["Name", "Note"], ["Smith, J", 'said "hi"'], ["multi\nline", ""]]
    text = to_csv(rows)
    assert text.splitlines()[1] == '"Smith, J","said ""hi"""'
    assert parse_csv(text) == rows


def test_parse_csv_accepts_ragged_rows_and_bom():
    assert parse_csv("\ufeffa,b,c\n1\n2,3\n") == [["a", "b", "c"], ["1"], ["2", "3"]]


def test_build_grid_pads_to_widest_row():
    grid = build_grid([["Name"], ["Ann", "x", "y"]])
    assert grid.headers == ["Name", "B", "C"]
    assert grid.data == [["Ann", "x", "y"]]


def test_save_writes_values_and_formula_sidecar(store):
    grid = Grid.empty(4, 2)
    grid.set_cell(0, 0, "10")
    grid.set_cell(1, 0, "=A1*2")
    grid.recalculate_all()
    store.save(grid)

    assert store.path.read_text() == "A,B\n10,\n20,\n"
    assert json.loads(store.sidecar_path.read_text()) == {"A2": "=A1*2"}
    assert store.sidecar_path.name == "budget.formulas.json"


def test_load_restores_formulas_and_recalculates(store):
    store.path.write_text("Qty,Total\n3,stale\n")
    store.sidecar_path.write_text(json.dumps({"B1": "=A1*5"}))

    grid = store.load()
    assert grid.headers == ["Qty", "Total"]
    assert grid.get_formula(0, 1) == "=A1*5"
    assert grid.get_cell(0, 1) == "15"


def test_sidecar_removed_when_no_formulas_remain(store):
    grid = Grid.empty(2, 2)
    grid.set_cell(0, 0, "=1")
    store.save(grid)
    assert store.sidecar_path.exists()

    grid.set_cell(0, 0, "plain")
    store.save(grid)
    assert not store.sidecar_path.exists()


def test_save_leaves_no_temporary_files(store, tmp_path):
    store.save(Grid.empty(2, 2))
    assert sorted(p.name for p in tmp_path.iterdir()) == ["budget.csv"]


def test_blank_file_loads_empty_grid(store):
    store.path.write_text("")
    assert store.load().row_count == 4


def test_instance_path(tmp_path):
    assert instance_path("sales", tmp_path) == tmp_path / "sales.csv"
    assert instance_path("sales.csv", tmp_path) == tmp_path / "sales.csv"
    absolute = tmp_path / "elsewhere" / "books"
    assert instance_path(str(absolute), "/unused") == absolute.with_suffix(".csv").resolve()


def test_excel_round_trip(tmp_path):
    path = tmp_path / "out.xlsx"
    write_excel(["Name", "Age", "Score"], [["Ann", "30", "1.5"], ["Bob", "", "x"]], path)
    assert read_source(str(path)) == [
        ["Name", "Age", "Score"],
        ["Ann", "30", "1.5"],
        ["Bob", "", "x"],
    ]

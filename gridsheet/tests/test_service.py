import pytest

from sheets.errors import InvalidArgument, InvalidReference, MissingIngestSource, RowNotFound
from sheets.service import open_sheet
from sheets.signals import sheet_changed


@pytest.fixture
def changes():
    """Collects sheet_changed notifications."""
    received = []

    def receiver(sender, instance, message, **kwargs):
        received.append((instance, message))

    sheet_changed.connect(receiver)
    yield received
    sheet_changed.disconnect(receiver)


def test_set_and_get_formula(sheet):
    sheet.set("A1", "10")
    sheet.set("A2", 20)
    result = sheet.set("A3", "=SUM(A1:A2)")
    assert result["message"] == "Set A3 = 30"

    cell = sheet.get("A3")
    assert cell["value"] == "30"
    assert cell["formula"] == "=SUM(A1:A2)"


def test_set_reports_previous_value(sheet):
    sheet.set("B2", "old")
    assert sheet.set("B2", "new")["message"] == "Set B2 = new (was: old)"


def test_get_outside_grid_is_empty(sheet):
    assert sheet.get("Z999")["value"] == ""
    with pytest.raises(InvalidReference):
        sheet.get("not-a-cell")


def test_snapshot_shape(sheet):
    snapshot = sheet.set("A1", "=1+1")
    assert set(snapshot) >= {"message", "headers", "data", "formulas", "rows", "cols", "file", "instance"}
    assert snapshot["instance"] == "test"
    assert snapshot["formulas"] == {"A1": "=1+1"}
    assert snapshot["data"][0][0] == "2"
    assert (snapshot["rows"], snapshot["cols"]) == (20, 10)


def test_mutations_persist_and_reload(sheet, registry, tmp_path):
    sheet.ingest(csv="Name,Qty\npen,2\ncup,3")
    sheet.set("C1", "=B1*10")

    assert (tmp_path / "test.csv").read_text() == "Name,Qty,C\npen,2,20\ncup,3,\n"
    assert (tmp_path / "test.formulas.json").exists()

    instance = registry.get("test")
    instance.load()
    assert instance.grid.get_cell(0, 2) == "20"
    assert instance.grid.get_formula(0, 2) == "=B1*10"


def test_instances_are_independent(registry):
    open_sheet("one", registry).set("A1", "x")
    assert open_sheet("two", registry).get("A1")["value"] == ""
    assert open_sheet("one", registry).get("A1")["value"] == "x"


def test_every_mutation_notifies(sheet, changes):
    sheet.set("A1", "1")
    sheet.add({"A": "2"})
    sheet.remove(1)
    assert [instance for instance, _ in changes] == ["test"] * 3
    assert changes[-1][1] == "Removed row 1"


def test_failed_operation_does_not_notify_or_write(sheet, changes, tmp_path):
    with pytest.raises(RowNotFound):
        sheet.remove(99)
    assert changes == []
    assert not (tmp_path / "test.csv").exists()


def test_ingest_requires_exactly_one_source(sheet, tmp_path):
    with pytest.raises(MissingIngestSource):
        sheet.ingest()
    with pytest.raises(MissingIngestSource):
        sheet.ingest(file="a.csv", csv="a,b")
    with pytest.raises(MissingIngestSource):
        sheet.ingest(file=str(tmp_path / "missing.csv"))


def test_ingest_scenario(sheet):
    result = sheet.ingest(csv="Name,Age\nAlice,30\nBob,25")
    assert result["headers"] == ["Name", "Age"]
    assert result["rows"] == 2
    assert result["message"] == "Imported 2 rows x 2 cols"


def test_ingest_from_file(sheet, tmp_path):
    source = tmp_path / "source.csv"
    source.write_text("City,Pop\nOslo,700\n")
    assert sheet.ingest(file=str(source))["data"] == [["Oslo", "700"]]


def test_dump_to_text_and_files(sheet, tmp_path):
    sheet.ingest(csv="Item,Price,Double\npen,1.5,=B1*2")
    dumped = sheet.dump()
    assert dumped["csv"] == "Item,Price,Double\npen,1.5,=B1*2\n"

    csv_path = tmp_path / "out" / "copy.csv"
    sheet.dump(str(csv_path))
    assert csv_path.read_text() == dumped["csv"]

    xlsx_path = tmp_path / "copy.xlsx"
    assert sheet.dump(str(xlsx_path))["file"] == str(xlsx_path)
    assert xlsx_path.exists()


def test_dump_round_trips_through_ingest(sheet, registry):
    sheet.ingest(csv='Name,Note,Len\n"Smith, J","said ""hi""",=LEN(B1)')
    copy = open_sheet("copy", registry)
    copy.ingest(csv=sheet.dump()["csv"])
    assert copy.view()["data"] == sheet.view()["data"]


def test_view_range_and_table(sheet):
    sheet.ingest(csv="Name,Age\nAnn,34\nBob,9")
    full = sheet.view()
    assert full["table"].splitlines()[0] == "| Name | Age |"
    part = sheet.view("B1:C2")
    assert part["headers"] == ["Age", "C"]
    assert part["data"] == [["34", ""], ["9", ""]]


def test_query_schema_sort_fill(sheet):
    sheet.ingest(csv="A,B\nx,10\ny,30\nz,")
    assert sheet.query("B > 25")["matchCount"] == 1
    assert sheet.schema()["schema"][1]["type"] == "number"

    sheet.sort("B", "desc")
    assert [row[0] for row in sheet.view()["data"]] == ["y", "x", "z"]

    result = sheet.fill("A1:A4", "1,2")
    assert [row[0] for row in result["data"]] == ["1", "2", "1", "2"]


def test_update_push_resize_clear_rename(sheet):
    sheet.ingest(csv="Name,Age\nAnn,34")
    sheet.update(1, {"Age": "35"})
    sheet.push([["Bob", "9"], {"Name": "Cid"}])
    assert sheet.view()["data"] == [["Ann", "35"], ["Bob", "9"], ["Cid", ""]]

    resized = sheet.resize(rows=5, cols=3)
    assert (resized["rows"], resized["cols"]) == (5, 3)
    with pytest.raises(InvalidArgument):
        sheet.resize(rows=-1)

    sheet.clear("A1:A2")
    assert [row[0] for row in sheet.view()["data"][:3]] == ["", "", "Cid"]

    renamed = sheet.rename("age", "Years")
    assert renamed["headers"][:2] == ["Name", "Years"]
    with pytest.raises(InvalidArgument):
        sheet.rename("Years", "  ")

    cleared = sheet.clear()
    assert cleared["formulas"] == {}
    assert (cleared["rows"], cleared["cols"]) == (20, 10)


def test_snapshot_data_skips_blank_rows(sheet):
    snapshot = sheet.set("A3", "x")
    assert snapshot["rows"] == 20
    assert snapshot["data"] == [["x"] + [""] * 9]


def test_rename_recalculates_header_references(sheet, registry):
    sheet.ingest(csv="Price,Total\n3,=Price1*2")
    assert sheet.get("B1")["value"] == "6"

    sheet.rename("Price", "Cost")
    assert sheet.get("B1")["value"] == "0"

    instance = registry.get("test")
    instance.load()
    assert instance.grid.get_cell(0, 1) == "0"


def test_files_outside_the_sheet_folder_are_refused(sheet, tmp_path):
    with pytest.raises(InvalidArgument):
        sheet.ingest(file="../secret.csv")
    with pytest.raises(InvalidArgument):
        sheet.ingest(file="/etc/passwd")
    with pytest.raises(InvalidArgument):
        sheet.dump("../evil.csv")
    assert not (tmp_path.parent / "evil.csv").exists()


def test_relative_paths_resolve_inside_the_sheet_folder(sheet, tmp_path):
    sheet.set("A1", "1")
    sheet.dump("exports/copy.csv")
    assert (tmp_path / "exports" / "copy.csv").read_text() == "A,B,C,D,E,F,G,H,I,J\n1,,,,,,,,,\n"
    assert sheet.ingest(file="exports/copy.csv")["data"] == [["1"] + [""] * 9]


def test_unreadable_ingest_sources(sheet, tmp_path):
    (tmp_path / "folder").mkdir()
    (tmp_path / "latin.csv").write_bytes(b"Name\ncaf\xe9\n")
    (tmp_path / "junk.xlsx").write_bytes(b"not a workbook")
    (tmp_path / "broken.xlsx").write_bytes(b"PK\x03\x04 truncated")
    sheet.set("A1", "kept")

    with pytest.raises(MissingIngestSource):
        sheet.ingest(file=str(tmp_path / "folder"))
    for name in ("latin.csv", "junk.xlsx", "broken.xlsx"):
        with pytest.raises(InvalidArgument) as excinfo:
            sheet.ingest(file=name)
        assert excinfo.value.details

    assert sheet.get("A1")["value"] == "kept"

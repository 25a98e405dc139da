import pytest

from sheets.errors import FormulaError
from sheets.formula_engine import FormulaEvaluator, format_number, parse_number, tokenize


@pytest.fixture
def numbers(make_grid):
    """Column A holds 2, 4, blank, 6; column B holds text."""
    return make_grid([
        ["A", "B"],
        ["2", "abc"],
        ["4", ""],
        ["", ""],
        ["6", ""],
    ])


def evaluate(grid, formula):
    return FormulaEvaluator(grid).evaluate(formula)


def test_range_aggregates_skip_blank_cells(numbers):
    assert evaluate(numbers, "=SUM(A1:A4)") == "12"
    assert evaluate(numbers, "=COUNT(A1:A4)") == "3"
    assert evaluate(numbers, "=AVG(A1:A4)") == "4"
    assert evaluate(numbers, "=AVERAGE(A:A)") == "4"
    assert evaluate(numbers, "=MAX(A1:A4)") == "6"
    assert evaluate(numbers, "=MIN(A1:A4)") == "2"


@pytest.mark.parametrize("function", ["SUM", "COUNT", "AVG", "MAX", "MIN"])
def test_aggregates_over_non_numeric_range_are_zero(numbers, function):
    assert evaluate(numbers, f"={function}(B1:B4)") == "0"


def test_nested_calls_compose(numbers):
    assert evaluate(numbers, "=SUM(A1:A2) + MAX(A3:A4)") == "12"
    assert evaluate(numbers, "=ROUND(AVG(A1:A2) / 4, 2)") == "0.75"


@pytest.mark.parametrize("formula,expected", [
    ("=1+2*3", "7"),
    ("=(1+2)*3", "9"),
    ("=2^3^2", "512"),
    ("=-2^2", "-4"),
    ("=10/4", "2.5"),
    ("=0.1+0.2", "0.3"),
    ("=1/3", "0.33333333"),
    ("=7-10", "-3"),
    ("=0.00001234", "0.00001234"),
    ("=1/100000", "0.00001"),
    ("=2^40", "1099511627776"),
])
def test_arithmetic(numbers, formula, expected):
    assert evaluate(numbers, formula) == expected


@pytest.mark.parametrize("formula,expected", [
    ("=1<2", "TRUE"),
    ("=A1>=A2", "FALSE"),
    ('="abc"="ABC"', "TRUE"),
    ("=1 && 0", "FALSE"),
    ("=0 || !0", "TRUE"),
    ("=A1<>2", "FALSE"),
])
def test_comparisons_and_logic(numbers, formula, expected):
    assert evaluate(numbers, formula) == expected


def test_if_only_evaluates_chosen_branch(numbers):
    assert evaluate(numbers, "=IF(A1>1, A2*2, 1/0)") == "8"
    assert evaluate(numbers, '=IF(A1>5, 1/0, "small")') == "small"
    assert evaluate(numbers, "=IF(0, 1)") == "FALSE"


def test_text_functions(numbers):
    assert evaluate(numbers, '="Total: "&A1') == "Total: 2"
    assert evaluate(numbers, "=LEN(B1)") == "3"
    assert evaluate(numbers, '=CONCAT("x", A1, TRUE)') == "x2TRUE"
    assert evaluate(numbers, '="say ""hi"""') == 'say "hi"'


def test_round_and_abs(numbers):
    assert evaluate(numbers, "=ROUND(2.5)") == "3"
    assert evaluate(numbers, "=ROUND(-2.5)") == "-3"
    assert evaluate(numbers, "=ROUND(3.14159, 2)") == "3.14"
    assert evaluate(numbers, "=ABS(0-5)") == "5"


def test_header_references(make_grid):
    grid = make_grid([
        ["Price", "Qty"],
        ["3", "4"],
    ])
    assert evaluate(grid, "=Price1*Qty1") == "12"
    assert evaluate(grid, "=price1+A1") == "6"


@pytest.mark.parametrize("formula", [
    "=1/0",
    "=B1+1",
    "=1+",
    "=FOO(1)",
    "=SUM(1",
    '=__import__("os")',
    "=A1 ; 2",
    "=LEN(1, 2)",
    "=Total_1",
    "=",
])
def test_failures_render_error_sentinel(numbers, formula):
    assert evaluate(numbers, formula) == FormulaError.SENTINEL


def test_error_is_contained_per_cell(make_grid):
    grid = make_grid([
        ["A", "B"],
        ["=1/0", "=2+2"],
        ["=A1+1", "=B1*2"],
    ])
    assert grid.rows() == [["#ERROR", "4"], ["#ERROR", "8"]]


def test_tokenize_splits_ranges_and_operators():
    kinds = [(t.kind, t.value) for t in tokenize('SUM(A1:B2)>=3&"x"')]
    assert kinds == [
        ("ident", "SUM"), ("op", "("), ("ident", "A1"), ("op", ":"), ("ident", "B2"),
        ("op", ")"), ("op", ">="), ("number", "3"), ("op", "&"), ("string", "x"),
    ]


def test_parse_and_format_numbers():
    assert parse_number(" 42 ") == 42.0
    assert parse_number("1e3") == 1000.0
    assert parse_number("abc") is None
    assert parse_number(True) is None
    assert format_number(3.0) == "3"
    assert format_number(2.123456789) == "2.12345679"
    assert format_number(1e-05) == "0.00001"
    assert format_number(-0.000000001) == "0"
    with pytest.raises(FormulaError):
        format_number(float("inf"))

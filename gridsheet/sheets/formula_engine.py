"""
Formula Engine Module

Evaluates spreadsheet formulas against a grid:
- Arithmetic (+ - * / ^), text concatenation (&), comparisons and
  logical operators (&& || !)
- Cell references (A1), ranges (A1:B3, B:B) and header references (Price3)
- SUM, AVG/AVERAGE, MAX, MIN, COUNT, IF, LEN, CONCAT, ABS, ROUND

Formulas are tokenized and parsed by a small recursive-descent parser; no
host-language eval is involved. Any failure renders as ``#ERROR``.
"""

import logging
import math
import re
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from .addressing import CELL_REF_RE, cell_address, column_letter_to_index, parse_range
from .errors import FormulaError, SheetError

logger = logging.getLogger(__name__)

FUNCTIONS = {
    'SUM', 'AVG', 'AVERAGE', 'MAX', 'MIN', 'COUNT',
    'IF', 'LEN', 'CONCAT', 'ABS', 'ROUND',
}

NUMBER_RE = re.compile(r'^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$')
HEADER_REF_RE = re.compile(r'^(.*?)(\d+)$')

TOKEN_RE = re.compile(r'''
    (?P<space>\s+)
  | (?P<number>(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?)
  | (?P<string>"(?:[^"]|"")*")
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op>&&|\|\||<=|>=|!=|<>|==|[-+*/^&=<>!(),:])
''', re.VERBOSE)

COMPARISONS = {'=', '==', '!=', '<>', '<', '>', '<=', '>='}


class Token(NamedTuple):
    kind: str
    value: str


def parse_number(text: Any) -> Optional[float]:
    """Return the numeric value of a cell's text, or None if it isn't a number."""
    if isinstance(text, bool):
        return None
    if isinstance(text, (int, float)):
        return float(text)
    if not isinstance(text, str) or not NUMBER_RE.match(text.strip()):
        return None
    return float(text.strip())


def format_number(value: float) -> str:
    """Render a number the way cells display it (8 decimals, no trailing .0)."""
    if math.isnan(value) or math.isinf(value):
        raise FormulaError("Result is not a finite number")
    text = f'{value:.8f}'.rstrip('0').rstrip('.')
    return '0' if text == '-0' else text


def tokenize(body: str) -> List[Token]:
    """Split formula text into tokens."""
    tokens = []
    pos = 0
    while pos < len(body):
        match = TOKEN_RE.match(body, pos)
        if not match:
            raise FormulaError(f"Unexpected character '{body[pos]}'", f"position {pos}")
        kind = match.lastgroup
        if kind != 'space':
            value = match.group(kind)
            if kind == 'string':
                value = value[1:-1].replace('""', '"')
            tokens.append(Token(kind, value))
        pos = match.end()
    return tokens


class FormulaParser:
    """Builds a nested-tuple syntax tree from formula tokens.

    Precedence, lowest first: ``||``, ``&&``, comparisons, ``&``, ``+ -``,
    ``* /``, unary ``- + !``, ``^``.
    """

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    def _peek(self, offset: int = 0) -> Optional[Token]:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def _peek_op(self, *ops: str) -> Optional[str]:
        token = self._peek()
        if token and token.kind == 'op' and token.value in ops:
            return token.value
        return None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise FormulaError("Unexpected end of formula")
        self.pos += 1
        return token

    def _expect(self, op: str):
        token = self._next()
        if token.kind != 'op' or token.value != op:
            raise FormulaError(f"Expected '{op}', got '{token.value}'")

    def parse(self) -> tuple:
        if not self.tokens:
            raise FormulaError("Empty formula")
        node = self._or()
        if self.pos != len(self.tokens):
            raise FormulaError(f"Unexpected '{self.tokens[self.pos].value}'")
        return node

    def _binary(self, operand: Callable[[], tuple], ops) -> tuple:
        left = operand()
        while True:
            op = self._peek_op(*ops)
            if op is None:
                return left
            self.pos += 1
            left = ('binop', op, left, operand())

    def _or(self):
        return self._binary(self._and, ('||',))

    def _and(self):
        return self._binary(self._comparison, ('&&',))

    def _comparison(self):
        return self._binary(self._concat, COMPARISONS)

    def _concat(self):
        return self._binary(self._additive, ('&',))

    def _additive(self):
        return self._binary(self._term, ('+', '-'))

    def _term(self):
        return self._binary(self._unary, ('*', '/'))

    def _unary(self):
        op = self._peek_op('-', '+', '!')
        if op:
            self.pos += 1
            return ('unary', op, self._unary())
        return self._power()

    def _power(self):
        base = self._primary()
        if self._peek_op('^'):
            self.pos += 1
            return ('binop', '^', base, self._unary())
        return base

    def _primary(self):
        token = self._next()

        if token.kind == 'number':
            return ('num', float(token.value))
        if token.kind == 'string':
            return ('str', token.value)
        if token.kind == 'op' and token.value == '(':
            node = self._or()
            self._expect(')')
            return node
        if token.kind != 'ident':
            raise FormulaError(f"Unexpected '{token.value}'")

        name = token.value
        if self._peek_op('('):
            self.pos += 1
            return ('call', name.upper(), self._arguments())
        if self._peek_op(':'):
            self.pos += 1
            end = self._next()
            if end.kind not in ('ident', 'number'):
                raise FormulaError(f"Invalid range end '{end.value}'")
            return ('range', parse_range(f"{name}:{end.value}"))
        if name.upper() in ('TRUE', 'FALSE'):
            return ('bool', name.upper() == 'TRUE')
        return ('ref', name)

    def _arguments(self) -> List[tuple]:
        args = []
        if self._peek_op(')'):
            self.pos += 1
            return args
        while True:
            args.append(self._or())
            if self._peek_op(','):
                self.pos += 1
                continue
            self._expect(')')
            return args


class FormulaEvaluator:
    """Evaluates formula bodies against a grid's value plane."""

    def __init__(self, grid):
        self.grid = grid
        self.functions: Dict[str, Callable[[List[Any]], Any]] = {
            'SUM': lambda args: sum(self._numbers(args), 0.0),
            'AVG': self._average,
            'AVERAGE': self._average,
            'MAX': lambda args: max(self._numbers(args), default=0.0),
            'MIN': lambda args: min(self._numbers(args), default=0.0),
            'COUNT': lambda args: float(len(self._numbers(args))),
            'LEN': self._len,
            'ABS': self._abs,
            'ROUND': self._round,
            'CONCAT': self._concat,
        }

    def evaluate(self, formula: str, row: Optional[int] = None, col: Optional[int] = None) -> str:
        """Evaluate a formula body (with or without the leading '=') to cell text."""
        body = formula[1:] if formula.startswith('=') else formula
        try:
            node = FormulaParser(tokenize(body)).parse()
            return self._render(self._eval(node))
        except SheetError as e:
            where = cell_address(row, col) if row is not None and col is not None else '?'
            logger.debug("Formula error at %s (%s): %s", where, formula, e.message)
            return FormulaError.SENTINEL
        except Exception as e:
            where = cell_address(row, col) if row is not None and col is not None else '?'
            logger.debug("Formula failed at %s (%s): %r", where, formula, e)
            return FormulaError.SENTINEL

    # --- Tree evaluation ---

    def _eval(self, node: tuple) -> Any:
        kind = node[0]
        if kind in ('num', 'str', 'bool'):
            return node[1]
        if kind == 'ref':
            return self._reference(node[1])
        if kind == 'range':
            return self._range_values(node[1])
        if kind == 'unary':
            return self._unary(node[1], self._eval(node[2]))
        if kind == 'binop':
            op = node[1]
            if op == '&&':
                return self._truthy(self._eval(node[2])) and self._truthy(self._eval(node[3]))
            if op == '||':
                return self._truthy(self._eval(node[2])) or self._truthy(self._eval(node[3]))
            return self._binop(op, self._eval(node[2]), self._eval(node[3]))
        if kind == 'call':
            return self._call(node[1], node[2])
        raise FormulaError(f"Unknown node '{kind}'")

    def _reference(self, name: str) -> Any:
        row_col = self._resolve_reference(name)
        if row_col is None:
            raise FormulaError(f"Unknown name '{name}'")
        text = self.grid.get_cell(*row_col)
        if text == '':
            return 0.0
        number = parse_number(text)
        return text if number is None else number

    def _resolve_reference(self, name: str) -> Optional[Tuple[int, int]]:
        """Column letters + row first, then header name + row."""
        match = HEADER_REF_RE.match(name)
        if not match or not match.group(1):
            return None
        prefix, digits = match.groups()
        row = int(digits) - 1
        if row < 0:
            return None

        is_address = bool(CELL_REF_RE.match(name))
        if is_address:
            col = column_letter_to_index(prefix)
            if col < self.grid.col_count:
                return row, col

        headers = self.grid.headers
        if prefix in headers:
            return row, headers.index(prefix)
        lowered = prefix.lower()
        for idx, header in enumerate(headers):
            if header.lower() == lowered:
                return row, idx

        if is_address:
            return row, column_letter_to_index(prefix)
        return None

    def _range_values(self, cell_range) -> List[float]:
        rng = cell_range.bounded(self.grid.row_count)
        values = []
        for row in range(rng.start_row, rng.end_row + 1):
            for col in range(rng.start_col, rng.end_col + 1):
                number = parse_number(self.grid.get_cell(row, col))
                if number is not None:
                    values.append(number)
        return values

    def _call(self, name: str, arg_nodes: List[tuple]) -> Any:
        if name not in FUNCTIONS:
            raise FormulaError(f"Unknown function '{name}'")
        if name == 'IF':
            if len(arg_nodes) not in (2, 3):
                raise FormulaError("IF takes 2 or 3 arguments")
            if self._truthy(self._eval(arg_nodes[0])):
                return self._eval(arg_nodes[1])
            return self._eval(arg_nodes[2]) if len(arg_nodes) == 3 else False
        return self.functions[name]([self._eval(arg) for arg in arg_nodes])

    # --- Functions ---

    @staticmethod
    def _numbers(args: List[Any]) -> List[float]:
        numbers = []
        for arg in args:
            items = arg if isinstance(arg, list) else [arg]
            for item in items:
                if isinstance(item, bool):
                    numbers.append(1.0 if item else 0.0)
                    continue
                number = parse_number(item)
                if number is not None:
                    numbers.append(number)
        return numbers

    def _average(self, args):
        numbers = self._numbers(args)
        return sum(numbers) / len(numbers) if numbers else 0.0

    def _len(self, args):
        self._arity('LEN', args, 1)
        return float(len(self._text(args[0])))

    def _abs(self, args):
        self._arity('ABS', args, 1)
        return abs(self._number(args[0]))

    def _round(self, args):
        self._arity('ROUND', args, 1, 2)
        value = self._number(args[0])
        digits = int(self._number(args[1])) if len(args) == 2 else 0
        scale = 10.0 ** digits
        return math.copysign(math.floor(abs(value) * scale + 0.5) / scale, value)

    def _concat(self, args):
        parts = []
        for arg in args:
            items = arg if isinstance(arg, list) else [arg]
            parts.extend(self._text(item) for item in items)
        return ''.join(parts)

    @staticmethod
    def _arity(name: str, args: List[Any], *allowed: int):
        if len(args) not in allowed:
            raise FormulaError(f"{name} called with {len(args)} arguments")

    # --- Operators ---

    def _unary(self, op: str, value: Any) -> Any:
        if op == '!':
            return not self._truthy(value)
        number = self._number(value)
        return -number if op == '-' else number

    def _binop(self, op: str, left: Any, right: Any) -> Any:
        if op in COMPARISONS:
            return self._compare(op, left, right)
        if op == '&':
            return self._text(left) + self._text(right)

        a, b = self._number(left), self._number(right)
        if op == '+':
            return a + b
        if op == '-':
            return a - b
        if op == '*':
            return a * b
        if op == '/':
            if b == 0:
                raise FormulaError("Division by zero")
            return a / b
        if op == '^':
            return float(a ** b)
        raise FormulaError(f"Unknown operator '{op}'")

    def _compare(self, op: str, left: Any, right: Any) -> bool:
        a, b = self._comparable(left), self._comparable(right)
        if type(a) is not type(b):
            a, b = self._text(left).lower(), self._text(right).lower()
        if op in ('=', '=='):
            return a == b
        if op in ('!=', '<>'):
            return a != b
        if op == '<':
            return a < b
        if op == '>':
            return a > b
        if op == '<=':
            return a <= b
        return a >= b

    def _comparable(self, value: Any) -> Any:
        if isinstance(value, list):
            raise FormulaError("Range used as a single value")
        if isinstance(value, bool):
            return 1.0 if value else 0.0
        if isinstance(value, float):
            return value
        number = parse_number(value)
        return number if number is not None else value.lower()

    # --- Coercion ---

    def _number(self, value: Any) -> float:
        if isinstance(value, list):
            raise FormulaError("Range used as a single value")
        if isinstance(value, bool):
            return 1.0 if value else 0.0
        if isinstance(value, float):
            return value
        if value == '':
            return 0.0
        number = parse_number(value)
        if number is None:
            raise FormulaError(f"'{value}' is not a number")
        return number

    def _text(self, value: Any) -> str:
        if isinstance(value, list):
            raise FormulaError("Range used as a single value")
        if isinstance(value, bool):
            return 'TRUE' if value else 'FALSE'
        if isinstance(value, float):
            return format_number(value)
        return value

    def _truthy(self, value: Any) -> bool:
        if isinstance(value, list):
            raise FormulaError("Range used as a condition")
        if isinstance(value, bool):
            return value
        if isinstance(value, float):
            return value != 0
        if value.upper() in ('', 'FALSE'):
            return False
        if value.upper() == 'TRUE':
            return True
        number = parse_number(value)
        if number is None:
            raise FormulaError(f"'{value}' is not a condition")
        return number != 0

    def _render(self, value: Any) -> str:
        return self._text(value)

"""
Spreadsheet errors.

Structural errors (bad addresses, missing rows, unknown columns) abort the
operation before anything is written. Formula errors never leave the
evaluator: the offending cell shows the ``#ERROR`` sentinel instead.
"""

from typing import Any, Dict, Optional


class SheetError(Exception):
    """Base class for spreadsheet errors."""

    error_type = 'ERROR'

    ERROR_CODES = {
        'REF': '#REF!',
        'RANGE': '#REF!',
        'ROW': '#ROW!',
        'COLUMN': '#NAME?',
        'INGEST': '#SOURCE!',
        'VALUE': '#VALUE!',
        'FORMULA': '#ERROR',
    }

    def __init__(self, message: str, details: Optional[str] = None):
        self.error_code = self.ERROR_CODES.get(self.error_type, '#ERROR!')
        self.message = message
        self.details = details
        super().__init__(f"{self.error_code} {message}")

    def as_dict(self) -> Dict[str, Any]:
        return {
            'type': self.error_type,
            'error_code': self.error_code,
            'message': self.message,
            'details': self.details,
        }


class InvalidReference(SheetError):
    """Malformed cell reference or column letters."""
    error_type = 'REF'


class InvalidRange(SheetError):
    """Malformed range string."""
    error_type = 'RANGE'


class RowNotFound(SheetError):
    """Row number outside the grid."""
    error_type = 'ROW'


class UnknownColumn(SheetError):
    """Column name or letter outside the grid."""
    error_type = 'COLUMN'


class MissingIngestSource(SheetError):
    """Import called without exactly one of file path / CSV text."""
    error_type = 'INGEST'


class InvalidArgument(SheetError):
    error_type = 'VALUE'


class FormulaError(SheetError):
    """Raised inside the formula evaluator; rendered as ``#ERROR``."""
    error_type = 'FORMULA'

    SENTINEL = '#ERROR'

"""
Custom exceptions for the record data generator.

These exceptions are raised inside the formula engine and the picklist
decoder. Public generation and validation entry points catch them and turn
them into conservative results plus diagnostics.
"""

from typing import Any


class RecordDataGenException(Exception):
    """Base exception for all record data generator errors."""

    pass


class FormulaError(RecordDataGenException):
    """Base exception for formula parsing and evaluation failures."""

    def __init__(self, message: str, formula: str | None = None):
        self.formula = formula

        if formula:
            message = f"{message} (Formula: {formula})"

        super().__init__(message)


class FormulaSyntaxError(FormulaError):
    """Exception raised when a formula cannot be tokenized or parsed."""

    def __init__(
        self,
        message: str,
        formula: str | None = None,
        position: int | None = None,
    ):
        self.position = position

        if position is not None:
            message = f"{message} at position {position}"

        super().__init__(message, formula)


class FormulaUnsupportedError(FormulaError):
    """Exception raised when a formula calls functions outside the supported set."""

    def __init__(self, functions: list[str], formula: str | None = None):
        self.functions = functions

        message = f"Unsupported formula functions: {', '.join(functions)}"

        super().__init__(message, formula)


class FormulaEvaluationError(FormulaError):
    """Exception raised when evaluation fails at runtime (type mismatch, bad arguments)."""

    def __init__(
        self,
        message: str,
        formula: str | None = None,
        operands: list[Any] | None = None,
    ):
        self.operands = operands or []

        if operands:
            operand_str = ", ".join(repr(o) for o in operands)
            message = f"{message} (Operands: {operand_str})"

        super().__init__(message, formula)


class BitmapDecodeError(RecordDataGenException):
    """Exception raised when a picklist validity bitmap cannot be decoded."""

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        payload: str | None = None,
        original_error: Exception | None = None,
    ):
        self.field_name = field_name
        self.payload = payload
        self.original_error = original_error

        if field_name:
            message = f"Error decoding validity bitmap for '{field_name}': {message}"

        if payload is not None:
            message = f"{message} (Payload: {payload!r})"

        if original_error:
            message = f"{message} (Original error: {original_error})"

        super().__init__(message)

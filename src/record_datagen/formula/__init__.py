"""
Formula engine for declarative validation rules.

Tokenizer, parser, syntax tree, function library and evaluator.
"""

from .evaluator import FormulaEvaluator, coerce_value
from .functions import is_truthy, supported_function_names
from .nodes import BinaryOp, Call, FieldRef, Literal, Node, UnaryOp, field_references
from .parser import parse_formula
from .tokenizer import Token, TokenType, tokenize

__all__ = [
    "BinaryOp",
    "Call",
    "FieldRef",
    "FormulaEvaluator",
    "Literal",
    "Node",
    "Token",
    "TokenType",
    "UnaryOp",
    "coerce_value",
    "field_references",
    "is_truthy",
    "parse_formula",
    "supported_function_names",
    "tokenize",
]

"""
Tokenizer for the declarative validation formula language.

Produces a flat token list from formula text. Whitespace, line breaks and
/* block comments */ are skipped; string literals keep their decoded content
so later stages never need to re-scan quoted text.
"""

from dataclasses import dataclass
from enum import Enum

from ..shared.exceptions import FormulaSyntaxError


class TokenType(str, Enum):
    """Lexical category of a token."""

    NUMBER = "number"
    STRING = "string"
    IDENT = "ident"
    OPERATOR = "operator"
    LPAREN = "lparen"
    RPAREN = "rparen"
    COMMA = "comma"
    EOF = "eof"


@dataclass(frozen=True)
class Token:
    """One lexical token with its source offset."""

    type: TokenType
    text: str
    position: int
    value: object = None


# Longest operators first so "<=" wins over "<"
OPERATORS = ("<>", "<=", ">=", "==", "!=", "&&", "||", "=", "<", ">", "+", "-", "*", "/", "^", "&", "!")

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'"}


def tokenize(formula: str) -> list[Token]:
    """
    Split formula text into tokens.

    Args:
        formula: Formula source text

    Returns:
        Token list terminated by an EOF token

    Raises:
        FormulaSyntaxError: On unterminated strings or comments and on
            characters outside the language
    """
    tokens: list[Token] = []
    i = 0
    length = len(formula)

    while i < length:
        char = formula[i]

        if char.isspace():
            i += 1
            continue

        if formula.startswith("/*", i):
            end = formula.find("*/", i + 2)
            if end == -1:
                raise FormulaSyntaxError("Unterminated comment", formula, i)
            i = end + 2
            continue

        if char in "\"'":
            text, i_next = _read_string(formula, i)
            tokens.append(Token(TokenType.STRING, formula[i:i_next], i, text))
            i = i_next
            continue

        if char.isdigit() or (char == "." and i + 1 < length and formula[i + 1].isdigit()):
            start = i
            while i < length and formula[i].isdigit():
                i += 1
            if i < length and formula[i] == "." and i + 1 < length and formula[i + 1].isdigit():
                i += 1
                while i < length and formula[i].isdigit():
                    i += 1
            tokens.append(Token(TokenType.NUMBER, formula[start:i], start))
            continue

        if char.isalpha() or char in "_$":
            start = i
            i += 1
            while i < length and (formula[i].isalnum() or formula[i] in "_."):
                i += 1
            text = formula[start:i].rstrip(".")
            i = start + len(text)
            tokens.append(Token(TokenType.IDENT, text, start))
            continue

        if char == "(":
            tokens.append(Token(TokenType.LPAREN, char, i))
            i += 1
            continue

        if char == ")":
            tokens.append(Token(TokenType.RPAREN, char, i))
            i += 1
            continue

        if char == ",":
            tokens.append(Token(TokenType.COMMA, char, i))
            i += 1
            continue

        for op in OPERATORS:
            if formula.startswith(op, i):
                tokens.append(Token(TokenType.OPERATOR, op, i))
                i += len(op)
                break
        else:
            raise FormulaSyntaxError(f"Unexpected character {char!r}", formula, i)

    tokens.append(Token(TokenType.EOF, "", length))
    return tokens


def _read_string(formula: str, start: int) -> tuple[str, int]:
    """Read a quoted literal starting at `start`; returns (content, next index)."""
    quote = formula[start]
    chars: list[str] = []
    i = start + 1

    while i < len(formula):
        char = formula[i]
        if char == "\\" and i + 1 < len(formula):
            chars.append(_ESCAPES.get(formula[i + 1], formula[i + 1]))
            i += 2
            continue
        if char == quote:
            return "".join(chars), i + 1
        chars.append(char)
        i += 1

    raise FormulaSyntaxError("Unterminated string literal", formula, start)


def called_functions(tokens: list[Token]) -> list[str]:
    """Upper-cased names of identifiers immediately followed by '('."""
    names = []
    for current, following in zip(tokens, tokens[1:]):
        if current.type is TokenType.IDENT and following.type is TokenType.LPAREN:
            names.append(current.text.upper())
    return names

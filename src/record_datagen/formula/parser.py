"""
Precedence-climbing parser for validation formulas.

Grammar, lowest binding first:

    ||
    &&
    =  ==  <>  !=
    <  <=  >  >=
    +  -  &
    *  /
    ^            (right associative)
    -x  !x       (prefix)
    literal | field | NAME(args) | ( expr )
"""

from decimal import Decimal, InvalidOperation

from ..shared.exceptions import FormulaSyntaxError
from .nodes import BinaryOp, Call, FieldRef, Literal, Node, UnaryOp
from .tokenizer import Token, TokenType, tokenize

BINARY_PRECEDENCE = {
    "||": 1,
    "&&": 2,
    "=": 3,
    "==": 3,
    "<>": 3,
    "!=": 3,
    "<": 4,
    "<=": 4,
    ">": 4,
    ">=": 4,
    "+": 5,
    "-": 5,
    "&": 5,
    "*": 6,
    "/": 6,
    "^": 7,
}

RIGHT_ASSOCIATIVE = {"^"}

PREFIX_PRECEDENCE = 8

# Parenthesized, prefix and right-associative nesting all recurse; deeper
# formulas are rejected as syntax errors before the interpreter stack runs out.
MAX_NESTING_DEPTH = 100

KEYWORD_LITERALS = {"TRUE": True, "FALSE": False, "NULL": None}


class Parser:
    """Turns a token list into a syntax tree."""

    def __init__(self, formula: str, tokens: list[Token] | None = None):
        self.formula = formula
        self.tokens = tokens if tokens is not None else tokenize(formula)
        self.index = 0
        self.depth = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def advance(self) -> Token:
        token = self.tokens[self.index]
        if token.type is not TokenType.EOF:
            self.index += 1
        return token

    def expect(self, token_type: TokenType, description: str) -> Token:
        token = self.current
        if token.type is not token_type:
            raise self.error(f"Expected {description}, found {token.text or 'end of formula'!r}", token)
        return self.advance()

    def error(self, message: str, token: Token | None = None) -> FormulaSyntaxError:
        token = token or self.current
        return FormulaSyntaxError(message, self.formula, token.position)

    def parse(self) -> Node:
        """Parse the whole formula; trailing tokens are an error."""
        if self.current.type is TokenType.EOF:
            raise self.error("Empty formula")

        node = self.parse_expression(0)

        if self.current.type is not TokenType.EOF:
            raise self.error(f"Unexpected token {self.current.text!r}")
        return node

    def parse_expression(self, min_precedence: int) -> Node:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise self.error(f"Formula nested deeper than {MAX_NESTING_DEPTH} levels")
        try:
            return self._parse_operators(min_precedence)
        finally:
            self.depth -= 1

    def _parse_operators(self, min_precedence: int) -> Node:
        left = self.parse_prefix()

        while True:
            token = self.current
            if token.type is not TokenType.OPERATOR:
                break
            precedence = BINARY_PRECEDENCE.get(token.text)
            if precedence is None or precedence <= min_precedence:
                break

            self.advance()
            next_min = precedence - 1 if token.text in RIGHT_ASSOCIATIVE else precedence
            right = self.parse_expression(next_min)
            left = BinaryOp(token.position, token.text, left, right)

        return left

    def parse_prefix(self) -> Node:
        token = self.advance()

        if token.type is TokenType.OPERATOR and token.text in ("-", "!", "+"):
            operand = self.parse_expression(PREFIX_PRECEDENCE)
            if token.text == "+":
                return operand
            return UnaryOp(token.position, token.text, operand)

        if token.type is TokenType.NUMBER:
            try:
                return Literal(token.position, Decimal(token.text))
            except InvalidOperation:
                raise self.error(f"Invalid number {token.text!r}", token) from None

        if token.type is TokenType.STRING:
            return Literal(token.position, token.value)

        if token.type is TokenType.LPAREN:
            node = self.parse_expression(0)
            self.expect(TokenType.RPAREN, "')'")
            return node

        if token.type is TokenType.IDENT:
            if self.current.type is TokenType.LPAREN:
                return self.parse_call(token)
            keyword = token.text.upper()
            if keyword in KEYWORD_LITERALS:
                return Literal(token.position, KEYWORD_LITERALS[keyword])
            return FieldRef(token.position, token.text)

        if token.type is TokenType.EOF:
            raise self.error("Unexpected end of formula", token)
        raise self.error(f"Unexpected token {token.text!r}", token)

    def parse_call(self, name_token: Token) -> Call:
        self.expect(TokenType.LPAREN, "'('")
        args: list[Node] = []

        if self.current.type is not TokenType.RPAREN:
            while True:
                args.append(self.parse_expression(0))
                if self.current.type is TokenType.COMMA:
                    self.advance()
                    continue
                break

        self.expect(TokenType.RPAREN, "')'")
        return Call(name_token.position, name_token.text.upper(), tuple(args))


def parse_formula(formula: str) -> Node:
    """
    Parse formula text into a syntax tree.

    Raises:
        FormulaSyntaxError: When the text is not a well-formed formula
    """
    return Parser(formula).parse()

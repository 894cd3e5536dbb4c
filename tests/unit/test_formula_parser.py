"""Unit tests for the formula tokenizer and parser."""

from decimal import Decimal

import pytest

from record_datagen.formula.nodes import BinaryOp, Call, FieldRef, Literal, UnaryOp, field_references
from record_datagen.formula.parser import MAX_NESTING_DEPTH, parse_formula
from record_datagen.formula.tokenizer import TokenType, called_functions, tokenize
from record_datagen.shared.exceptions import FormulaSyntaxError


class TestTokenizer:
    """Test lexical analysis of formulas."""

    def test_basic_token_types(self):
        tokens = tokenize('IF(Amount >= 10.5, "big", \'small\')')
        types = [t.type for t in tokens]

        assert types == [
            TokenType.IDENT,
            TokenType.LPAREN,
            TokenType.IDENT,
            TokenType.OPERATOR,
            TokenType.NUMBER,
            TokenType.COMMA,
            TokenType.STRING,
            TokenType.COMMA,
            TokenType.STRING,
            TokenType.RPAREN,
            TokenType.EOF,
        ]
        assert tokens[3].text == ">="
        assert tokens[4].text == "10.5"
        assert tokens[6].value == "big"
        assert tokens[8].value == "small"

    def test_longest_operator_wins(self):
        ops = [t.text for t in tokenize("a <> b && c <= d || e != f") if t.type is TokenType.OPERATOR]
        assert ops == ["<>", "&&", "<=", "||", "!="]

    def test_string_escapes(self):
        tokens = tokenize(r'"say \"hi\"\n"')
        assert tokens[0].value == 'say "hi"\n'

    def test_comments_and_newlines_skipped(self):
        tokens = tokenize("/* check */\nISBLANK(\n  Name\n)")
        assert [t.text for t in tokens[:-1]] == ["ISBLANK", "(", "Name", ")"]

    def test_dotted_and_global_identifiers(self):
        tokens = tokenize("Account.Owner.Name = $User.Id")
        idents = [t.text for t in tokens if t.type is TokenType.IDENT]
        assert idents == ["Account.Owner.Name", "$User.Id"]

    def test_unterminated_string_raises(self):
        with pytest.raises(FormulaSyntaxError) as exc_info:
            tokenize('Name = "open')
        assert exc_info.value.position == 7

    def test_unterminated_comment_raises(self):
        with pytest.raises(FormulaSyntaxError):
            tokenize("/* never closed")

    def test_unexpected_character_raises(self):
        with pytest.raises(FormulaSyntaxError):
            tokenize("Amount # 3")

    def test_called_functions(self):
        names = called_functions(tokenize("isblank(Name) && VLOOKUP(a, b, c) || Name"))
        assert names == ["ISBLANK", "VLOOKUP"]


class TestParser:
    """Test syntax tree construction."""

    def test_precedence_multiplication_over_addition(self):
        node = parse_formula("1 + 2 * 3")

        assert isinstance(node, BinaryOp)
        assert node.operator == "+"
        assert isinstance(node.right, BinaryOp)
        assert node.right.operator == "*"

    def test_logical_precedence(self):
        node = parse_formula("a = 1 || b = 2 && c = 3")

        assert node.operator == "||"
        assert node.right.operator == "&&"

    def test_power_is_right_associative(self):
        node = parse_formula("2 ^ 3 ^ 2")

        assert node.operator == "^"
        assert isinstance(node.left, Literal)
        assert node.right.operator == "^"

    def test_subtraction_is_left_associative(self):
        node = parse_formula("10 - 4 - 3")

        assert node.operator == "-"
        assert node.left.operator == "-"
        assert node.right.value == Decimal(3)

    def test_prefix_operators(self):
        node = parse_formula("!ISBLANK(Name)")

        assert isinstance(node, UnaryOp)
        assert node.operator == "!"
        assert isinstance(node.operand, Call)

        negative = parse_formula("-Amount")
        assert isinstance(negative, UnaryOp)
        assert isinstance(negative.operand, FieldRef)

    def test_keyword_literals_any_case(self):
        assert parse_formula("TRUE").value is True
        assert parse_formula("false").value is False
        assert parse_formula("Null").value is None

    def test_call_names_are_upper_cased(self):
        node = parse_formula("isBlank(Name)")

        assert isinstance(node, Call)
        assert node.name == "ISBLANK"
        assert node.args == (FieldRef(node.args[0].position, "Name"),)

    def test_zero_argument_call(self):
        node = parse_formula("TODAY()")
        assert isinstance(node, Call)
        assert node.args == ()

    def test_field_references_distinct_in_order(self):
        node = parse_formula('IF(Type = "Customer", ISBLANK(Industry), Type = Industry)')
        assert field_references(node) == ["Type", "Industry"]

    @pytest.mark.parametrize(
        "formula",
        ["", "   ", "ISBLANK(Name", "1 +", "a b", "(1 + 2", "ISBLANK(Name,)"],
    )
    def test_malformed_formulas_raise(self, formula):
        with pytest.raises(FormulaSyntaxError):
            parse_formula(formula)

    def test_nesting_limit(self):
        depth = MAX_NESTING_DEPTH - 1
        assert parse_formula("(" * depth + "1" + ")" * depth) == Literal(depth, Decimal(1))

        with pytest.raises(FormulaSyntaxError, match="nested deeper"):
            parse_formula("(" * 3000 + "1" + ")" * 3000 + " > 0")
        with pytest.raises(FormulaSyntaxError):
            parse_formula("-" * 3000 + "1")
        with pytest.raises(FormulaSyntaxError):
            parse_formula("^".join(["2"] * 3000))

    def test_long_flat_chain_is_not_nesting(self):
        node = parse_formula(" && ".join(["Flag"] * 500))
        assert field_references(node) == ["Flag"]

# tests/test_ast.py
"""
Tests for the tokenizer and parser.
"""

import pytest

from quill import ast, errors
from quill.ast import ASTNodeType, TokenType


def _tokens(source):
    sink = []
    tokens = ast.Tokenizer(source).get_all_tokens(sink)
    return tokens, sink


def _parse_errors(source):
    with pytest.raises(errors.CompileError) as excinfo:
        ast.parse_script(source)
    return excinfo.value.errors


class TestTokenizer:

    def test_positions(self):
        tokens, sink = _tokens('var x = 10.5; // c\nprint "hi";')

        assert not sink
        assert [tok.type for tok in tokens] == [
            TokenType.VAR,
            TokenType.IDENTIFIER,
            TokenType.EQUAL,
            TokenType.NUMBER,
            TokenType.SEMICOLON,
            TokenType.PRINT,
            TokenType.STRING,
            TokenType.SEMICOLON,
            TokenType.EOF,
        ]
        assert [tok.start for tok in tokens] == [0, 4, 6, 8, 12, 19, 25, 29, 30]
        assert [tok.line for tok in tokens] == [1, 1, 1, 1, 1, 2, 2, 2, 2]
        assert tokens[3].value == "10.5"
        assert tokens[6].value == '"hi"'
        assert tokens[6].length == 4

    def test_two_char_operators(self):
        tokens, _ = _tokens("! != = == < <= > >=")
        assert [tok.type for tok in tokens[:-1]] == [
            TokenType.BANG,
            TokenType.BANG_EQUAL,
            TokenType.EQUAL,
            TokenType.EQUAL_EQUAL,
            TokenType.LESS,
            TokenType.LESS_EQUAL,
            TokenType.GREATER,
            TokenType.GREATER_EQUAL,
        ]

    def test_keywords_and_identifiers(self):
        tokens, _ = _tokens("while whilex _x nil")
        assert [tok.type for tok in tokens[:-1]] == [
            TokenType.WHILE,
            TokenType.IDENTIFIER,
            TokenType.IDENTIFIER,
            TokenType.NIL,
        ]

    def test_number_without_fraction(self):
        tokens, sink = _tokens("12.")
        assert tokens[0].value == "12"
        assert len(sink) == 1

    def test_multiline_string_keeps_start_line(self):
        tokens, _ = _tokens('"a\nb" x')
        assert tokens[0].line == 1
        assert tokens[1].line == 2

    def test_unexpected_character_is_recorded(self):
        tokens, sink = _tokens("a @ b")

        assert [tok.value for tok in tokens[:-1]] == ["a", "b"]
        assert len(sink) == 1
        assert sink[0].start == 2
        assert sink[0].length == 1
        assert "Unexpected character" in sink[0].message

    def test_unterminated_string(self):
        _, sink = _tokens('print "abc')
        assert len(sink) == 1
        assert sink[0].message == "Unterminated string."
        assert sink[0].start == 6

    def test_crlf(self):
        tokens, sink = _tokens("a;\r\nb;")
        assert not sink
        assert tokens[2].value == "b"
        assert tokens[2].line == 2
        assert tokens[2].start == 4


class TestParser:

    def test_precedence(self):
        tree = ast.parse_script("1 + 2 * 3;")
        expr = tree.root.children[0].children[0]

        assert expr.type == ASTNodeType.BINARY
        assert expr.tok.type == TokenType.PLUS
        assert expr.children[1].type == ASTNodeType.BINARY
        assert expr.children[1].tok.type == TokenType.STAR

    def test_call(self):
        tree = ast.parse_script("add(1, 2);")
        call = tree.root.children[0].children[0]

        assert call.type == ASTNodeType.CALL
        assert call.children[0].type == ASTNodeType.VARIABLE
        assert len(call.children) == 3

    def test_assignment_is_right_associative(self):
        tree = ast.parse_script("a = b = 1;")
        assign = tree.root.children[0].children[0]

        assert assign.type == ASTNodeType.ASSIGN
        assert assign.tok.value == "a"
        assert assign.children[0].type == ASTNodeType.ASSIGN

    def test_for_is_desugared(self):
        tree = ast.parse_script("for (var i = 0; i < 3; i = i + 1) print i;")
        block = tree.root.children[0]

        assert block.type == ASTNodeType.BLOCK
        assert block.children[0].type == ASTNodeType.VAR_DECL
        assert block.children[1].type == ASTNodeType.WHILE

    def test_prettify(self):
        tree = ast.parse_script("print 1;")
        assert '"_type": "PRINT"' in tree.prettify()


class TestParseErrors:

    def test_reports_every_error(self):
        found = _parse_errors("print ;\nvar 1 = 2;\nprint 3")

        assert [e.line for e in found] == [1, 2, 3]
        assert found[0].message == "Expect expression."
        assert found[1].message == "Expect variable name."
        assert found[2].message == "Expect ';' after value."

    def test_error_span(self):
        found = _parse_errors("var a = 1;\nprint ;")

        assert len(found) == 1
        assert found[0].line == 2
        assert found[0].start == 17
        assert found[0].length == 1

    def test_tokenize_and_parse_errors_are_merged(self):
        found = _parse_errors("var a = @;")

        assert [e.start for e in found] == [8, 9]
        assert isinstance(found[0], errors.TokenizeError)

    def test_invalid_assignment_target(self):
        found = _parse_errors("a + b = c;")

        assert len(found) == 1
        assert found[0].message == "Invalid assignment target."

    def test_unclosed_block(self):
        found = _parse_errors("{ print 1;")
        assert found[0].message == "Expect '}' after block."
        assert isinstance(found[0], errors.ParseEofError)

    def test_recovers_inside_block(self):
        found = _parse_errors("{ print ; print 2; }\nprint ;")
        assert [e.line for e in found] == [1, 2]

    def test_error_str_points_at_column(self):
        found = _parse_errors("var a = 1;\nprint ;")
        text = str(found[0])

        assert "line 2: Expect expression." in text
        assert "2 print ;" in text

    def test_deep_nesting_is_reported(self):
        found = _parse_errors("print " + "(" * 100 + "1" + ")" * 100 + ";")

        assert len(found) == 1
        assert found[0].message == "Nesting too deep."
        assert found[0].line == 1

    def test_deep_unary_chain_is_reported(self):
        found = _parse_errors("print " + "-" * 200 + "1;")
        assert [e.message for e in found] == ["Nesting too deep."]

    def test_deep_blocks_are_reported(self):
        found = _parse_errors("{" * 100 + "}" * 100)
        assert "Nesting too deep." in [e.message for e in found]

    def test_nesting_below_limit_parses(self):
        depth = ast.MAX_NESTING - 10
        tree = ast.parse_script("print " + "(" * depth + "1" + ")" * depth + ";")

        assert tree.root.children[0].type == ASTNodeType.PRINT

    def test_long_operator_chain_is_not_nesting(self):
        tree = ast.parse_script("print " + " + ".join(["1"] * 1000) + ";")
        assert tree.root.children[0].children[0].type == ASTNodeType.BINARY

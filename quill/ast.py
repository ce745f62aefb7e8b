import contextlib
import dataclasses
import enum
import json
import logging
import typing as t

from . import errors

__all__ = (
    "AST",
    "ASTNode",
    "ASTNodeType",
    "ASTStateError",
    "ParseContext",
    "Token",
    "Tokenizer",
    "TokenType",
    "KEYWORDS",
    "MAX_ARGS",
    "MAX_NESTING",
    "is_identifier",
    "parse_script"
)

logger = logging.getLogger(__name__)

MAX_ARGS = 255
# Each level costs about a dozen Python frames in the parser.
MAX_NESTING = 64
DIGITS = "0123456789"


class TokenType(enum.Enum):
    LEFT_PAREN = 1
    RIGHT_PAREN = 2
    LEFT_BRACE = 3
    RIGHT_BRACE = 4
    COMMA = 5
    SEMICOLON = 6
    MINUS = 7
    PLUS = 8
    SLASH = 9
    STAR = 10
    BANG = 11
    BANG_EQUAL = 12
    EQUAL = 13
    EQUAL_EQUAL = 14
    GREATER = 15
    GREATER_EQUAL = 16
    LESS = 17
    LESS_EQUAL = 18
    IDENTIFIER = 19
    STRING = 20
    NUMBER = 21
    AND = 22
    ELSE = 23
    FALSE = 24
    FOR = 25
    IF = 26
    NIL = 27
    OR = 28
    PRINT = 29
    TRUE = 30
    VAR = 31
    WHILE = 32
    EOF = 33


KEYWORDS: t.Mapping[str, TokenType] = {
    "and": TokenType.AND,
    "else": TokenType.ELSE,
    "false": TokenType.FALSE,
    "for": TokenType.FOR,
    "if": TokenType.IF,
    "nil": TokenType.NIL,
    "or": TokenType.OR,
    "print": TokenType.PRINT,
    "true": TokenType.TRUE,
    "var": TokenType.VAR,
    "while": TokenType.WHILE
}


def is_identifier_start(char: str) -> bool:
    return char.isalpha() or char == "_"


def is_identifier_char(char: str) -> bool:
    return char.isalnum() or char == "_"


def is_identifier(name: str) -> bool:
    """True if `name` tokenizes as a single identifier that is not a keyword."""
    return (
        bool(name)
        and is_identifier_start(name[0])
        and all(is_identifier_char(c) for c in name[1:])
        and name not in KEYWORDS
    )


class ASTNodeType(enum.Enum):
    NONE = 0
    ROOT = 1
    VAR_DECL = 2
    PRINT = 3
    EXPRESSION = 4
    BLOCK = 5
    IF = 6
    WHILE = 7
    NUMBER = 8
    STRING = 9
    LITERAL = 10
    GROUPING = 11
    UNARY = 12
    BINARY = 13
    LOGICAL = 14
    VARIABLE = 15
    ASSIGN = 16
    CALL = 17


@dataclasses.dataclass
class Token:
    type: TokenType
    value: str
    line: int
    start: int

    @property
    def length(self) -> int:
        return len(self.value)

    def __str__(self) -> str:
        return f"{self.type.name}:{repr(self.value)}"


class AST:
    def __init__(self, root: 'ASTNode', script: str):
        self.root: ASTNode = root
        self.script: str = script

    def prettify(self) -> str:
        return self.root.prettify()

    def __repr__(self) -> str:
        return f"QuillAST({repr(self.root)})"


class ASTStateError(errors.QuillError):
    """Raised by ASTNode functions on invalid state.

    Generally internal to the quill module. If one of these errors makes it out,
    something is probably wrong.
    """
    def __init__(self, node: 'ASTNode', message: str):
        super().__init__(message)
        self.node = node
        self.message = message

    def __str__(self) -> str:
        return self.message


class ASTNode:
    __slots__ = (
        "children",
        "type",
        "_tok"
    )

    def __init__(
        self,
        type: ASTNodeType,
        token: t.Optional[Token],
        children: t.Sequence['ASTNode'] = ()
    ):
        self.children: t.MutableSequence['ASTNode'] = list(children)
        self.type = type
        self._tok: t.Optional[Token] = token

    def to_dict(self) -> t.Mapping[str, t.Any]:
        mapping = {
            "_type": self.type.name,
            "_tok": str(self._tok),
            "children": [child.to_dict() for child in self.children]
        }

        return mapping

    def prettify(self) -> str:
        s = json.dumps(self.to_dict(), sort_keys=True, indent=4)
        return s

    @property
    def tok(self) -> Token:
        if self._tok is None:
            raise ASTStateError(self, "cannot get token, is None")

        return self._tok

    def has_token(self) -> bool:
        return self._tok is not None

    def str_content(self) -> str:
        if self.type != ASTNodeType.STRING:
            raise ASTStateError(self, "str_content requires STRING type node")

        # Strip the quotes.
        return self.tok.value[1:-1]

    def __str__(self) -> str:
        return repr(self)

    def __repr__(self) -> str:
        if not self.children:
            return f"QuillASTNode({self.type.name}, '{str(self._tok)}')"
        else:
            return f"QuillASTNode({self.type.name}, {repr(self.children)})"


class Tokenizer:
    def __init__(self, string: str):
        self.string = string
        self.stringlen = len(self.string)
        self.current_line = 1
        self.char = 0
        self.whitespace = "\t \r\n"

        # Map of single characters to token types. Operators that may be
        # followed by "=" live in operator_map.
        self.charmap = {
            "(": TokenType.LEFT_PAREN,
            ")": TokenType.RIGHT_PAREN,
            "{": TokenType.LEFT_BRACE,
            "}": TokenType.RIGHT_BRACE,
            ",": TokenType.COMMA,
            ";": TokenType.SEMICOLON,
            "-": TokenType.MINUS,
            "+": TokenType.PLUS,
            "/": TokenType.SLASH,
            "*": TokenType.STAR
        }

        self.operator_map = {
            "!": (TokenType.BANG, TokenType.BANG_EQUAL),
            "=": (TokenType.EQUAL, TokenType.EQUAL_EQUAL),
            "<": (TokenType.LESS, TokenType.LESS_EQUAL),
            ">": (TokenType.GREATER, TokenType.GREATER_EQUAL)
        }

    def error(self, start: int, line: int, message: str) -> t.NoReturn:
        raise errors.TokenizeError(
            line,
            start,
            max(1, self.char - start),
            self.string,
            message
        )

    def at_eof(self) -> bool:
        return self.char >= self.stringlen

    def get_char(self, offset: int = 0) -> str:
        index = self.char + offset
        if index >= self.stringlen:
            return "\0"

        return self.string[index]

    def next_char(self) -> str:
        char = self.get_char()
        if char == "\n":
            self.current_line += 1

        self.char += 1
        return char

    def make_token(self, type: TokenType, start: int, line: int) -> Token:
        return Token(type, self.string[start:self.char], line, start)

    def skip_whitespace_and_comments(self) -> None:
        while not self.at_eof():
            char = self.get_char()

            if char in self.whitespace:
                self.next_char()
            elif char == "/" and self.get_char(1) == "/":
                while not self.at_eof() and self.get_char() != "\n":
                    self.next_char()
            else:
                return

    def accept_string(self, start: int, line: int) -> Token:
        # Opening quote already consumed.
        while self.get_char() != "\"":
            if self.at_eof():
                self.error(start, line, "Unterminated string.")

            self.next_char()

        self.next_char()
        return self.make_token(TokenType.STRING, start, line)

    def accept_number(self, start: int, line: int) -> Token:
        while self.get_char() in DIGITS:
            self.next_char()

        if self.get_char() == "." and self.get_char(1) in DIGITS:
            self.next_char()
            while self.get_char() in DIGITS:
                self.next_char()

        return self.make_token(TokenType.NUMBER, start, line)

    def accept_identifier(self, start: int, line: int) -> Token:
        while is_identifier_char(self.get_char()):
            self.next_char()

        tok = self.make_token(TokenType.IDENTIFIER, start, line)
        tok.type = KEYWORDS.get(tok.value, TokenType.IDENTIFIER)
        return tok

    def next_token(self) -> Token:
        self.skip_whitespace_and_comments()

        start = self.char
        line = self.current_line

        if self.at_eof():
            return Token(TokenType.EOF, "", line, start)

        char = self.next_char()

        if char in self.charmap:
            tok = self.make_token(self.charmap[char], start, line)
        elif char in self.operator_map:
            single, double = self.operator_map[char]
            if self.get_char() == "=":
                self.next_char()
                tok = self.make_token(double, start, line)
            else:
                tok = self.make_token(single, start, line)
        elif char == "\"":
            tok = self.accept_string(start, line)
        elif char in DIGITS:
            tok = self.accept_number(start, line)
        elif is_identifier_start(char):
            tok = self.accept_identifier(start, line)
        else:
            self.error(start, line, f"Unexpected character '{char}'.")

        logger.debug(f"tokenize: Got token {str(tok)}")
        return tok

    def get_all_tokens(self, error_sink: t.MutableSequence[errors.PositionalError]) -> t.Sequence[Token]:
        """
        Tokenize the whole script. Tokenize errors are appended to error_sink and
        the offending characters skipped, so parsing can still report later errors.
        """
        tokens: t.MutableSequence[Token] = []

        while True:
            try:
                tok = self.next_token()
            except errors.TokenizeError as e:
                logger.debug(f"tokenize: error {e.message}")
                error_sink.append(e)
                continue

            tokens.append(tok)
            if tok.type == TokenType.EOF:
                return tokens


class ParseContext:
    def __init__(self, tokenizer: Tokenizer):
        self.tokenizer = tokenizer
        self.errors: t.MutableSequence[errors.PositionalError] = []
        self.tokens: t.Sequence[Token] = self.tokenizer.get_all_tokens(self.errors)
        self.index = 0
        self.depth = 0

    @property
    def token(self) -> Token:
        return self.tokens[self.index]

    @property
    def previous(self) -> Token:
        return self.tokens[max(0, self.index - 1)]

    def at_eof(self) -> bool:
        return self.token.type == TokenType.EOF

    def next_token(self) -> Token:
        prev_token = self.token
        if not self.at_eof():
            self.index += 1

        logger.debug(f"Advance token: {str(prev_token)}->{str(self.token)}")
        return prev_token

    def report(self, token: Token, message: str) -> None:
        """Record an error without unwinding the parser."""
        self.errors.append(make_parse_error(self, errors.ParseError, token, message))

    @contextlib.contextmanager
    def nested(self) -> t.Iterator[None]:
        """Enter one level of nested statements or expressions."""
        if self.depth >= MAX_NESTING:
            parse_error(self, "Nesting too deep.")

        self.depth += 1
        try:
            yield
        finally:
            self.depth -= 1


def make_parse_error(
    ctx: ParseContext,
    error: t.Type[errors.ParseError],
    token: Token,
    message: str
) -> errors.ParseError:
    return error(
        token.line,
        token.start,
        token.length,
        ctx.tokenizer.string,
        message
    )


def parse_error(
    ctx: ParseContext,
    message: str,
    token: t.Optional[Token] = None
) -> t.NoReturn:
    if token is None:
        token = ctx.token

    error_type = errors.ParseEofError if token.type == TokenType.EOF else errors.ParseError
    raise make_parse_error(ctx, error_type, token, message)


def parse_check(ctx: ParseContext, *types: TokenType) -> bool:
    return ctx.token.type in types


def parse_get(ctx: ParseContext, *types: TokenType) -> t.Optional[Token]:
    token = ctx.token

    if token.type in types:
        ctx.next_token()
        return token
    else:
        return None


def parse_expect(ctx: ParseContext, type: TokenType, message: str) -> Token:
    tok = parse_get(ctx, type)

    if tok is None:
        parse_error(ctx, message)

    return tok


def synchronize(ctx: ParseContext) -> None:
    """Skip tokens until a likely statement boundary."""
    ctx.next_token()

    while not ctx.at_eof():
        if ctx.previous.type == TokenType.SEMICOLON:
            return

        if ctx.token.type in (
            TokenType.FOR,
            TokenType.IF,
            TokenType.PRINT,
            TokenType.VAR,
            TokenType.WHILE
        ):
            return

        ctx.next_token()


#
# Expressions
#

def parse_primary(ctx: ParseContext) -> ASTNode:
    tok = parse_get(ctx, TokenType.FALSE, TokenType.TRUE, TokenType.NIL)
    if tok is not None:
        return ASTNode(ASTNodeType.LITERAL, tok)

    tok = parse_get(ctx, TokenType.NUMBER)
    if tok is not None:
        return ASTNode(ASTNodeType.NUMBER, tok)

    tok = parse_get(ctx, TokenType.STRING)
    if tok is not None:
        return ASTNode(ASTNodeType.STRING, tok)

    tok = parse_get(ctx, TokenType.IDENTIFIER)
    if tok is not None:
        return ASTNode(ASTNodeType.VARIABLE, tok)

    tok = parse_get(ctx, TokenType.LEFT_PAREN)
    if tok is not None:
        expr = parse_expression(ctx)
        parse_expect(ctx, TokenType.RIGHT_PAREN, "Expect ')' after expression.")
        return ASTNode(ASTNodeType.GROUPING, tok, [expr])

    parse_error(ctx, "Expect expression.")


def parse_call_args(ctx: ParseContext, callee: ASTNode) -> ASTNode:
    paren = ctx.previous
    args: t.MutableSequence[ASTNode] = []

    if not parse_check(ctx, TokenType.RIGHT_PAREN):
        while True:
            if len(args) >= MAX_ARGS:
                ctx.report(ctx.token, f"Can't have more than {MAX_ARGS} arguments.")

            args.append(parse_expression(ctx))

            if parse_get(ctx, TokenType.COMMA) is None:
                break

    parse_expect(ctx, TokenType.RIGHT_PAREN, "Expect ')' after arguments.")
    return ASTNode(ASTNodeType.CALL, paren, [callee, *args])


def parse_call(ctx: ParseContext) -> ASTNode:
    expr = parse_primary(ctx)

    while parse_get(ctx, TokenType.LEFT_PAREN) is not None:
        expr = parse_call_args(ctx, expr)

    return expr


def parse_unary(ctx: ParseContext) -> ASTNode:
    op = parse_get(ctx, TokenType.BANG, TokenType.MINUS)
    if op is not None:
        with ctx.nested():
            operand = parse_unary(ctx)

        return ASTNode(ASTNodeType.UNARY, op, [operand])

    return parse_call(ctx)


def parse_binary_level(
    operand: t.Callable[[ParseContext], ASTNode],
    node_type: ASTNodeType,
    *ops: TokenType
) -> t.Callable[[ParseContext], ASTNode]:
    """Build a left-associative parser for one precedence level."""
    def _(ctx: ParseContext) -> ASTNode:
        expr = operand(ctx)

        while True:
            op = parse_get(ctx, *ops)
            if op is None:
                return expr

            expr = ASTNode(node_type, op, [expr, operand(ctx)])

    return _


parse_factor = parse_binary_level(parse_unary, ASTNodeType.BINARY, TokenType.SLASH, TokenType.STAR)
parse_term = parse_binary_level(parse_factor, ASTNodeType.BINARY, TokenType.MINUS, TokenType.PLUS)
parse_comparison = parse_binary_level(
    parse_term,
    ASTNodeType.BINARY,
    TokenType.GREATER,
    TokenType.GREATER_EQUAL,
    TokenType.LESS,
    TokenType.LESS_EQUAL
)
parse_equality = parse_binary_level(
    parse_comparison,
    ASTNodeType.BINARY,
    TokenType.BANG_EQUAL,
    TokenType.EQUAL_EQUAL
)
parse_and = parse_binary_level(parse_equality, ASTNodeType.LOGICAL, TokenType.AND)
parse_or = parse_binary_level(parse_and, ASTNodeType.LOGICAL, TokenType.OR)


def parse_assignment(ctx: ParseContext) -> ASTNode:
    expr = parse_or(ctx)

    equals = parse_get(ctx, TokenType.EQUAL)
    if equals is not None:
        with ctx.nested():
            value = parse_assignment(ctx)

        if expr.type == ASTNodeType.VARIABLE:
            return ASTNode(ASTNodeType.ASSIGN, expr.tok, [value])

        # Not fatal, the parser is not confused.
        ctx.report(equals, "Invalid assignment target.")

    return expr


def parse_expression(ctx: ParseContext) -> ASTNode:
    with ctx.nested():
        expr = parse_assignment(ctx)

    return expr


#
# Statements
#

def parse_print(ctx: ParseContext) -> ASTNode:
    keyword = ctx.previous
    value = parse_expression(ctx)
    parse_expect(ctx, TokenType.SEMICOLON, "Expect ';' after value.")
    return ASTNode(ASTNodeType.PRINT, keyword, [value])


def parse_expression_statement(ctx: ParseContext) -> ASTNode:
    expr = parse_expression(ctx)
    parse_expect(ctx, TokenType.SEMICOLON, "Expect ';' after expression.")
    return ASTNode(ASTNodeType.EXPRESSION, expr.tok if expr.has_token() else None, [expr])


def parse_block_body(ctx: ParseContext) -> t.Sequence[ASTNode]:
    nodes: t.MutableSequence[ASTNode] = []

    while not parse_check(ctx, TokenType.RIGHT_BRACE) and not ctx.at_eof():
        node = parse_declaration(ctx)
        if node is not None:
            nodes.append(node)

    parse_expect(ctx, TokenType.RIGHT_BRACE, "Expect '}' after block.")
    return nodes


def parse_if(ctx: ParseContext) -> ASTNode:
    keyword = ctx.previous
    parse_expect(ctx, TokenType.LEFT_PAREN, "Expect '(' after 'if'.")
    condition = parse_expression(ctx)
    parse_expect(ctx, TokenType.RIGHT_PAREN, "Expect ')' after condition.")

    node = ASTNode(ASTNodeType.IF, keyword, [condition, parse_statement(ctx)])

    if parse_get(ctx, TokenType.ELSE) is not None:
        node.children.append(parse_statement(ctx))

    return node


def parse_while(ctx: ParseContext) -> ASTNode:
    keyword = ctx.previous
    parse_expect(ctx, TokenType.LEFT_PAREN, "Expect '(' after 'while'.")
    condition = parse_expression(ctx)
    parse_expect(ctx, TokenType.RIGHT_PAREN, "Expect ')' after condition.")

    return ASTNode(ASTNodeType.WHILE, keyword, [condition, parse_statement(ctx)])


def parse_for(ctx: ParseContext) -> ASTNode:
    """
    for loops are desugared into a block containing the initializer and
    a while loop.
    """
    keyword = ctx.previous
    parse_expect(ctx, TokenType.LEFT_PAREN, "Expect '(' after 'for'.")

    initializer: t.Optional[ASTNode]
    if parse_get(ctx, TokenType.SEMICOLON) is not None:
        initializer = None
    elif parse_get(ctx, TokenType.VAR) is not None:
        initializer = parse_var_declaration(ctx)
    else:
        initializer = parse_expression_statement(ctx)

    condition: t.Optional[ASTNode] = None
    if not parse_check(ctx, TokenType.SEMICOLON):
        condition = parse_expression(ctx)
    parse_expect(ctx, TokenType.SEMICOLON, "Expect ';' after loop condition.")

    increment: t.Optional[ASTNode] = None
    if not parse_check(ctx, TokenType.RIGHT_PAREN):
        increment = parse_expression(ctx)
    parse_expect(ctx, TokenType.RIGHT_PAREN, "Expect ')' after for clauses.")

    body = parse_statement(ctx)

    if increment is not None:
        body = ASTNode(ASTNodeType.BLOCK, keyword, [
            body,
            ASTNode(ASTNodeType.EXPRESSION, increment.tok, [increment])
        ])

    if condition is None:
        condition = ASTNode(ASTNodeType.LITERAL, Token(TokenType.TRUE, "true", keyword.line, keyword.start))

    loop = ASTNode(ASTNodeType.WHILE, keyword, [condition, body])

    if initializer is None:
        return loop

    return ASTNode(ASTNodeType.BLOCK, keyword, [initializer, loop])


def parse_statement(ctx: ParseContext) -> ASTNode:
    logger.debug("parse_statement")

    with ctx.nested():
        node = parse_statement_body(ctx)

    return node


def parse_statement_body(ctx: ParseContext) -> ASTNode:
    if parse_get(ctx, TokenType.PRINT) is not None:
        return parse_print(ctx)
    elif parse_get(ctx, TokenType.IF) is not None:
        return parse_if(ctx)
    elif parse_get(ctx, TokenType.WHILE) is not None:
        return parse_while(ctx)
    elif parse_get(ctx, TokenType.FOR) is not None:
        return parse_for(ctx)
    elif parse_get(ctx, TokenType.LEFT_BRACE) is not None:
        brace = ctx.previous
        return ASTNode(ASTNodeType.BLOCK, brace, parse_block_body(ctx))

    return parse_expression_statement(ctx)


def parse_var_declaration(ctx: ParseContext) -> ASTNode:
    name = parse_expect(ctx, TokenType.IDENTIFIER, "Expect variable name.")
    node = ASTNode(ASTNodeType.VAR_DECL, name)

    if parse_get(ctx, TokenType.EQUAL) is not None:
        node.children.append(parse_expression(ctx))

    parse_expect(ctx, TokenType.SEMICOLON, "Expect ';' after variable declaration.")
    return node


def parse_declaration(ctx: ParseContext) -> t.Optional[ASTNode]:
    """
    Parse one declaration. On a parse error, the error is recorded and the
    parser skips ahead to the next statement, returning None.
    """
    try:
        if parse_get(ctx, TokenType.VAR) is not None:
            return parse_var_declaration(ctx)

        return parse_statement(ctx)
    except errors.ParseError as e:
        logger.debug(f"parse_declaration: error {e.message}, synchronizing")
        ctx.errors.append(e)
        synchronize(ctx)
        return None


def parse_root(ctx: ParseContext) -> ASTNode:
    root_node = ASTNode(ASTNodeType.ROOT, None)

    while not ctx.at_eof():
        node = parse_declaration(ctx)
        if node is not None:
            root_node.children.append(node)

    return root_node


def parse_script(script: str) -> AST:
    """
    Parse a whole script. Raises CompileError with every tokenize and parse
    error found.
    """
    ctx = ParseContext(Tokenizer(script))
    root = parse_root(ctx)

    if ctx.errors:
        raise errors.CompileError(sorted(ctx.errors, key=lambda e: e.start))

    return AST(root, ctx.tokenizer.string)

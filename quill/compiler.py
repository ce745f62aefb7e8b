"""
Compiles a parsed script into a `quill.chunk.Chunk`.

Names are resolved in this order: locals (innermost scope first), native
functions, then globals. Globals are looked up at runtime, everything else
is resolved here.
"""

import dataclasses
import logging
import typing as t

from . import ast, chunk, datatypes, errors
from .chunk import OpCode

__all__ = (
    "Compiler",
    "compile_script",
    "MAX_LOCALS"
)

logger = logging.getLogger(__name__)

MAX_LOCALS = 256

UNINITIALIZED = -1

BINARY_OPS: t.Mapping[ast.TokenType, t.Sequence[OpCode]] = {
    ast.TokenType.PLUS: (OpCode.ADD,),
    ast.TokenType.MINUS: (OpCode.SUBTRACT,),
    ast.TokenType.STAR: (OpCode.MULTIPLY,),
    ast.TokenType.SLASH: (OpCode.DIVIDE,),
    ast.TokenType.EQUAL_EQUAL: (OpCode.EQUAL,),
    ast.TokenType.BANG_EQUAL: (OpCode.EQUAL, OpCode.NOT),
    ast.TokenType.GREATER: (OpCode.GREATER,),
    ast.TokenType.GREATER_EQUAL: (OpCode.LESS, OpCode.NOT),
    ast.TokenType.LESS: (OpCode.LESS,),
    ast.TokenType.LESS_EQUAL: (OpCode.GREATER, OpCode.NOT)
}

LITERAL_OPS: t.Mapping[ast.TokenType, OpCode] = {
    ast.TokenType.TRUE: OpCode.TRUE,
    ast.TokenType.FALSE: OpCode.FALSE,
    ast.TokenType.NIL: OpCode.NIL
}


@dataclasses.dataclass
class Local:
    name: str
    depth: int


class Compiler:
    def __init__(self, script: str, native_names: t.Sequence[str] = ()):
        self.script = script
        self.chunk = chunk.Chunk()
        self.natives = {name: i for i, name in enumerate(native_names)}
        self.locals: t.MutableSequence[Local] = []
        self.scope_depth = 0
        self.errors: t.MutableSequence[errors.PositionalError] = []

    def error(self, token: ast.Token, message: str) -> None:
        logger.debug(f"compile: error at {str(token)}: {message}")
        self.errors.append(errors.PositionalError(
            token.line,
            token.start,
            token.length,
            self.script,
            message
        ))

    def emit(self, node: ast.ASTNode, op: OpCode, arg: t.Optional[int] = None) -> int:
        return self.chunk.write(op, node.tok.line, arg)

    def emit_constant(self, node: ast.ASTNode, value: datatypes.Value) -> None:
        self.emit(node, OpCode.CONSTANT, self.chunk.add_constant(value))

    def name_constant(self, name: str) -> int:
        return self.chunk.add_constant(datatypes.Value.string(name))

    def emit_jump(self, node: ast.ASTNode, op: OpCode) -> int:
        # Target is patched once known.
        return self.emit(node, op, -1)

    def patch_jump(self, index: int) -> None:
        self.chunk.patch(index, len(self.chunk))

    def compile(self, tree: ast.AST) -> chunk.Chunk:
        for node in tree.root.children:
            self.compile_statement(node)

        end_line = tree.script.count("\n") + 1
        self.chunk.write(OpCode.RETURN, end_line)

        if self.errors:
            raise errors.CompileError(self.errors)

        return self.chunk

    #
    # Scopes and variables
    #

    def begin_scope(self) -> None:
        self.scope_depth += 1

    def end_scope(self, node: ast.ASTNode) -> None:
        self.scope_depth -= 1

        while self.locals and self.locals[-1].depth > self.scope_depth:
            self.emit(node, OpCode.POP)
            self.locals.pop()

    def resolve_local(self, token: ast.Token) -> t.Optional[int]:
        for i in reversed(range(len(self.locals))):
            local = self.locals[i]
            if local.name == token.value:
                if local.depth == UNINITIALIZED:
                    self.error(token, "Can't read local variable in its own initializer.")

                return i

        return None

    def declare_variable(self, token: ast.Token) -> None:
        if token.value in self.natives:
            self.error(token, f"Cannot redefine native function '{token.value}'.")

        if self.scope_depth == 0:
            return

        for local in reversed(self.locals):
            if local.depth != UNINITIALIZED and local.depth < self.scope_depth:
                break

            if local.name == token.value:
                self.error(token, "Already a variable with this name in this scope.")

        if len(self.locals) >= MAX_LOCALS:
            self.error(token, "Too many local variables in scope.")
            return

        self.locals.append(Local(token.value, UNINITIALIZED))

    def define_variable(self, node: ast.ASTNode) -> None:
        if self.scope_depth > 0:
            # declare_variable may have refused to add the local.
            if self.locals and self.locals[-1].name == node.tok.value:
                self.locals[-1].depth = self.scope_depth
            return

        self.emit(node, OpCode.DEFINE_GLOBAL, self.name_constant(node.tok.value))

    #
    # Statements
    #

    def compile_statement(self, node: ast.ASTNode) -> None:
        logger.debug(f"compile_statement: {node.type.name}")

        if node.type == ast.ASTNodeType.VAR_DECL:
            self.compile_var_decl(node)
        elif node.type == ast.ASTNodeType.PRINT:
            self.compile_expression(node.children[0])
            self.emit(node, OpCode.PRINT)
        elif node.type == ast.ASTNodeType.EXPRESSION:
            self.compile_expression(node.children[0])
            self.emit(node.children[0], OpCode.POP)
        elif node.type == ast.ASTNodeType.BLOCK:
            self.begin_scope()
            for child in node.children:
                self.compile_statement(child)
            self.end_scope(node)
        elif node.type == ast.ASTNodeType.IF:
            self.compile_if(node)
        elif node.type == ast.ASTNodeType.WHILE:
            self.compile_while(node)
        else:
            raise errors.QuillError(f"compile_statement: bad node type {node.type.name}")

    def compile_var_decl(self, node: ast.ASTNode) -> None:
        self.declare_variable(node.tok)

        if node.children:
            self.compile_expression(node.children[0])
        else:
            self.emit(node, OpCode.NIL)

        self.define_variable(node)

    def compile_if(self, node: ast.ASTNode) -> None:
        condition, then_branch, *else_branch = node.children

        self.compile_expression(condition)
        then_jump = self.emit_jump(node, OpCode.JUMP_IF_FALSE)
        self.emit(node, OpCode.POP)
        self.compile_statement(then_branch)

        else_jump = self.emit_jump(node, OpCode.JUMP)
        self.patch_jump(then_jump)
        self.emit(node, OpCode.POP)

        if else_branch:
            self.compile_statement(else_branch[0])

        self.patch_jump(else_jump)

    def compile_while(self, node: ast.ASTNode) -> None:
        condition, body = node.children

        loop_start = len(self.chunk)
        self.compile_expression(condition)

        exit_jump = self.emit_jump(node, OpCode.JUMP_IF_FALSE)
        self.emit(node, OpCode.POP)
        self.compile_statement(body)
        self.emit(node, OpCode.LOOP, loop_start)

        self.patch_jump(exit_jump)
        self.emit(node, OpCode.POP)

    #
    # Expressions
    #

    def compile_expression(self, node: ast.ASTNode) -> None:
        type = node.type

        if type == ast.ASTNodeType.NUMBER:
            self.emit_constant(node, datatypes.Value.number(float(node.tok.value)))
        elif type == ast.ASTNodeType.STRING:
            self.emit_constant(node, datatypes.Value.string(node.str_content()))
        elif type == ast.ASTNodeType.LITERAL:
            self.emit(node, LITERAL_OPS[node.tok.type])
        elif type == ast.ASTNodeType.GROUPING:
            self.compile_expression(node.children[0])
        elif type == ast.ASTNodeType.UNARY:
            self.compile_expression(node.children[0])
            op = OpCode.NEGATE if node.tok.type == ast.TokenType.MINUS else OpCode.NOT
            self.emit(node, op)
        elif type == ast.ASTNodeType.BINARY or type == ast.ASTNodeType.LOGICAL:
            self.compile_operator_chain(node)
        elif type == ast.ASTNodeType.VARIABLE:
            self.compile_variable(node)
        elif type == ast.ASTNodeType.ASSIGN:
            self.compile_assign(node)
        elif type == ast.ASTNodeType.CALL:
            callee, *args = node.children
            self.compile_expression(callee)
            for arg in args:
                self.compile_expression(arg)
            self.emit(node, OpCode.CALL, len(args))
        else:
            raise errors.QuillError(f"compile_expression: bad node type {type.name}")

    def compile_operator_chain(self, node: ast.ASTNode) -> None:
        """
        Compile a left-associative chain like `1 + 2 + 3`. The parser builds
        these to any length, so the left spine is walked in a loop.
        """
        spine: t.MutableSequence[ast.ASTNode] = []

        while node.type in (ast.ASTNodeType.BINARY, ast.ASTNodeType.LOGICAL):
            spine.append(node)
            node = node.children[0]

        self.compile_expression(node)

        for operator in reversed(spine):
            if operator.type == ast.ASTNodeType.LOGICAL:
                self.compile_logical_right(operator)
            else:
                self.compile_expression(operator.children[1])
                for op in BINARY_OPS[operator.tok.type]:
                    self.emit(operator, op)

    def compile_logical_right(self, node: ast.ASTNode) -> None:
        # The left operand is already on the stack.
        right = node.children[1]

        if node.tok.type == ast.TokenType.AND:
            end_jump = self.emit_jump(node, OpCode.JUMP_IF_FALSE)
            self.emit(node, OpCode.POP)
            self.compile_expression(right)
            self.patch_jump(end_jump)
        else:
            else_jump = self.emit_jump(node, OpCode.JUMP_IF_FALSE)
            end_jump = self.emit_jump(node, OpCode.JUMP)
            self.patch_jump(else_jump)
            self.emit(node, OpCode.POP)
            self.compile_expression(right)
            self.patch_jump(end_jump)

    def compile_variable(self, node: ast.ASTNode) -> None:
        slot = self.resolve_local(node.tok)

        if slot is not None:
            self.emit(node, OpCode.GET_LOCAL, slot)
        elif node.tok.value in self.natives:
            self.emit(node, OpCode.GET_NATIVE, self.natives[node.tok.value])
        else:
            self.emit(node, OpCode.GET_GLOBAL, self.name_constant(node.tok.value))

    def compile_assign(self, node: ast.ASTNode) -> None:
        self.compile_expression(node.children[0])
        slot = self.resolve_local(node.tok)

        if slot is not None:
            self.emit(node, OpCode.SET_LOCAL, slot)
        elif node.tok.value in self.natives:
            self.error(node.tok, f"Cannot assign to native function '{node.tok.value}'.")
        else:
            self.emit(node, OpCode.SET_GLOBAL, self.name_constant(node.tok.value))


def compile_script(script: str, native_names: t.Sequence[str] = ()) -> chunk.Chunk:
    """
    Parse and compile a script. Raises CompileError with every error found.
    """
    tree = ast.parse_script(script)
    return Compiler(tree.script, native_names).compile(tree)

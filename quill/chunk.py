#
# Bytecode containers and a disassembler.
#

import dataclasses
import enum
import typing as t

from . import datatypes

__all__ = (
    "OpCode",
    "Instruction",
    "Chunk",
    "disassemble_instruction",
    "disassemble"
)


class OpCode(enum.Enum):
    CONSTANT = enum.auto()
    NIL = enum.auto()
    TRUE = enum.auto()
    FALSE = enum.auto()
    POP = enum.auto()
    GET_LOCAL = enum.auto()
    SET_LOCAL = enum.auto()
    GET_GLOBAL = enum.auto()
    DEFINE_GLOBAL = enum.auto()
    SET_GLOBAL = enum.auto()
    GET_NATIVE = enum.auto()
    EQUAL = enum.auto()
    GREATER = enum.auto()
    LESS = enum.auto()
    ADD = enum.auto()
    SUBTRACT = enum.auto()
    MULTIPLY = enum.auto()
    DIVIDE = enum.auto()
    NOT = enum.auto()
    NEGATE = enum.auto()
    PRINT = enum.auto()
    JUMP = enum.auto()
    JUMP_IF_FALSE = enum.auto()
    LOOP = enum.auto()
    CALL = enum.auto()
    RETURN = enum.auto()


# Opcodes whose operand indexes the constant table.
CONSTANT_OPERAND = frozenset((
    OpCode.CONSTANT,
    OpCode.GET_GLOBAL,
    OpCode.DEFINE_GLOBAL,
    OpCode.SET_GLOBAL
))


@dataclasses.dataclass
class Instruction:
    op: OpCode
    arg: t.Optional[int]
    line: int


class Chunk:
    def __init__(self) -> None:
        self.code: t.MutableSequence[Instruction] = []
        self.constants: t.MutableSequence[datatypes.Value] = []

    def write(self, op: OpCode, line: int, arg: t.Optional[int] = None) -> int:
        """Append an instruction and return its index."""
        self.code.append(Instruction(op, arg, line))
        return len(self.code) - 1

    def add_constant(self, value: datatypes.Value) -> int:
        # Reuse an existing slot for identical constants.
        for i, existing in enumerate(self.constants):
            if existing.type == value.type and existing.data == value.data:
                return i

        self.constants.append(value)
        return len(self.constants) - 1

    def patch(self, index: int, arg: int) -> None:
        self.code[index].arg = arg

    def __len__(self) -> int:
        return len(self.code)


def disassemble_instruction(
    chunk: Chunk,
    offset: int,
    native_names: t.Sequence[str] = ()
) -> str:
    instruction = chunk.code[offset]
    prefix = f"{offset:04d} {instruction.line:4d} {instruction.op.name:<16}"

    if instruction.arg is None:
        return prefix.rstrip()

    if instruction.op in CONSTANT_OPERAND:
        value = chunk.constants[instruction.arg]
        return f"{prefix}{instruction.arg:4d} '{datatypes.format_value(value)}'"
    elif instruction.op == OpCode.GET_NATIVE and instruction.arg < len(native_names):
        return f"{prefix}{instruction.arg:4d} <{native_names[instruction.arg]}>"
    elif instruction.op in (OpCode.JUMP, OpCode.JUMP_IF_FALSE, OpCode.LOOP):
        return f"{prefix}-> {instruction.arg:04d}"

    return f"{prefix}{instruction.arg:4d}"


def disassemble(chunk: Chunk, name: str = "script", native_names: t.Sequence[str] = ()) -> str:
    lines = [f"== {name} =="]
    lines.extend(
        disassemble_instruction(chunk, offset, native_names)
        for offset in range(len(chunk))
    )

    return "\n".join(lines)

import logging
import typing as t

from . import chunk, compiler, datatypes, errors, natives
from .chunk import OpCode
from .datatypes import Value, ValueType

__all__ = (
    "Interpreter",
    "InternalInterpreterError",
    "OutputT"
)

logger = logging.getLogger(__name__)

OutputT = t.Callable[[str], None]


class InternalInterpreterError(errors.QuillError):
    def __init__(self, message: str):
        super().__init__(
            "INTERNAL ERROR. If you see this, please report it!\n" + message
        )


class Interpreter:
    """
    The bytecode interpreter for quill.

    Executes one `Chunk`. `step` executes a single instruction, `run`
    executes instructions until the script halts. Runtime errors are raised
    as `QuillRuntimeError`, and halt the interpreter.
    """
    def __init__(
        self,
        code: chunk.Chunk,
        native_functions: t.Sequence[natives.NativeFunction] = (),
        instruction_limit: int = 0,
        stack_limit: int = 1024,
        output: OutputT = print
    ):
        self.chunk = code
        self.natives = list(native_functions)
        self.instruction_limit = instruction_limit
        self.stack_limit = stack_limit
        self.output = output

        self.ip = 0
        self.stack: t.MutableSequence[Value] = []
        self.globals: t.MutableMapping[str, Value] = {}
        self.instruction_count = 0
        self.halted = False

        self._ops: t.Mapping[OpCode, t.Callable[[t.Optional[int]], None]] = {
            OpCode.CONSTANT: self.op_constant,
            OpCode.NIL: lambda _: self.push(datatypes.NULL),
            OpCode.TRUE: lambda _: self.push(datatypes.TRUE),
            OpCode.FALSE: lambda _: self.push(datatypes.FALSE),
            OpCode.POP: lambda _: self.pop(),
            OpCode.GET_LOCAL: self.op_get_local,
            OpCode.SET_LOCAL: self.op_set_local,
            OpCode.GET_GLOBAL: self.op_get_global,
            OpCode.DEFINE_GLOBAL: self.op_define_global,
            OpCode.SET_GLOBAL: self.op_set_global,
            OpCode.GET_NATIVE: self.op_get_native,
            OpCode.EQUAL: self.op_equal,
            OpCode.GREATER: lambda _: self.binary_number_op(lambda a, b: Value.boolean(a > b)),
            OpCode.LESS: lambda _: self.binary_number_op(lambda a, b: Value.boolean(a < b)),
            OpCode.ADD: self.op_add,
            OpCode.SUBTRACT: lambda _: self.binary_number_op(lambda a, b: Value.number(a - b)),
            OpCode.MULTIPLY: lambda _: self.binary_number_op(lambda a, b: Value.number(a * b)),
            OpCode.DIVIDE: lambda _: self.binary_number_op(self.divide),
            OpCode.NOT: lambda _: self.push(Value.boolean(datatypes.is_falsey(self.pop()))),
            OpCode.NEGATE: self.op_negate,
            OpCode.PRINT: lambda _: self.output(datatypes.format_value(self.pop())),
            OpCode.JUMP: self.op_jump,
            OpCode.JUMP_IF_FALSE: self.op_jump_if_false,
            OpCode.LOOP: self.op_jump,
            OpCode.CALL: self.op_call,
            OpCode.RETURN: self.op_return
        }

    @classmethod
    def from_source(
        cls,
        source: str,
        native_functions: t.Sequence[natives.NativeFunction] = (),
        **kwargs: t.Any
    ) -> 'Interpreter':
        """
        Compile `source` and return an interpreter ready to execute it.
        Raises CompileError if the source does not compile.
        """
        code = compiler.compile_script(source, [n.name for n in native_functions])
        logger.debug(f"Compiled {len(code)} instructions, {len(code.constants)} constants")
        return cls(code, native_functions, **kwargs)

    @property
    def current_line(self) -> t.Optional[int]:
        if self.halted or self.ip >= len(self.chunk):
            return None

        return self.chunk.code[self.ip].line

    def next_instruction(self) -> t.Optional[str]:
        """Disassembly of the instruction the next step will execute."""
        if self.halted or self.ip >= len(self.chunk):
            return None

        return chunk.disassemble_instruction(
            self.chunk,
            self.ip,
            [n.name for n in self.natives]
        )

    def runtime_error(self, message: str) -> t.NoReturn:
        raise errors.QuillRuntimeError(message)

    #
    # Stack
    #

    def push(self, value: Value) -> None:
        if len(self.stack) >= self.stack_limit:
            self.runtime_error("Stack overflow.")

        self.stack.append(value)

    def pop(self) -> Value:
        if not self.stack:
            raise InternalInterpreterError("pop from empty stack")

        return self.stack.pop()

    def peek(self, distance: int = 0) -> Value:
        return self.stack[-1 - distance]

    #
    # Execution
    #

    def run(self) -> None:
        while self.step():
            pass

    def step(self) -> bool:
        """
        Execute one instruction. Returns True if more instructions remain.
        """
        if self.halted:
            raise InternalInterpreterError("step called on a halted interpreter")

        if self.ip >= len(self.chunk):
            raise InternalInterpreterError(f"instruction pointer {self.ip} out of range")

        if self.instruction_limit and self.instruction_count >= self.instruction_limit:
            self.halted = True
            raise errors.QuillRuntimeError(
                f"Exceeded maximum instruction limit of {self.instruction_limit}.",
                self.chunk.code[self.ip].line
            )

        instruction = self.chunk.code[self.ip]
        logger.debug(f"step: {chunk.disassemble_instruction(self.chunk, self.ip)}")

        self.ip += 1
        self.instruction_count += 1

        try:
            self._ops[instruction.op](instruction.arg)
        except errors.QuillRuntimeError as e:
            self.halted = True
            if e.line is None:
                e.line = instruction.line

            logger.debug(f"step: runtime error {str(e)}")
            raise
        except Exception:
            # The stack is in an unknown state, it can't be resumed.
            self.halted = True
            raise

        return not self.halted

    def require_arg(self, arg: t.Optional[int]) -> int:
        if arg is None:
            raise InternalInterpreterError("instruction is missing its operand")

        return arg

    def global_name(self, arg: t.Optional[int]) -> str:
        return t.cast(str, self.chunk.constants[self.require_arg(arg)].data)

    def op_constant(self, arg: t.Optional[int]) -> None:
        self.push(self.chunk.constants[self.require_arg(arg)])

    def op_get_local(self, arg: t.Optional[int]) -> None:
        self.push(self.stack[self.require_arg(arg)])

    def op_set_local(self, arg: t.Optional[int]) -> None:
        self.stack[self.require_arg(arg)] = self.peek()

    def op_get_global(self, arg: t.Optional[int]) -> None:
        name = self.global_name(arg)

        try:
            self.push(self.globals[name])
        except KeyError:
            self.runtime_error(f"Undefined variable '{name}'.")

    def op_define_global(self, arg: t.Optional[int]) -> None:
        self.globals[self.global_name(arg)] = self.pop()

    def op_set_global(self, arg: t.Optional[int]) -> None:
        name = self.global_name(arg)

        if name not in self.globals:
            self.runtime_error(f"Undefined variable '{name}'.")

        self.globals[name] = self.peek()

    def op_get_native(self, arg: t.Optional[int]) -> None:
        self.push(Value.native(self.natives[self.require_arg(arg)]))

    def op_equal(self, _: t.Optional[int]) -> None:
        b = self.pop()
        a = self.pop()
        self.push(Value.boolean(a == b))

    def binary_number_op(self, op: t.Callable[[float, float], Value]) -> None:
        if not (self.peek(0).is_number and self.peek(1).is_number):
            self.runtime_error("Operands must be numbers.")

        b = self.pop()
        a = self.pop()
        self.push(op(a.data, b.data))

    def divide(self, a: float, b: float) -> Value:
        if b == 0:
            self.runtime_error("Division by zero.")

        return Value.number(a / b)

    def op_add(self, _: t.Optional[int]) -> None:
        a, b = self.peek(1), self.peek(0)

        if a.is_string and b.is_string:
            result = Value.string(a.data + b.data)
        elif a.is_number and b.is_number:
            result = Value.number(a.data + b.data)
        else:
            self.runtime_error("Operands must be two numbers or two strings.")

        self.pop()
        self.pop()
        self.push(result)

    def op_negate(self, _: t.Optional[int]) -> None:
        if not self.peek().is_number:
            self.runtime_error("Operand must be a number.")

        self.push(Value.number(-self.pop().data))

    def op_jump(self, arg: t.Optional[int]) -> None:
        self.ip = self.require_arg(arg)

    def op_jump_if_false(self, arg: t.Optional[int]) -> None:
        if datatypes.is_falsey(self.peek()):
            self.ip = self.require_arg(arg)

    def op_call(self, arg: t.Optional[int]) -> None:
        arg_count = self.require_arg(arg)
        callee = self.peek(arg_count)

        if callee.type != ValueType.NATIVE:
            self.runtime_error("Can only call functions.")

        native: natives.NativeFunction = callee.data
        if arg_count != native.arity:
            self.runtime_error(
                f"Expected {native.arity} argument{'' if native.arity == 1 else 's'} but got {arg_count}."
            )

        args = list(self.stack[len(self.stack) - arg_count:])
        logger.debug(f"call: {native.name}({', '.join(map(datatypes.format_value, args))})")
        result = native.function(args)

        del self.stack[len(self.stack) - arg_count - 1:]
        self.push(result)

    def op_return(self, _: t.Optional[int]) -> None:
        logger.debug(f"return: halted after {self.instruction_count} instructions")
        self.halted = True

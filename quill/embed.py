"""
The host-facing API: compile a script, then run or step it.

    result = quill.compile(source, natives)
    if not result.success:
        for diag in result.take_diagnostics():
            print(diag)
    else:
        program = result.take_program()
        outcome = program.run()

Compile and runtime failures are returned as data (`CompileDiagnostic`,
`RuntimeDiagnostic`). Only contract violations raise.
"""

import dataclasses
import enum
import logging
import typing as t

from . import errors, interpreter, natives

__all__ = (
    "CompileDiagnostic",
    "RuntimeDiagnostic",
    "ExecutionOutcome",
    "ProgramState",
    "Program",
    "CompileResult",
    "compile"
)

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class CompileDiagnostic:
    line: int
    start: int
    len: int
    message: str

    @classmethod
    def from_error(cls, error: errors.PositionalError) -> 'CompileDiagnostic':
        return cls(error.line, error.start, error.length, error.message)

    def __str__(self) -> str:
        return f"[line {self.line}] Error: {self.message}"


@dataclasses.dataclass(frozen=True)
class RuntimeDiagnostic:
    message: str
    line: t.Optional[int] = None

    @classmethod
    def from_error(cls, error: errors.QuillRuntimeError) -> 'RuntimeDiagnostic':
        return cls(error.message, error.line)

    def __str__(self) -> str:
        if self.line is None:
            return self.message

        return f"[line {self.line}] {self.message}"


@dataclasses.dataclass(frozen=True)
class ExecutionOutcome:
    finished: bool
    error: t.Optional[RuntimeDiagnostic] = None

    @classmethod
    def successful(cls) -> 'ExecutionOutcome':
        return cls(True)

    @classmethod
    def unfinished(cls) -> 'ExecutionOutcome':
        return cls(False)

    @classmethod
    def runtime_err(cls, error: errors.QuillRuntimeError) -> 'ExecutionOutcome':
        return cls(True, RuntimeDiagnostic.from_error(error))

    @property
    def runtime_error(self) -> t.Optional[str]:
        return None if self.error is None else self.error.message


class ProgramState(enum.Enum):
    READY = enum.auto()
    SUSPENDED = enum.auto()
    FINISHED = enum.auto()


class Program:
    """
    A compiled script and its execution state.

    A Program starts READY. `step` moves it to SUSPENDED while instructions
    remain, and either `run` or `step` eventually moves it to FINISHED, after
    which both raise ProgramFinishedError. An exception escaping `run` or
    `step`, such as a BridgeFault or an error from the output sink, also
    finishes the Program. Dropping a Program cancels it.
    """
    def __init__(self, interp: interpreter.Interpreter):
        self._interpreter = interp
        self._state = ProgramState.READY
        self._executing = False

    @property
    def state(self) -> ProgramState:
        return self._state

    @property
    def finished(self) -> bool:
        return self._state == ProgramState.FINISHED

    @property
    def instruction_count(self) -> int:
        return self._interpreter.instruction_count

    @property
    def current_line(self) -> t.Optional[int]:
        """Source line of the next instruction, None once finished."""
        if self.finished:
            return None

        return self._interpreter.current_line

    def next_instruction(self) -> t.Optional[str]:
        """Disassembly of the next instruction, None once finished."""
        if self.finished:
            return None

        return self._interpreter.next_instruction()

    def _begin(self) -> None:
        if self._state == ProgramState.FINISHED:
            raise errors.ProgramFinishedError()

        if self._executing:
            raise errors.ReentrantCallError()

        self._executing = True

    def _finish(self, outcome: ExecutionOutcome) -> ExecutionOutcome:
        self._state = ProgramState.FINISHED if outcome.finished else ProgramState.SUSPENDED
        logger.debug(f"Program: {self._state.name} after {self.instruction_count} instructions")
        return outcome

    def run(self) -> ExecutionOutcome:
        """Execute the program to completion."""
        self._begin()

        try:
            self._interpreter.run()
        except errors.QuillRuntimeError as e:
            return self._finish(ExecutionOutcome.runtime_err(e))
        except Exception:
            self._state = ProgramState.FINISHED
            raise
        finally:
            self._executing = False

        return self._finish(ExecutionOutcome.successful())

    def step(self) -> ExecutionOutcome:
        """Execute a single instruction."""
        self._begin()

        try:
            more = self._interpreter.step()
        except errors.QuillRuntimeError as e:
            return self._finish(ExecutionOutcome.runtime_err(e))
        except Exception:
            self._state = ProgramState.FINISHED
            raise
        finally:
            self._executing = False

        if more:
            return self._finish(ExecutionOutcome.unfinished())
        else:
            return self._finish(ExecutionOutcome.successful())

    def __repr__(self) -> str:
        return f"Program({self._state.name}, instructions={self.instruction_count})"


class CompileResult:
    """
    The result of `compile`. The program and the diagnostics can each be
    taken once; later takes return None.
    """
    def __init__(
        self,
        program: t.Optional[Program] = None,
        diagnostics: t.Optional[t.Sequence[CompileDiagnostic]] = None
    ):
        self._success = program is not None
        self._program = program
        self._diagnostics: t.Optional[t.List[CompileDiagnostic]] = (
            None if diagnostics is None else list(diagnostics)
        )

    @classmethod
    def new_success(cls, interp: interpreter.Interpreter) -> 'CompileResult':
        return cls(program=Program(interp))

    @classmethod
    def new_failure(cls, error: errors.CompileError) -> 'CompileResult':
        return cls(diagnostics=[CompileDiagnostic.from_error(e) for e in error.errors])

    @property
    def success(self) -> bool:
        return self._success

    def take_program(self) -> t.Optional[Program]:
        program, self._program = self._program, None
        return program

    def take_diagnostics(self) -> t.Optional[t.List[CompileDiagnostic]]:
        diagnostics, self._diagnostics = self._diagnostics, None
        return diagnostics

    def __repr__(self) -> str:
        return f"CompileResult(success={self._success})"


def compile(
    source: str,
    native_functions: t.Iterable[natives.NativeFunctionSpec] = (),
    *,
    instruction_limit: int = 0,
    stack_limit: int = 1024,
    output: interpreter.OutputT = print,
    fault_policy: natives.NativeFaultPolicy = natives.NativeFaultPolicy.FATAL
) -> CompileResult:
    """
    Compile a script with the given native functions.

    A native `time()` returning the current epoch time in seconds is always
    added after the host's. Duplicate native names raise
    NativeRegistrationError.
    """
    table = natives.build_native_table(native_functions, fault_policy)

    try:
        interp = interpreter.Interpreter.from_source(
            source,
            table,
            instruction_limit=instruction_limit,
            stack_limit=stack_limit,
            output=output
        )
    except errors.CompileError as e:
        logger.debug(f"compile: failed with {len(e.errors)} errors")
        return CompileResult.new_failure(e)

    return CompileResult.new_success(interp)

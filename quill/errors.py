import functools
import math
import typing as t

__all__ = (
    "format_positional_error",
    "QuillError",
    "PositionalError",
    "TokenizeError",
    "ParseError",
    "ParseEofError",
    "CompileError",
    "QuillRuntimeError",
    "ContractViolation",
    "ProgramFinishedError",
    "ReentrantCallError",
    "BridgeFault",
    "UnsupportedValueError",
    "NativeRegistrationError"
)


@functools.lru_cache(128)
def format_positional_error(
    line: int,
    pos: int,
    string: str,
    message: str,
    prior_lines: int = 3
) -> str:
    """Format an error with a caret under the offending column.

    `line` is 1-based, `pos` is the 0-based column within that line.
    """
    source_lines = string.splitlines() or [""]
    zfill = max(1, int(math.log10(len(source_lines))) + 1)
    lines = [f"{n:0{zfill}} {l}" for n, l in enumerate(source_lines, start=1)]

    index = max(0, line - 1)
    printed_lines = lines[max(0, index - prior_lines): index + 1]

    output_lines = [
        *(["..."] if index - prior_lines >= 1 else []),
        *printed_lines,
        " "*(pos + 1 + zfill) + "^",
        f"line {line}: {message}"
    ]

    return "\n".join(output_lines)


class QuillError(Exception):
    """Base class for all quill errors."""
    pass


class PositionalError(QuillError):
    """Generic error that happened somewhere in a script.

    Any error in tokenizing, parsing or compiling should inherit from this.
    `start` is the 0-based offset into the whole script, `pos` the column
    within `line`.
    """
    def __init__(
        self,
        line: int,
        start: int,
        length: int,
        string: str,
        message: str
    ):
        super().__init__(message)
        self.line = line
        self.start = start
        self.length = length
        self.string = string
        self.message = message

    @property
    def pos(self) -> int:
        line_start = self.string.rfind("\n", 0, self.start) + 1
        return self.start - line_start

    def __str__(self) -> str:
        return format_positional_error(
            self.line,
            self.pos,
            self.string,
            self.message
        )


class TokenizeError(PositionalError):
    pass


class ParseError(PositionalError):
    pass


class ParseEofError(ParseError):
    pass


class CompileError(QuillError):
    """
    Raised by the engine compiler with every error found in a script.
    """
    def __init__(self, errors: t.Sequence[PositionalError]):
        super().__init__(f"{len(errors)} compile error{'' if len(errors) == 1 else 's'}")
        self.errors = list(errors)

    def __str__(self) -> str:
        return "\n\n".join(str(e) for e in self.errors)


class QuillRuntimeError(QuillError):
    """
    An error raised while executing a compiled script. Terminates the
    execution it was raised in.
    """
    def __init__(self, message: str, line: t.Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line

    def __str__(self) -> str:
        if self.line is None:
            return self.message

        return f"[line {self.line}] {self.message}"


class ContractViolation(QuillError):
    """
    Misuse of the embedding API, or a broken host/engine invariant.

    These are never converted to diagnostics.
    """
    pass


class ProgramFinishedError(ContractViolation):
    def __init__(self) -> None:
        super().__init__("program has already finished executing")


class ReentrantCallError(ContractViolation):
    def __init__(self) -> None:
        super().__init__("program is already executing (re-entrant run/step)")


class BridgeFault(ContractViolation):
    """
    A native function raised, or returned something that cannot be
    marshalled back into the engine.
    """
    def __init__(self, native_name: str, message: str):
        super().__init__(f"native function '{native_name}': {message}")
        self.native_name = native_name


class UnsupportedValueError(ContractViolation):
    def __init__(self, value: t.Any, direction: str):
        super().__init__(f"cannot marshal {type(value).__name__} {direction}")
        self.value = value


class NativeRegistrationError(ContractViolation):
    pass

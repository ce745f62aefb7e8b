import argparse
import logging
import pathlib
import sys

import quill


def set_up_argparse() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quill",
        description=(
            "A basic interpreter for quill scripts."
        )
    )

    parser.add_argument(
        "file", type=str, help=(
            "The file to interpret."
        )
    )

    parser.add_argument(
        "--step", action="store_true", help=(
            "Execute one instruction at a time, printing each instruction to stderr."
        )
    )

    parser.add_argument(
        "--limit", type=int, default=0, help=(
            "Maximum number of instructions to execute. 0 means no limit."
        )
    )

    parser.add_argument(
        "-v", "--verbose", action="store_true", help=(
            "Enable debug logging."
        )
    )

    return parser


def print_diagnostics(script: str, diagnostics: list[quill.CompileDiagnostic]) -> None:
    for diag in diagnostics:
        error = quill.PositionalError(diag.line, diag.start, diag.len, script, diag.message)
        print(f"error:\n{error}", file=sys.stderr)


def execute(program: quill.Program, step: bool) -> quill.ExecutionOutcome:
    if not step:
        return program.run()

    while True:
        print(program.next_instruction(), file=sys.stderr)
        outcome = program.step()
        if outcome.finished:
            return outcome


def main() -> None:
    parser = set_up_argparse()
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    file = pathlib.Path(args.file)

    if not file.exists():
        parser.error(f"file: cannot find {file}")

    if not file.is_file():
        parser.error(f"file: {file} is not a file")

    with open(file, 'r') as f:
        script = f.read()

    result = quill.compile(script, instruction_limit=args.limit)

    program = result.take_program()

    if program is None:
        print_diagnostics(script, result.take_diagnostics() or [])
        sys.exit(1)

    outcome = execute(program, args.step)

    if outcome.error is not None:
        print(f"runtime error:\n{outcome.error}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

# tests/conftest.py
"""
Shared fixtures for the quill test suite.
"""

import pytest

import quill
from quill.interpreter import Interpreter


@pytest.fixture
def output():
    """A list collecting everything scripts print."""
    return []


@pytest.fixture
def compile_program(output):
    """Compile a script that must succeed and return its Program."""
    def _compile(source, natives=(), **kwargs):
        kwargs.setdefault("output", output.append)
        result = quill.compile(source, natives, **kwargs)
        assert result.success, result.take_diagnostics()
        program = result.take_program()
        assert program is not None
        return program

    return _compile


@pytest.fixture
def make_interpreter(output):
    """Build an engine interpreter directly from source."""
    def _make(source, natives=(), **kwargs):
        kwargs.setdefault("output", output.append)
        return Interpreter.from_source(source, natives, **kwargs)

    return _make


def step_to_completion(program):
    """Step a program until it finishes, returning every outcome."""
    outcomes = []
    while True:
        outcome = program.step()
        outcomes.append(outcome)
        if outcome.finished:
            return outcomes

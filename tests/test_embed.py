# tests/test_embed.py
"""
Tests for the host-facing API: compile results, run/step, and native calls
across the host boundary.
"""

import time

import pytest

import quill
from quill import errors
from quill.embed import ExecutionOutcome, ProgramState, RuntimeDiagnostic
from quill.natives import NativeFaultPolicy, NativeFunctionSpec
from tests.conftest import step_to_completion


EQUIVALENCE_SCRIPTS = [
    "print 1 + 2;",
    "var i = 0; while (i < 5) { print i; i = i + 1; }",
    'for (var i = 0; i < 3; i = i + 1) { if (i == 1) print "one"; else print i; }',
    "var a = 1;\nprint a;\nprint a + nil;",
    "print undefined_name;",
    "",
]


class TestCompile:

    def test_success(self):
        result = quill.compile("print 1;")

        assert result.success
        assert isinstance(result.take_program(), quill.Program)
        assert result.take_diagnostics() is None

    def test_failure(self):
        result = quill.compile("print ;")

        assert not result.success
        assert result.take_program() is None

        diagnostics = result.take_diagnostics()
        assert len(diagnostics) >= 1
        assert all(d.line >= 1 for d in diagnostics)

    def test_diagnostic_shape(self):
        result = quill.compile("var a = 1;\nprint ;")
        (diag,) = result.take_diagnostics()

        assert diag == quill.CompileDiagnostic(line=2, start=17, len=1, message="Expect expression.")
        assert str(diag) == "[line 2] Error: Expect expression."

    def test_full_batch(self):
        result = quill.compile("print ;\nvar 1 = 2;\nprint 3")
        assert [d.line for d in result.take_diagnostics()] == [1, 2, 3]

    def test_take_program_once(self):
        result = quill.compile("print 1;")

        assert result.take_program() is not None
        assert result.take_program() is None
        assert result.success

    def test_take_diagnostics_once(self):
        result = quill.compile("print ;")

        assert result.take_diagnostics()
        assert result.take_diagnostics() is None

    def test_new_program_is_ready(self):
        program = quill.compile("print 1;").take_program()
        assert program.state == ProgramState.READY
        assert not program.finished

    def test_host_time_is_rejected(self):
        with pytest.raises(errors.NativeRegistrationError):
            quill.compile("print 1;", [NativeFunctionSpec("time", 0, lambda: 0)])

    def test_duplicate_natives_are_rejected(self):
        specs = [NativeFunctionSpec("f", 0, lambda: 0), NativeFunctionSpec("f", 1, lambda x: x)]

        with pytest.raises(errors.NativeRegistrationError):
            quill.compile("print 1;", specs)

    def test_script_cannot_redefine_native(self):
        result = quill.compile("var time = 1;")

        assert not result.success
        assert result.take_diagnostics()[0].message == "Cannot redefine native function 'time'."

    def test_unknown_native_name_is_not_resolved(self, compile_program):
        # Only registered names resolve to natives, so this fails at runtime.
        outcome = compile_program("add(1, 2);").run()
        assert outcome.runtime_error == "Undefined variable 'add'."


class TestRun:

    def test_completes(self, compile_program, output):
        program = compile_program("print 1 + 2;")
        outcome = program.run()

        assert outcome == ExecutionOutcome(finished=True, error=None)
        assert outcome.runtime_error is None
        assert output == ["3"]
        assert program.state == ProgramState.FINISHED

    def test_runtime_error(self, compile_program):
        outcome = compile_program('print 1;\nprint -"x";').run()

        assert outcome.finished
        assert outcome.error == RuntimeDiagnostic("Operand must be a number.", line=2)
        assert outcome.runtime_error == "Operand must be a number."

    def test_run_after_finish_is_contract_violation(self, compile_program):
        program = compile_program("print 1;")
        program.run()

        with pytest.raises(errors.ProgramFinishedError):
            program.run()

        with pytest.raises(errors.ProgramFinishedError):
            program.step()

    def test_run_after_error_is_contract_violation(self, compile_program):
        program = compile_program("print nope;")
        assert program.run().error is not None

        with pytest.raises(errors.ProgramFinishedError):
            program.run()

    def test_run_resumes_suspended_program(self, compile_program, output):
        program = compile_program("print 1; print 2;")

        program.step()
        program.step()
        assert program.state == ProgramState.SUSPENDED
        assert output == ["1"]

        assert program.run().finished
        assert output == ["1", "2"]

    def test_instruction_limit_option(self, compile_program):
        outcome = compile_program("while (true) {}", instruction_limit=50).run()
        assert outcome.runtime_error == "Exceeded maximum instruction limit of 50."

    def test_failing_output_sink_finishes_program(self):
        def sink(text):
            raise OSError("disk full")

        program = quill.compile("print 1; print 2;", output=sink).take_program()

        with pytest.raises(OSError):
            program.run()

        assert program.state == ProgramState.FINISHED
        with pytest.raises(errors.ProgramFinishedError):
            program.run()

    def test_failing_output_sink_while_stepping(self):
        def sink(text):
            raise OSError("disk full")

        program = quill.compile("print 1;", output=sink).take_program()
        assert program.step() == ExecutionOutcome(finished=False)

        with pytest.raises(OSError):
            program.step()

        assert program.finished
        with pytest.raises(errors.ProgramFinishedError):
            program.step()


class TestStep:

    def test_error_on_third_instruction(self, compile_program):
        program = compile_program('1 + -"x";')

        first = program.step()
        second = program.step()
        third = program.step()

        assert first == ExecutionOutcome(finished=False)
        assert second == ExecutionOutcome(finished=False)
        assert third.finished
        assert third.runtime_error == "Operand must be a number."

        with pytest.raises(errors.ProgramFinishedError):
            program.step()

    def test_single_terminal_outcome(self, compile_program):
        outcomes = step_to_completion(compile_program("var a = 1; print a;"))

        assert all(not o.finished for o in outcomes[:-1])
        assert outcomes[-1] == ExecutionOutcome(finished=True)
        assert len(outcomes) == 5

    def test_empty_program_finishes_on_first_step(self, compile_program):
        assert compile_program("").step() == ExecutionOutcome(finished=True)

    def test_state_transitions(self, compile_program):
        program = compile_program("print 1;")

        assert program.state == ProgramState.READY
        program.step()
        assert program.state == ProgramState.SUSPENDED
        step_to_completion(program)
        assert program.state == ProgramState.FINISHED

    @pytest.mark.parametrize("source", EQUIVALENCE_SCRIPTS)
    def test_step_matches_run(self, source):
        run_output = []
        step_output = []

        ran = quill.compile(source, output=run_output.append).take_program().run()
        stepped = step_to_completion(
            quill.compile(source, output=step_output.append).take_program()
        )[-1]

        assert ran == stepped
        assert run_output == step_output

    def test_inspection(self, compile_program):
        program = compile_program("var a = 1;\nprint a;")

        assert program.current_line == 1
        assert "CONSTANT" in program.next_instruction()
        assert program.instruction_count == 0

        program.step()
        program.step()

        assert program.current_line == 2
        assert program.instruction_count == 2

        step_to_completion(program)
        assert program.current_line is None
        assert program.next_instruction() is None


class TestNativeCalls:

    def test_add_scenario(self, compile_program):
        calls = []

        def add(a, b):
            calls.append([a, b])
            return a + b

        program = compile_program("add(2, 3);", [NativeFunctionSpec("add", 2, add)])
        outcome = program.run()

        assert outcome == ExecutionOutcome(finished=True, error=None)
        assert calls == [[2.0, 3.0]]

    def test_return_value_reaches_script(self, compile_program, output):
        table = quill.NativeTable()

        @table.native()
        def greet(name):
            return "hello " + name

        @table.native()
        def is_zero(n):
            return n == 0

        compile_program('print greet("quill"); print is_zero(0); print is_zero(1);', table).run()
        assert output == ["hello quill", "true", "false"]

    def test_none_return_is_nil(self, compile_program, output):
        compile_program("print noop();", [NativeFunctionSpec("noop", 0, lambda: None)]).run()
        assert output == ["nil"]

    def test_arity_mismatch(self, compile_program):
        program = compile_program("add(1);", [NativeFunctionSpec("add", 2, lambda a, b: a + b)])
        assert program.run().runtime_error == "Expected 2 arguments but got 1."

    def test_time_is_injected(self, compile_program):
        seen = []
        program = compile_program("record(time());", [NativeFunctionSpec("record", 1, seen.append)])

        assert program.run().error is None
        assert len(seen) == 1
        assert isinstance(seen[0], float)
        assert abs(seen[0] - time.time()) < 5

    def test_failing_native_is_fatal(self, compile_program):
        def boom():
            raise RuntimeError("host failure")

        program = compile_program("boom();", [NativeFunctionSpec("boom", 0, boom)])

        with pytest.raises(errors.BridgeFault):
            program.run()

        assert program.finished
        with pytest.raises(errors.ProgramFinishedError):
            program.step()

    def test_unmarshallable_return_is_fatal(self, compile_program):
        program = compile_program("f();", [NativeFunctionSpec("f", 0, lambda: object())])

        with pytest.raises(errors.BridgeFault):
            program.step()
            program.step()

    def test_native_argument_is_fatal(self, compile_program):
        program = compile_program("f(time);", [NativeFunctionSpec("f", 1, lambda x: x)])

        with pytest.raises(errors.BridgeFault) as excinfo:
            program.run()

        assert isinstance(excinfo.value.__cause__, errors.UnsupportedValueError)

    def test_runtime_error_policy(self, compile_program):
        def boom():
            raise RuntimeError("host failure")

        program = compile_program(
            "boom();",
            [NativeFunctionSpec("boom", 0, boom)],
            fault_policy=NativeFaultPolicy.RUNTIME_ERROR
        )
        outcome = program.run()

        assert outcome.finished
        assert "host failure" in outcome.runtime_error
        assert outcome.error.line == 1

    def test_reentrant_call_is_rejected(self, compile_program):
        holder = {}

        def reenter():
            holder["program"].step()

        program = compile_program("reenter();", [NativeFunctionSpec("reenter", 0, reenter)])
        holder["program"] = program

        with pytest.raises(errors.BridgeFault) as excinfo:
            program.run()

        assert isinstance(excinfo.value.__cause__, errors.ReentrantCallError)

    def test_overflowing_return_is_fatal(self, compile_program, output):
        program = compile_program("print big(); print 2;", [NativeFunctionSpec("big", 0, lambda: 10**400)])

        with pytest.raises(errors.BridgeFault):
            program.run()

        assert program.state == ProgramState.FINISHED
        assert output == []
        with pytest.raises(errors.ProgramFinishedError):
            program.run()

    def test_overflowing_return_runtime_error_policy(self, compile_program, output):
        program = compile_program(
            "print big(); print 2;",
            [NativeFunctionSpec("big", 0, lambda: 10**400)],
            fault_policy=NativeFaultPolicy.RUNTIME_ERROR
        )
        outcome = program.run()

        assert outcome.finished
        assert "big" in outcome.runtime_error
        assert output == []

    def test_unicode_native_name(self, compile_program, output):
        compile_program("print café();", [NativeFunctionSpec("café", 0, lambda: "ok")]).run()
        assert output == ["ok"]


class TestLargeInput:

    def test_deep_nesting_is_a_diagnostic(self):
        result = quill.compile("print " + "(" * 100 + "1" + ")" * 100 + ";")

        assert not result.success
        assert [d.message for d in result.take_diagnostics()] == ["Nesting too deep."]

    def test_deep_blocks_are_a_diagnostic(self):
        result = quill.compile("{" * 200 + "}" * 200)
        assert not result.success

    def test_nesting_below_limit_runs(self, compile_program, output):
        compile_program("print " + "(" * 50 + "1 + 2" + ")" * 50 + ";").run()
        assert output == ["3"]

    def test_long_arithmetic_chain(self, compile_program, output):
        compile_program("print " + " + ".join(["1"] * 5000) + ";").run()
        assert output == ["5000"]

    def test_long_logical_chain(self, compile_program, output):
        source = "print " + " and ".join(["true"] * 3000) + " or false;"
        compile_program(source).run()
        assert output == ["true"]

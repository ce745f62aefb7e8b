"""
Native functions: host callables made callable from inside scripts.

Every host function is wrapped into a `NativeFunction`, whose `function`
takes a sequence of engine values and returns one. That is the only calling
convention the interpreter knows about.
"""

import dataclasses
import enum
import inspect
import logging
import time
import typing as t

from . import ast, datatypes, errors

__all__ = (
    "NativeFunction",
    "NativeFunctionSpec",
    "NativeFaultPolicy",
    "NativeTable",
    "NativeCallT",
    "HostCallableT",
    "into_native",
    "time_native",
    "build_native_table",
    "MAX_ARITY"
)

logger = logging.getLogger(__name__)

MAX_ARITY = 255

NativeCallT = t.Callable[[t.Sequence[datatypes.Value]], datatypes.Value]
HostCallableT = t.Callable[..., t.Any]
HostCallableTV = t.TypeVar("HostCallableTV", bound=HostCallableT)


class NativeFaultPolicy(enum.Enum):
    """
    What happens when a native function raises or returns something that
    cannot be marshalled.
    """
    # Raise BridgeFault out of run/step.
    FATAL = enum.auto()
    # Terminate the execution with a runtime error.
    RUNTIME_ERROR = enum.auto()


@dataclasses.dataclass(frozen=True)
class NativeFunction:
    """A function in the interpreter's calling convention."""
    name: str
    arity: int
    function: NativeCallT


@dataclasses.dataclass(frozen=True)
class NativeFunctionSpec:
    """A host function to register with a script."""
    name: str
    arity: int
    implementation: HostCallableT

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not ast.is_identifier(self.name):
            raise ValueError(f"native function name {self.name!r} is not a valid identifier")

        if isinstance(self.arity, bool) or not isinstance(self.arity, int):
            raise TypeError(f"{self.name}: arity must be an int")

        if not 0 <= self.arity <= MAX_ARITY:
            raise ValueError(f"{self.name}: arity must be between 0 and {MAX_ARITY}")

        if not callable(self.implementation):
            raise TypeError(f"{self.name}: implementation is not callable")


def _fault(name: str, message: str, policy: NativeFaultPolicy) -> errors.QuillError:
    if policy == NativeFaultPolicy.RUNTIME_ERROR:
        return errors.QuillRuntimeError(f"Native function '{name}' failed: {message}")

    return errors.BridgeFault(name, message)


def into_native(
    spec: NativeFunctionSpec,
    fault_policy: NativeFaultPolicy = NativeFaultPolicy.FATAL
) -> NativeFunction:
    """
    Wrap a host function so the interpreter can call it.

    Arguments are converted with `to_host` and passed positionally, in
    order. The return value is converted back with `from_host`.
    """
    name = spec.name
    implementation = spec.implementation

    def _call(values: t.Sequence[datatypes.Value]) -> datatypes.Value:
        try:
            host_args = [datatypes.to_host(v) for v in values]
        except errors.UnsupportedValueError as e:
            raise _fault(name, f"cannot pass argument: {e}", fault_policy) from e

        logger.debug(f"native {name}: call with {host_args!r}")

        try:
            result = implementation(*host_args)
        except Exception as e:
            raise _fault(name, f"raised {type(e).__name__}: {e}", fault_policy) from e

        try:
            return datatypes.from_host(result)
        except errors.UnsupportedValueError as e:
            raise _fault(name, f"returned unsupported value {result!r}", fault_policy) from e

    return NativeFunction(name, spec.arity, _call)


def _time(_: t.Sequence[datatypes.Value]) -> datatypes.Value:
    return datatypes.Value.number(time.time())


time_native = NativeFunction("time", 0, _time)


def build_native_table(
    specs: t.Iterable[NativeFunctionSpec],
    fault_policy: NativeFaultPolicy = NativeFaultPolicy.FATAL
) -> t.Sequence[NativeFunction]:
    """
    Bridge host specs in registration order and append the built-in `time`.

    Duplicate names, including a host function named `time`, raise
    NativeRegistrationError.
    """
    table: t.MutableSequence[NativeFunction] = []
    seen: t.Set[str] = set()

    for spec in specs:
        if spec.name == time_native.name:
            raise errors.NativeRegistrationError(
                f"'{spec.name}' is a built-in native function and cannot be registered"
            )

        if spec.name in seen:
            raise errors.NativeRegistrationError(
                f"native function '{spec.name}' is registered more than once"
            )

        seen.add(spec.name)
        table.append(into_native(spec, fault_policy))
        logger.debug(f"Register native function {spec.name}/{spec.arity}")

    table.append(time_native)
    return table


class NativeTable(list[NativeFunctionSpec]):
    """
    A list of native function specs that can also be filled with a
    decorator:

        natives = NativeTable()

        @natives.native(arity=2)
        def add(a, b):
            return a + b
    """
    def native(
        self,
        arity: t.Optional[int] = None,
        name: str = ""
    ) -> t.Callable[[HostCallableTV], HostCallableTV]:
        def _(fn: HostCallableTV) -> HostCallableTV:
            self.add(fn, arity, name)
            return fn

        return _

    def add(
        self,
        fn: HostCallableT,
        arity: t.Optional[int] = None,
        name: str = ""
    ) -> NativeFunctionSpec:
        """
        Register fn. If arity is not given, it is the number of positional
        parameters fn declares.
        """
        if not name:
            name = fn.__name__

        if arity is None:
            arity = len([
                p for p in inspect.signature(fn).parameters.values()
                if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
            ])

        spec = NativeFunctionSpec(name, arity, fn)
        self.append(spec)
        return spec

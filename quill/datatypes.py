# Values, and conversions between engine values and plain Python values.

import dataclasses
import enum
import numbers
import typing as t

from . import errors

__all__ = (
    "ValueType",
    "Value",
    "NULL",
    "TRUE",
    "FALSE",
    "HostValue",
    "to_host",
    "from_host",
    "is_falsey",
    "format_value"
)

HostValue = t.Union[float, bool, str, None]


class ValueType(enum.Enum):
    NUMBER = enum.auto()
    BOOL = enum.auto()
    STRING = enum.auto()
    NULL = enum.auto()
    NATIVE = enum.auto()


@dataclasses.dataclass(frozen=True)
class Value:
    """
    An engine value. NATIVE values hold a `quill.natives.NativeFunction`
    and never cross into the host.
    """
    type: ValueType
    data: t.Any = None

    @staticmethod
    def number(n: float) -> 'Value':
        return Value(ValueType.NUMBER, float(n))

    @staticmethod
    def boolean(b: bool) -> 'Value':
        return TRUE if b else FALSE

    @staticmethod
    def string(s: str) -> 'Value':
        return Value(ValueType.STRING, s)

    @staticmethod
    def native(fn: t.Any) -> 'Value':
        return Value(ValueType.NATIVE, fn)

    @property
    def is_number(self) -> bool:
        return self.type == ValueType.NUMBER

    @property
    def is_string(self) -> bool:
        return self.type == ValueType.STRING

    def __str__(self) -> str:
        return format_value(self)


NULL = Value(ValueType.NULL)
TRUE = Value(ValueType.BOOL, True)
FALSE = Value(ValueType.BOOL, False)


def to_host(value: Value) -> HostValue:
    if value.type == ValueType.NUMBER:
        return float(value.data)
    elif value.type == ValueType.BOOL:
        return bool(value.data)
    elif value.type == ValueType.STRING:
        return str(value.data)
    elif value.type == ValueType.NULL:
        return None

    raise errors.UnsupportedValueError(value.data, "to host")


def from_host(obj: t.Any) -> Value:
    # Order matters. Numbers are checked before bools, and bool is excluded
    # from the numeric check since it subclasses int.
    if obj is None:
        return NULL
    elif isinstance(obj, numbers.Real) and not isinstance(obj, bool):
        try:
            return Value.number(float(obj))
        except (OverflowError, ValueError, TypeError) as e:
            raise errors.UnsupportedValueError(obj, "from host") from e
    elif isinstance(obj, bool):
        return Value.boolean(obj)
    elif isinstance(obj, str):
        return Value.string(obj)

    raise errors.UnsupportedValueError(obj, "from host")


def is_falsey(value: Value) -> bool:
    # nil and false are falsey, everything else is truthy.
    return value.type == ValueType.NULL or (
        value.type == ValueType.BOOL and not value.data
    )


def format_value(value: Value) -> str:
    if value.type == ValueType.NUMBER:
        n = value.data
        if n.is_integer():
            return str(int(n))
        return repr(n)
    elif value.type == ValueType.BOOL:
        return "true" if value.data else "false"
    elif value.type == ValueType.STRING:
        return value.data
    elif value.type == ValueType.NULL:
        return "nil"
    else:
        return f"<native fn {value.data.name}>"

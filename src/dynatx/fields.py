"""Per-attribute state tracking.

A field remembers the value last read from the server (``initial_value``)
next to its current value, and renders its own contribution to update and
condition expressions. ``None`` means the attribute is absent: it is never
written, and setting a field to ``None`` removes the attribute.
"""

from __future__ import annotations

import copy
from dataclasses import MISSING, dataclass
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal

from .errors import InvalidFieldError, InvalidOptionsError


class KeyType(StrEnum):
    PARTITION = "HASH"
    SORT = "RANGE"


class FieldKind(StrEnum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"

    @property
    def structured(self) -> bool:
        return self in (FieldKind.OBJECT, FieldKind.ARRAY)

    def accepts(self, value: Any) -> bool:
        if self is FieldKind.STRING:
            return isinstance(value, str)
        if self is FieldKind.NUMBER:
            return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)
        if self is FieldKind.BOOLEAN:
            return isinstance(value, bool)
        if self is FieldKind.OBJECT:
            return isinstance(value, dict)
        return isinstance(value, list)

    def capture(self, value: Any) -> Any:
        # Structured values are compared against a private copy so in-place
        # edits through the returned reference still count as mutations.
        if self.structured:
            return copy.deepcopy(value)
        return value


@dataclass(frozen=True)
class UpdateClause:
    action: Literal["SET", "REMOVE"]
    expression: str
    values: dict[str, Any]


@dataclass(frozen=True)
class ConditionClause:
    expression: str
    values: dict[str, Any]


def _coerce_key_type(key_type: Any) -> KeyType | None:
    if key_type is None or isinstance(key_type, KeyType):
        return key_type
    try:
        return KeyType(key_type)
    except ValueError:
        raise InvalidOptionsError(
            "key_type",
            f"Invalid value {key_type!r}. Valid values are None, {', '.join(k.value for k in KeyType)}",
        ) from None


def same_value(a: Any, b: Any) -> bool:
    """Deep equality that keeps booleans apart from the numbers 0 and 1."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, dict):
        return (
            isinstance(b, dict)
            and a.keys() == b.keys()
            and all(same_value(value, b[key]) for key, value in a.items())
        )
    if isinstance(a, list):
        return (
            isinstance(b, list)
            and len(a) == len(b)
            and all(same_value(x, y) for x, y in zip(a, b, strict=True))
        )
    return a == b


def _add_numbers(a: Any, b: Any) -> Any:
    if isinstance(a, Decimal) and isinstance(b, float):
        b = Decimal(str(b))
    elif isinstance(b, Decimal) and isinstance(a, float):
        a = Decimal(str(a))
    return a + b


class Field:
    __slots__ = (
        "_kind",
        "_key_type",
        "_optional",
        "_immutable",
        "_default",
        "_name",
        "_value",
        "_initial_value",
        "_read",
        "_written",
        "_is_setup",
    )

    def __init__(
        self,
        kind: FieldKind,
        *,
        key_type: KeyType | str | None = None,
        optional: bool = False,
        immutable: bool | None = None,
        default: Any = MISSING,
    ) -> None:
        if not isinstance(kind, FieldKind):
            raise InvalidOptionsError("kind", f"Expected FieldKind, got {kind!r}")
        resolved_key_type = _coerce_key_type(key_type)
        if not isinstance(optional, bool):
            raise InvalidOptionsError("optional", "Expected bool")
        if immutable is not None and not isinstance(immutable, bool):
            raise InvalidOptionsError("immutable", "Expected bool")

        if resolved_key_type is not None:
            if default is not MISSING:
                raise InvalidOptionsError("default", "Key fields cannot have a default")
            if immutable is False:
                raise InvalidOptionsError("immutable", "Keys must be immutable")
            if optional:
                raise InvalidOptionsError("optional", "Keys must never be optional")
            immutable = True

        self._kind = kind
        self._key_type = resolved_key_type
        self._optional = optional
        self._immutable = bool(immutable)
        self._default = copy.deepcopy(default)
        self._name: str | None = None
        self._value: Any = None
        self._initial_value: Any = None
        self._read = False
        self._written = False
        self._is_setup = False

        if default is not MISSING:
            self.set(copy.deepcopy(default))
            self._written = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, value={self._value!r})"

    @property
    def kind(self) -> FieldKind:
        return self._kind

    @property
    def key_type(self) -> KeyType | None:
        return self._key_type

    @property
    def optional(self) -> bool:
        return self._optional

    @property
    def immutable(self) -> bool:
        return self._immutable

    @property
    def default(self) -> Any:
        return copy.deepcopy(self._default)

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def aws_name(self) -> str:
        return f"#{self._name}"

    @property
    def initial_value(self) -> Any:
        return self._initial_value

    @property
    def value(self) -> Any:
        """The current value, without marking the field as read."""
        return self._value

    @property
    def read(self) -> bool:
        return self._read

    @property
    def written(self) -> bool:
        return self._written

    @property
    def accessed(self) -> bool:
        """Whether callers read or wrote the field. Drives update locking."""
        return self._read or self._written

    @property
    def mutated(self) -> bool:
        return not same_value(self._value, self._initial_value)

    def copy(self) -> Field:
        """Returns a fresh, unbound field declared with the same options."""
        kwargs = self._copy_kwargs()
        if type(self) is Field:
            return Field(self._kind, **kwargs)
        return type(self)(**kwargs)

    def _copy_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"key_type": self._key_type, "optional": self._optional}
        if self._key_type is None:
            kwargs["immutable"] = self._immutable
            if self._default is not MISSING:
                kwargs["default"] = self._default
        return kwargs

    def _bind(self, name: str) -> None:
        if self._name is not None and self._name != name:
            raise InvalidFieldError(self._name, f"is already bound, cannot rename to {name}")
        self._name = name

    def setup(self, server_value: Any) -> None:
        """Captures the value read from the server. May only run once.

        A ``None`` server value means the attribute does not exist on the
        server, in which case any default stays in place as a pending write.
        """
        if self._is_setup:
            raise InvalidFieldError(self._name, "has already been set up")
        if server_value is not None:
            self._initial_value = self._kind.capture(server_value)
            self._value = server_value
        self._is_setup = True

    def _seed(self, value: Any) -> None:
        prev = self._value
        self._value = value
        if value is None:
            return
        try:
            self.validate()
        except InvalidFieldError:
            self._value = prev
            raise

    def get(self) -> Any:
        self._read = True
        return self._value

    def set(self, value: Any) -> None:
        if self._immutable and self._value is not None:
            raise InvalidFieldError(
                self._name, "is immutable so value cannot be changed after first initialized."
            )

        prev = (self._value, self._written)
        self._value = value
        self._written = True
        try:
            self.validate()
        except InvalidFieldError:
            self._value, self._written = prev
            raise

    def validate(self) -> bool:
        value = self._value
        if value is None:
            if not self._optional:
                raise InvalidFieldError(self._name, "is not optional and is unset")
            return True
        if not self._kind.accepts(value):
            raise InvalidFieldError(self._name, f"value {value!r} is not type {self._kind.value}")
        return True

    def update_expression(self, placeholder: str) -> UpdateClause | None:
        if not self.mutated:
            return None
        if self._value is None:
            return UpdateClause(action="REMOVE", expression=self.aws_name, values={})
        return UpdateClause(
            action="SET",
            expression=f"{self.aws_name}={placeholder}",
            values={placeholder: copy.deepcopy(self._value)},
        )

    def condition_expression(self, placeholder: str) -> ConditionClause | None:
        if self._initial_value is None:
            return ConditionClause(expression=f"attribute_not_exists({self.aws_name})", values={})
        return ConditionClause(
            expression=f"{self.aws_name}={placeholder}",
            values={placeholder: copy.deepcopy(self._initial_value)},
        )


class StringField(Field):
    __slots__ = ()

    def __init__(self, **options: Any) -> None:
        super().__init__(FieldKind.STRING, **options)


class BooleanField(Field):
    __slots__ = ()

    def __init__(self, **options: Any) -> None:
        super().__init__(FieldKind.BOOLEAN, **options)


class ObjectField(Field):
    __slots__ = ()

    def __init__(self, **options: Any) -> None:
        super().__init__(FieldKind.OBJECT, **options)


class ArrayField(Field):
    __slots__ = ()

    def __init__(self, **options: Any) -> None:
        super().__init__(FieldKind.ARRAY, **options)


class NumberField(Field):
    """A numeric field that can also be changed by a running delta.

    ``increment_by`` and ``set`` are mutually exclusive. A field changed only
    through ``increment_by`` whose server value is known is written with an
    atomic add and no lock, so concurrent increments do not contend.
    """

    __slots__ = ("_diff",)

    def __init__(self, **options: Any) -> None:
        self._diff: Any = None
        super().__init__(FieldKind.NUMBER, **options)

    def set(self, value: Any) -> None:
        if self._diff is not None:
            raise InvalidFieldError(self._name, "may not mix set and increment_by calls")
        super().set(value)

    def increment_by(self, delta: Any) -> None:
        if not FieldKind.NUMBER.accepts(delta):
            raise InvalidFieldError(self._name, f"increment {delta!r} is not type number")
        if self._diff is None and self.mutated and self._written:
            # A mutation that was never written came from a default or the
            # server, and does not block increments.
            raise InvalidFieldError(self._name, "may not mix set and increment_by calls")

        diff = _add_numbers(0 if self._diff is None else self._diff, delta)
        base = 0 if self._initial_value is None else self._initial_value
        Field.set(self, _add_numbers(base, diff))
        self._diff = diff

    @property
    def should_lock(self) -> bool:
        return self._diff is None or self._initial_value is None

    def update_expression(self, placeholder: str) -> UpdateClause | None:
        if self.should_lock:
            return super().update_expression(placeholder)
        if not self.mutated:
            return None
        return UpdateClause(
            action="SET",
            expression=f"{self.aws_name}={self.aws_name}+{placeholder}",
            values={placeholder: self._diff},
        )

    def condition_expression(self, placeholder: str) -> ConditionClause | None:
        if not self.should_lock:
            return None
        return super().condition_expression(placeholder)

from __future__ import annotations

import copy
import json
from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from .errors import InvalidFieldError, InvalidParameterError
from .fields import Field, FieldKind

if TYPE_CHECKING:
    from .model import Model

SEPARATOR = "\0"
PARTITION_ATTR = "_id"
SORT_ATTR = "_sk"


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def _has_float(value: Any) -> bool:
    if isinstance(value, float):
        return True
    if isinstance(value, dict):
        return any(_has_float(v) for v in value.values())
    if isinstance(value, list):
        return any(_has_float(v) for v in value)
    return False


def _render_component(name: str, value: Any) -> str:
    # Components decode to int or Decimal, which never equal a binary float.
    if _has_float(value):
        raise InvalidFieldError(name, "cannot hold a float in a key, use int or Decimal")
    if isinstance(value, str):
        text = value
    elif isinstance(value, (bool, dict, list)):
        text = json.dumps(value, sort_keys=True, separators=(",", ":"), default=_json_default)
    else:
        text = str(value)
    if SEPARATOR in text:
        raise InvalidFieldError(name, "cannot contain the key separator (null byte)")
    return text


def _parse_component(name: str, kind: FieldKind, text: str) -> Any:
    if kind is FieldKind.STRING:
        return text
    try:
        if kind is FieldKind.NUMBER:
            number = Decimal(text)
            if number == number.to_integral_value() and "." not in text and "e" not in text.lower():
                return int(number)
            return number
        return json.loads(text, parse_float=Decimal)
    except (InvalidOperation, ValueError):
        raise InvalidParameterError(name, f"Cannot decode {text!r} as {kind.value}") from None


def encode_compound_value(order: Sequence[str], fields: Mapping[str, Field], values: Mapping[str, Any]) -> Any:
    """Encodes the named components into one attribute value.

    A single string or number component is stored as-is. Anything else is
    rendered to text and joined with ``SEPARATOR``.
    """
    if len(order) == 1:
        name = order[0]
        value = values[name]
        text = _render_component(name, value)
        if fields[name].kind in (FieldKind.STRING, FieldKind.NUMBER):
            return value
        return text
    return SEPARATOR.join(_render_component(name, values[name]) for name in order)


def decode_compound_value(
    order: Sequence[str], fields: Mapping[str, Field], encoded: Any, attr_name: str
) -> dict[str, Any]:
    if len(order) == 1:
        name = order[0]
        kind = fields[name].kind
        if kind is FieldKind.NUMBER and not isinstance(encoded, str):
            return {name: encoded}
        return {name: _parse_component(name, kind, str(encoded))}

    pieces = str(encoded).split(SEPARATOR)
    if len(pieces) != len(order):
        raise InvalidParameterError(
            attr_name, f"{attr_name} has incorrect number of components: expected {len(order)}, got {len(pieces)}"
        )
    return {name: _parse_component(name, fields[name].kind, piece) for name, piece in zip(order, pieces, strict=True)}


def format_identity(table_name: str, encoded_keys: Mapping[str, Any]) -> str:
    parts = [table_name, f"{PARTITION_ATTR}={encoded_keys.get(PARTITION_ATTR)!s}"]
    if encoded_keys.get(SORT_ATTR) is not None:
        parts.append(f"{SORT_ATTR}={encoded_keys[SORT_ATTR]!s}")
    return " ".join(parts).replace(SEPARATOR, "\\0")


class Key:
    """Identifies one potential record: a model class plus its composite id.

    ``composite_id`` may be a plain value for models keyed by a single
    partition field, e.g. ``Key(Order, "o-1")``.
    """

    __slots__ = ("model_cls", "composite_id", "encoded_keys")

    def __init__(self, model_cls: type[Model], composite_id: Any) -> None:
        from .model import Model

        if not (isinstance(model_cls, type) and issubclass(model_cls, Model)) or model_cls is Model:
            raise InvalidParameterError("model_cls", "Model class must be a subclass of Model")
        if composite_id is None:
            raise InvalidParameterError("composite_id", "Expecting an id")

        normalized = model_cls.normalize_composite_id(composite_id)
        self.model_cls = model_cls
        self.encoded_keys = model_cls.encode_keys(normalized)
        self.composite_id = copy.deepcopy(normalized)

    @property
    def table_name(self) -> str:
        return self.model_cls.table_name

    def _identity(self) -> tuple[str, tuple[tuple[str, Any], ...]]:
        return self.table_name, tuple(sorted(self.encoded_keys.items()))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())

    def __repr__(self) -> str:
        return f"Key({self.model_cls.__name__}, {self.composite_id!r})"


class UniqueKeyList(list[Key]):
    """A list of keys which silently drops keys it already holds."""

    def __init__(self, keys: Iterable[Key] = ()) -> None:
        super().__init__()
        self.extend(keys)

    def append(self, key: Key) -> None:
        if key not in self:
            super().append(key)

    def extend(self, keys: Iterable[Key]) -> None:
        for key in keys:
            self.append(key)

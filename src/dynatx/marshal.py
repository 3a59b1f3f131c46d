from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _to_wire(value: Any) -> Any:
    # TypeSerializer rejects floats.
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {k: _to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_wire(v) for v in value]
    return value


def _from_wire(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return value
    if isinstance(value, dict):
        return {k: _from_wire(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_wire(v) for v in value]
    return value


def marshal_value(value: Any) -> dict[str, Any]:
    return _serializer.serialize(_to_wire(value))


def marshal_item(item: Mapping[str, Any]) -> dict[str, Any]:
    return {k: marshal_value(v) for k, v in item.items()}


def unmarshal_value(av: Mapping[str, Any]) -> Any:
    return _from_wire(_deserializer.deserialize(dict(av)))


def unmarshal_item(item: Mapping[str, Any] | None) -> dict[str, Any]:
    if not item:
        return {}
    return {k: unmarshal_value(v) for k, v in item.items()}

from __future__ import annotations

import copy
import random
import time
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar

from .errors import (
    ConditionFailedError,
    InvalidParameterError,
    ModelAlreadyExistsError,
    ModelDefinitionError,
    ModelStateError,
)
from .fields import Field, KeyType, StringField
from .keys import (
    PARTITION_ATTR,
    SORT_ATTR,
    Key,
    decode_compound_value,
    encode_compound_value,
    format_identity,
)
from .retry import BackoffPolicy, retry_with_backoff

if TYPE_CHECKING:
    from .store import Store

WRITE_BACKOFF = BackoffPolicy(retries=3, initial=0.04)

_RESERVED_ATTRS = frozenset({"params", "table_name"})


class Method(StrEnum):
    CREATE = "CREATE"
    GET = "GET"


class _FieldAccessor:
    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __get__(self, instance: Model | None, owner: type[Model]) -> Any:
        if instance is None:
            return owner._declared_fields[self.name]
        return instance.get(self.name)

    def __set__(self, instance: Model, value: Any) -> None:
        instance.set(self.name, value)


class _Expressions:
    def __init__(self) -> None:
        self.names: dict[str, str] = {}
        self.values: dict[str, Any] = {}
        self._count = 0

    def placeholder(self) -> str:
        return f":_{self._count}"

    def use(self, field: Field, values: Mapping[str, Any]) -> None:
        self.names[field.aws_name] = field.name or ""
        if values:
            self.values.update(values)
            self._count += 1

    def not_exists(self) -> str:
        self.names[f"#{PARTITION_ATTR}"] = PARTITION_ATTR
        return f"attribute_not_exists(#{PARTITION_ATTR})"

    def apply(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.names:
            req["ExpressionAttributeNames"] = self.names
        if self.values:
            req["ExpressionAttributeValues"] = self.values
        return req


class Model:
    """Base class for records.

    Declare fields as class attributes::

        class Order(Model):
            customer = StringField(key_type=KeyType.PARTITION)
            placed_at = NumberField(key_type=KeyType.SORT)
            total = NumberField(default=0)

    A model without a partition key field gets ``id = StringField(key_type=PARTITION)``.
    Key fields are stored encoded in the ``_id`` and ``_sk`` attributes.
    """

    table_name: ClassVar[str]
    _declared_fields: ClassVar[dict[str, Field]] = {}
    _partition_keys: ClassVar[tuple[str, ...]] = ()
    _sort_keys: ClassVar[tuple[str, ...]] = ()

    _sealed = False

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)

        reserved = _RESERVED_ATTRS | frozenset(dir(Model))
        declared: dict[str, Field] = {}
        for base in reversed(cls.__mro__[1:]):
            declared.update(getattr(base, "_declared_fields", {}))

        seen: dict[int, str] = {id(field): name for name, field in declared.items()}
        own = [(name, value) for name, value in vars(cls).items() if isinstance(value, Field)]
        for name, field in own:
            if name.startswith("_"):
                raise ModelDefinitionError(f"{cls.__name__}.{name}: field names must not start with '_'")
            if name in reserved:
                raise ModelDefinitionError(f"{cls.__name__}.{name}: field name shadows a Model attribute")
            if id(field) in seen and seen[id(field)] != name:
                raise ModelDefinitionError(
                    f"{cls.__name__}.{name}: field instance is already declared as {seen[id(field)]}"
                )
            seen[id(field)] = name
            field._bind(name)
            declared[name] = field

        if not any(field.key_type is KeyType.PARTITION for field in declared.values()):
            if "id" in declared:
                raise ModelDefinitionError(f"{cls.__name__}.id: must be a partition key when no other is declared")
            default_id = StringField(key_type=KeyType.PARTITION)
            default_id._bind("id")
            declared = {"id": default_id, **declared}

        for name in declared:
            if not isinstance(vars(cls).get(name), _FieldAccessor):
                setattr(cls, name, _FieldAccessor(name))

        if "table_name" not in vars(cls):
            cls.table_name = cls.__name__
        if not isinstance(cls.table_name, str) or not cls.table_name:
            raise ModelDefinitionError(f"{cls.__name__}: table_name must be a non-empty string")

        cls._declared_fields = declared
        cls._partition_keys = tuple(n for n, f in declared.items() if f.key_type is KeyType.PARTITION)
        cls._sort_keys = tuple(n for n, f in declared.items() if f.key_type is KeyType.SORT)

    def __init__(self, params: Mapping[str, Any] | None = None) -> None:
        if type(self) is Model:
            raise ModelDefinitionError("Model must be subclassed")

        fields: dict[str, Field] = {}
        for name, template in type(self)._declared_fields.items():
            field = template.copy()
            field._bind(name)
            fields[name] = field

        self._fields = fields
        self.params = dict(params or {})
        self._is_new = False
        self._method: Method | None = None
        self._written = False

    def __setattr__(self, name: str, value: Any) -> None:
        if self._sealed and name not in self.__dict__ and not hasattr(type(self), name):
            raise AttributeError(f"{type(self).__name__} is set up, cannot add attribute {name!r}")
        super().__setattr__(name, value)

    def __repr__(self) -> str:
        if self._method is None:
            return f"<{type(self).__name__} (not set up)>"
        return f"<{type(self).__name__} {self.identity}>"

    # Class-level key handling.

    @classmethod
    def key_names(cls) -> tuple[str, ...]:
        return cls._partition_keys + cls._sort_keys

    @classmethod
    def key(cls, composite_id: Any) -> Key:
        return Key(cls, composite_id)

    @classmethod
    def normalize_composite_id(cls, composite_id: Any) -> dict[str, Any]:
        if isinstance(composite_id, Mapping):
            return dict(composite_id)
        names = cls.key_names()
        if len(names) != 1:
            raise InvalidParameterError(
                "composite_id",
                f"{cls.__name__} has key fields {', '.join(names)}, pass a dict naming each of them",
            )
        return {names[0]: composite_id}

    @classmethod
    def check_composite_id(cls, composite_id: Any) -> None:
        if not isinstance(composite_id, Mapping) or not composite_id:
            raise InvalidParameterError(
                "composite_id",
                "Must be a dict containing at least the partition key. For example {'id': 'some-id'}",
            )

        names = cls.key_names()
        for name in names:
            value = composite_id.get(name)
            if value is None or (isinstance(value, str) and not value):
                raise InvalidParameterError("composite_id", f"Missing value for key field {name}")
            kind = cls._declared_fields[name].kind
            if not kind.accepts(value):
                raise InvalidParameterError("composite_id", f"Key field {name} must be a {kind.value}")
            if isinstance(value, float):
                raise InvalidParameterError("composite_id", f"Key field {name} must be an int or Decimal, not float")

        extra = sorted(set(composite_id) - set(names))
        if extra:
            raise InvalidParameterError("composite_id", f"Non key fields detected: {', '.join(extra)}")

    @classmethod
    def encode_keys(cls, composite_id: Mapping[str, Any]) -> dict[str, Any]:
        cls.check_composite_id(composite_id)
        fields = cls._declared_fields
        keys = {PARTITION_ATTR: encode_compound_value(cls._partition_keys, fields, composite_id)}
        if cls._sort_keys:
            keys[SORT_ATTR] = encode_compound_value(cls._sort_keys, fields, composite_id)
        return keys

    @classmethod
    def decode_item(cls, item: Mapping[str, Any]) -> dict[str, Any]:
        """Maps a stored item back to field values, decoding key components."""
        if PARTITION_ATTR not in item:
            raise InvalidParameterError("item", f"Stored item has no {PARTITION_ATTR} attribute")

        fields = cls._declared_fields
        values = {k: v for k, v in item.items() if k in fields and fields[k].key_type is None}
        values.update(decode_compound_value(cls._partition_keys, fields, item[PARTITION_ATTR], PARTITION_ATTR))
        if cls._sort_keys:
            if SORT_ATTR not in item:
                raise InvalidParameterError("item", f"Stored item has no {SORT_ATTR} attribute")
            values.update(decode_compound_value(cls._sort_keys, fields, item[SORT_ATTR], SORT_ATTR))
        return values

    @classmethod
    def get_params(cls, composite_id: Any, consistent_read: bool = True) -> dict[str, Any]:
        return {
            "TableName": cls.table_name,
            "ConsistentRead": consistent_read,
            "Key": cls.encode_keys(cls.normalize_composite_id(composite_id)),
        }

    # Instance state.

    def get_field(self, name: str) -> Field:
        try:
            return self._fields[name]
        except KeyError:
            raise InvalidParameterError("name", f"{type(self).__name__} has no field {name!r}") from None

    def get(self, name: str) -> Any:
        return self.get_field(name).get()

    def set(self, name: str, value: Any) -> None:
        self.get_field(name).set(value)

    @property
    def is_new(self) -> bool:
        return self._is_new

    @property
    def method(self) -> Method | None:
        return self._method

    @property
    def written(self) -> bool:
        return self._written

    @property
    def mutated(self) -> bool:
        return self._is_new or any(field.mutated for field in self._fields.values())

    @property
    def encoded_keys(self) -> dict[str, Any]:
        values = {name: self._fields[name].value for name in self.key_names()}
        return type(self).encode_keys(values)

    @property
    def identity(self) -> str:
        return format_identity(self.table_name, self.encoded_keys)

    def setup_model(self, values: Mapping[str, Any], is_new: bool, method: Method | str) -> None:
        """Binds fields to stored values (or, for new records, to ``values``) and seals the model."""
        if self._sealed:
            raise ModelStateError(f"{type(self).__name__} is already set up")
        try:
            resolved = Method(method)
        except ValueError:
            raise InvalidParameterError("method", "must be one of CREATE or GET") from None

        unknown = sorted(set(values) - set(self._fields))
        if unknown:
            raise InvalidParameterError("values", f"Unknown fields for {type(self).__name__}: {', '.join(unknown)}")

        self._is_new = bool(is_new)
        self._method = resolved
        for name, field in self._fields.items():
            if self._is_new:
                field.setup(None)
                if name in values:
                    field._seed(copy.deepcopy(values[name]))
            else:
                field.setup(values.get(name))
            if field.key_type is not None:
                field.validate()
        self._sealed = True

    def to_dict(self) -> dict[str, Any]:
        return {name: copy.deepcopy(f.value) for name, f in self._fields.items() if f.value is not None}

    def get_snapshot(self, *, initial: bool = False, db_keys: bool = False) -> dict[str, Any]:
        """Field values (or the values last read from the store) without marking them accessed."""
        snapshot: dict[str, Any] = {}
        for name, field in self._fields.items():
            if db_keys and field.key_type is not None:
                continue
            value = field.initial_value if initial else field.value
            if value is not None:
                snapshot[name] = copy.deepcopy(value)
        if db_keys and not (initial and self._is_new):
            snapshot.update(self.encoded_keys)
        return snapshot

    # Wire parameters.

    def _non_key_fields(self) -> list[Field]:
        return [field for field in self._fields.values() if field.key_type is None]

    def put_params(self) -> dict[str, Any]:
        item: dict[str, Any] = {}
        for name, field in self._fields.items():
            field.validate()
            if field.key_type is None and field.value is not None:
                item[name] = copy.deepcopy(field.value)
        item.update(self.encoded_keys)

        exprs = _Expressions()
        conditions: list[str] = []
        if self._is_new:
            conditions.append(exprs.not_exists())
        else:
            # A put replaces the whole item, so every non-key field is locked.
            for field in self._non_key_fields():
                clause = field.condition_expression(exprs.placeholder())
                if clause is not None:
                    exprs.use(field, clause.values)
                    conditions.append(clause.expression)

        req: dict[str, Any] = {"TableName": self.table_name, "Item": item}
        if conditions:
            req["ConditionExpression"] = " AND ".join(conditions)
        return exprs.apply(req)

    def update_params(self, validate: bool = True) -> dict[str, Any]:
        exprs = _Expressions()
        sets: list[str] = []
        removes: list[str] = []
        for field in self._fields.values():
            if validate:
                field.validate()
            if field.key_type is not None:
                continue
            clause = field.update_expression(exprs.placeholder())
            if clause is None:
                continue
            exprs.use(field, clause.values)
            if clause.action == "SET":
                sets.append(clause.expression)
            else:
                removes.append(clause.expression)

        conditions: list[str] = []
        if self._is_new:
            conditions.append(exprs.not_exists())
        else:
            for field in self._non_key_fields():
                if not field.accessed:
                    continue
                cond = field.condition_expression(exprs.placeholder())
                if cond is not None:
                    exprs.use(field, cond.values)
                    conditions.append(cond.expression)

        req: dict[str, Any] = {"TableName": self.table_name, "Key": self.encoded_keys}
        actions: list[str] = []
        if sets:
            actions.append(f"SET {','.join(sets)}")
        if removes:
            actions.append(f"REMOVE {','.join(removes)}")
        if actions:
            req["UpdateExpression"] = " ".join(actions)
        if conditions:
            req["ConditionExpression"] = " AND ".join(conditions)
        return exprs.apply(req)

    def condition_check_params(self) -> dict[str, Any] | None:
        if self._is_new or self.mutated:
            raise ModelStateError(f"{self!r} is mutated, write it instead of checking it")
        params = self.update_params(validate=False)
        if "ConditionExpression" not in params:
            return None
        return params

    def write(
        self,
        store: Store,
        *,
        sleep: Callable[[float], None] = time.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
    ) -> None:
        """Writes this model alone, retrying errors the store flags as retryable."""
        if self._written:
            raise ModelStateError(f"{self!r} may only be written once")

        params = self.update_params()
        send = store.update
        if "UpdateExpression" not in params:
            params = self.put_params()
            send = store.put
        self._written = True

        def attempt(n: int) -> None:
            try:
                send(params)
            except ConditionFailedError as err:
                # Only the first attempt can tell: after a retried error the
                # first put may have landed, so the record could be our own.
                if n == 0 and self._method is Method.CREATE:
                    raise ModelAlreadyExistsError(self.identity) from err
                raise

        retry_with_backoff(
            attempt,
            should_retry=lambda err: bool(getattr(err, "retryable", False)),
            policy=WRITE_BACKOFF,
            sleep=sleep,
            uniform=uniform,
        )

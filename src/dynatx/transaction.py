from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, overload

from .batcher import WriteBatcher
from .errors import (
    InvalidOptionsError,
    InvalidParameterError,
    RetriesExhaustedError,
    TransactionFailedError,
)
from .keys import Key
from .model import Method, Model
from .options import load_options
from .retry import BackoffPolicy, retry_with_backoff

if TYPE_CHECKING:
    from .store import Store

logger = logging.getLogger(__name__)

CONTENTION_CODES = frozenset({"ConditionalCheckFailedException", "TransactionCanceledException"})


@dataclass(frozen=True)
class TransactionOptions:
    """Retry policy of a transaction. Backoffs are in seconds."""

    retries: int = 3
    initial_backoff: float = 0.5
    max_backoff: float = 10.0

    def __post_init__(self) -> None:
        if not isinstance(self.retries, int) or isinstance(self.retries, bool):
            raise InvalidOptionsError("retries", "Expected int")
        for name in ("initial_backoff", "max_backoff"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise InvalidOptionsError(name, "Expected float")
        if self.retries < 0:
            raise InvalidOptionsError("retries", "Retry count must be non-negative")
        if self.initial_backoff < 0.001:
            raise InvalidOptionsError("initial_backoff", "Initial back off must be at least 1ms")
        if self.max_backoff < 0.2:
            raise InvalidOptionsError("max_backoff", "Max back off must be at least 200ms")

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any] | None) -> TransactionOptions:
        return cls(**load_options(options, asdict(cls())))

    @property
    def policy(self) -> BackoffPolicy:
        return BackoffPolicy(retries=self.retries, initial=self.initial_backoff, maximum=self.max_backoff)


def is_retryable(err: BaseException) -> bool:
    if getattr(err, "retryable", False):
        return True
    return getattr(err, "code", None) in CONTENTION_CODES


class Transaction:
    """A unit of work whose reads and writes commit atomically.

    Use ``run`` (or ``run_transaction``) to execute a function inside the
    transaction; the whole function is retried on contention.
    """

    def __init__(
        self,
        store: Store,
        options: TransactionOptions | Mapping[str, Any] | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
    ) -> None:
        if options is None:
            options = TransactionOptions()
        elif not isinstance(options, TransactionOptions):
            options = TransactionOptions.from_mapping(options)
        self.options = options
        self._store = store
        self._sleep = sleep
        self._uniform = uniform
        self._batcher = WriteBatcher(store)

    def _reset(self) -> None:
        self._batcher = WriteBatcher(self._store)

    @overload
    def get(
        self,
        model_cls: type[Model],
        composite_id: Any,
        /,
        *,
        consistent_read: bool = ...,
        create_if_missing: bool = ...,
        params: Mapping[str, Any] | None = ...,
    ) -> Model | None: ...

    @overload
    def get(
        self,
        key: Key,
        /,
        *,
        consistent_read: bool = ...,
        create_if_missing: bool = ...,
        params: Mapping[str, Any] | None = ...,
    ) -> Model | None: ...

    @overload
    def get(
        self,
        keys: list[Key],
        /,
        *,
        consistent_read: bool = ...,
        create_if_missing: bool = ...,
        params: Mapping[str, Any] | None = ...,
    ) -> list[Model | None]: ...

    def get(
        self,
        *args: Any,
        consistent_read: bool = True,
        create_if_missing: bool = False,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Fetches models by ``(Model, id)``, by ``Key`` or by a list of keys.

        Missing records come back as ``None`` unless ``create_if_missing`` is
        set, in which case a new model is returned for them.
        """
        if not args:
            raise InvalidParameterError("args", "Expecting Model and id, a Key or [Key] as the first argument")

        first, *rest = args
        opts = {"consistent_read": consistent_read, "create_if_missing": create_if_missing, "params": params}
        if isinstance(first, type) and issubclass(first, Model):
            if len(rest) != 1:
                raise InvalidParameterError("args", "Expecting args to have a tuple of (Model, id)")
            return self._get_one(Key(first, rest[0]), **opts)
        if isinstance(first, Key):
            if rest:
                raise InvalidParameterError("args", "Expecting args to have a tuple of (key)")
            return self._get_one(first, **opts)
        if isinstance(first, (list, tuple)):
            if rest or any(not isinstance(key, Key) for key in first):
                raise InvalidParameterError("args", "Expecting args to have a tuple of ([key])")
            return [self._get_one(key, **opts) for key in first]
        raise InvalidParameterError("args", "Expecting Model and id, a Key or [Key] as the first argument")

    def _get_one(
        self,
        key: Key,
        *,
        consistent_read: bool,
        create_if_missing: bool,
        params: Mapping[str, Any] | None,
    ) -> Model | None:
        model_cls = key.model_cls
        model = model_cls(params)
        item = self._store.get(model_cls.get_params(key.composite_id, consistent_read=consistent_read))
        if item is None:
            if not create_if_missing:
                return None
            model.setup_model(key.composite_id, is_new=True, method=Method.GET)
        else:
            model.setup_model(model_cls.decode_item(item), is_new=False, method=Method.GET)
        self._batcher.track(model)
        return model

    def create(self, model_cls: type[Model], data: Mapping[str, Any], params: Mapping[str, Any] | None = None) -> Model:
        """Creates a model without reading the store; the commit fails if it already exists."""
        if not (isinstance(model_cls, type) and issubclass(model_cls, Model)):
            raise InvalidParameterError("model_cls", "Model class must be a subclass of Model")
        if not isinstance(data, Mapping):
            raise InvalidParameterError("data", "Expecting a dict of field values")

        model = model_cls(params)
        composite_id = {name: data[name] for name in model_cls.key_names() if name in data}
        model_cls.check_composite_id(composite_id)
        model.setup_model(data, is_new=True, method=Method.CREATE)
        self._batcher.track(model)
        return model

    def run[T](self, func: Callable[[Transaction], T]) -> T:
        if not callable(func):
            raise InvalidParameterError("func", "Expecting a callable")

        def attempt(n: int) -> T:
            self._reset()
            result = func(self)
            self._batcher.commit(sleep=self._sleep, uniform=self._uniform)
            return result

        try:
            return retry_with_backoff(
                attempt,
                should_retry=is_retryable,
                policy=self.options.policy,
                sleep=self._sleep,
                uniform=self._uniform,
            )
        except RetriesExhaustedError as err:
            raise TransactionFailedError("Too much contention.") from err
        except Exception as err:
            logger.debug("transaction failed: %s", err)
            raise TransactionFailedError(err) from err


def run_transaction[T](
    store: Store,
    func: Callable[[Transaction], T],
    options: TransactionOptions | Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> T:
    return Transaction(store, options, **kwargs).run(func)

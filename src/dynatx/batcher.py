from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Literal

from .errors import ModelAlreadyExistsError, ModelStateError, TransactionCanceledError
from .keys import format_identity
from .model import Method, Model

if TYPE_CHECKING:
    from .store import Store

logger = logging.getLogger(__name__)


def _table_of(item: dict[str, Any]) -> str:
    body = next(iter(item.values()))
    return str(body.get("TableName", "?"))


class WriteBatcher:
    """Collects the models of one transaction attempt and commits them once.

    Models are tracked as they are read or created. On commit, mutated models
    are written and models that were only read are condition-checked, so the
    writes only apply if nothing they depended on changed.
    """

    def __init__(self, store: Store) -> None:
        self._store = store
        self._all_models: list[Model] = []
        self._to_check: dict[str, Model | Literal[False]] = {}
        self._to_write: list[dict[str, Any]] = []
        self.resolved = False

    def track(self, model: Model) -> None:
        self._all_models.append(model)
        self._to_check[model.identity] = model

    def write(self, model: Model) -> None:
        identity = model.identity
        state = self._to_check.get(identity)
        if state is False:
            raise ModelStateError(f"Attempting to write model {model!r} twice")
        if state is None:
            raise ModelStateError(f"Attempting to write untracked model {model!r}")
        if not model.mutated:
            raise ModelStateError(f"Attempting to write an unchanged model {model!r}")
        self._to_check[identity] = False

        # Update is preferred, but an update needs an UpdateExpression, which
        # a new model with only its keys set does not have.
        action = "Update"
        params = model.update_params()
        if "UpdateExpression" not in params:
            action = "Put"
            params = model.put_params()
        if model.method is Method.CREATE:
            params["ReturnValuesOnConditionCheckFailure"] = "ALL_OLD"
        self._to_write.append({action: params})

    def commit(
        self,
        *,
        sleep: Callable[[float], None] = time.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
    ) -> bool:
        """Sends the batched writes. Returns whether anything was written."""
        if self.resolved:
            raise ModelStateError("Already committed this batch")
        self.resolved = True

        for model in self._all_models:
            if self._to_check.get(model.identity) is not False and model.mutated:
                self.write(model)

        if not self._to_write:
            logger.debug("commit: nothing to write")
            return False

        if len(self._all_models) == 1 and len(self._to_write) == 1:
            logger.debug("commit: single model %r", self._all_models[0])
            self._all_models[0].write(self._store, sleep=sleep, uniform=uniform)
            return True

        checks: list[dict[str, Any]] = []
        for model in self._to_check.values():
            if model is False:
                continue
            params = model.condition_check_params()
            if params is not None:
                checks.append({"ConditionCheck": params})

        items = [*self._to_write, *checks]
        logger.debug("commit: transact write with %d writes and %d checks", len(self._to_write), len(checks))
        try:
            self._store.transact_write({"TransactItems": items})
        except TransactionCanceledError as err:
            for index, reason in enumerate(err.reasons):
                # Pre-images are only requested for created models, so a
                # returned item means the record already existed.
                if reason.code == "ConditionalCheckFailed" and reason.item:
                    table = _table_of(items[index]) if index < len(items) else "?"
                    raise ModelAlreadyExistsError(format_identity(table, reason.item)) from err
            raise
        return True

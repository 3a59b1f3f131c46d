from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import ClientError


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()


def _assert_match(expected: Any, actual: Any, *, path: str) -> None:
    if expected is ANY:
        return

    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            raise AssertionError(f"{path}: expected dict, got {type(actual).__name__}")
        for k, v in expected.items():
            if k not in actual:
                raise AssertionError(f"{path}: missing key {k!r}")
            _assert_match(v, actual[k], path=f"{path}.{k}")
        return

    if isinstance(expected, list):
        if not isinstance(actual, list):
            raise AssertionError(f"{path}: expected list, got {type(actual).__name__}")
        if len(expected) != len(actual):
            raise AssertionError(f"{path}: expected {len(expected)} items, got {len(actual)}")
        for i, (e, a) in enumerate(zip(expected, actual, strict=True)):
            _assert_match(e, a, path=f"{path}[{i}]")
        return

    if expected != actual:
        raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")


def client_error(code: str, message: str = "", operation: str = "UpdateItem", **extra: Any) -> ClientError:
    """Builds the ``ClientError`` botocore raises for a failed DynamoDB call.

    ``extra`` lands at the top level of the error response, e.g.
    ``CancellationReasons`` or ``Item``.
    """
    response: dict[str, Any] = {"Error": {"Code": code, "Message": message}, **extra}
    return ClientError(response, operation)  # type: ignore[arg-type]


TRANSACT_ACTIONS = frozenset({"ConditionCheck", "Delete", "Put", "Update"})
_RETURN_VALUES_ON_FAILURE = frozenset({"ALL_OLD", "NONE"})
_OPERATIONS = {
    "get_item": "GetItem",
    "put_item": "PutItem",
    "update_item": "UpdateItem",
    "transact_write_items": "TransactWriteItems",
}


def _validate_write(operation: str, body: Mapping[str, Any], where: str) -> None:
    if not body.get("TableName"):
        raise client_error("ValidationException", f"{where}: TableName is required", operation=operation)
    on_failure = body.get("ReturnValuesOnConditionCheckFailure")
    if on_failure is not None and on_failure not in _RETURN_VALUES_ON_FAILURE:
        raise client_error(
            "ValidationException",
            f"{where}: invalid ReturnValuesOnConditionCheckFailure {on_failure!r}",
            operation=operation,
        )


def validate_request(method: str, req: Mapping[str, Any]) -> None:
    """Rejects request shapes DynamoDB itself would reject with a ValidationException."""
    operation = _OPERATIONS[method]
    if method != "transact_write_items":
        _validate_write(operation, req, method)
        return

    items = req.get("TransactItems")
    if not isinstance(items, list):
        raise client_error("ValidationException", "TransactItems must be a list", operation=operation)
    for i, item in enumerate(items):
        actions = list(item) if isinstance(item, dict) else []
        if len(actions) != 1 or actions[0] not in TRANSACT_ACTIONS:
            raise client_error(
                "ValidationException",
                f"TransactItems[{i}] must hold exactly one of {', '.join(sorted(TRANSACT_ACTIONS))}",
                operation=operation,
            )
        _validate_write(operation, item[actions[0]], f"TransactItems[{i}].{actions[0]}")


@dataclass(frozen=True)
class ExpectedCall:
    method: str
    expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None


class FakeDynamoDBClient:
    """Scripted stand-in for the boto3 DynamoDB client.

    Calls must arrive in the order they were expected. Requests are matched
    partially: keys absent from the expectation are ignored, and ``ANY``
    matches any value.
    """

    def __init__(self) -> None:
        self._expected: list[ExpectedCall] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._expected.append(ExpectedCall(method=method, expected=expected, response=response, error=error))

    def assert_no_pending(self) -> None:
        if self._expected:
            raise AssertionError(f"pending expected calls: {self._expected!r}")

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [req for name, req in self.calls if name == method]

    def transact_actions(self) -> list[list[str]]:
        """The action of each TransactItem, per recorded transaction."""
        return [[next(iter(item)) for item in req["TransactItems"]] for req in self.calls_to("transact_write_items")]

    def _handle(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        self.calls.append((method, dict(req)))
        if not self._expected:
            raise AssertionError(f"unexpected call: {method}")

        call = self._expected.pop(0)
        if call.method != method:
            raise AssertionError(f"expected {call.method}, got {method}")

        if callable(call.expected):
            call.expected(req)
        elif call.expected is not None:
            _assert_match(dict(call.expected), req, path=method)

        validate_request(method, req)
        if call.error is not None:
            raise call.error

        return dict(call.response or {})

    def get_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("get_item", kwargs)

    def put_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("put_item", kwargs)

    def update_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("update_item", kwargs)

    def transact_write_items(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("transact_write_items", kwargs)

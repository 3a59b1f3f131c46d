from __future__ import annotations

import pytest

from dynatx import (
    Key,
    Method,
    Model,
    NumberField,
    Store,
    StringField,
    Transaction,
    TransactionOptions,
    is_retryable,
    run_transaction,
)
from dynatx.errors import (
    ConditionFailedError,
    InvalidOptionsError,
    InvalidParameterError,
    ModelAlreadyExistsError,
    StoreError,
    TransactionCanceledError,
    TransactionFailedError,
)
from dynatx.mocks import FakeDynamoDBClient, client_error
from dynatx.testkit import RecordingSleep, fixed_uniform, no_sleep


class Pair(Model):
    a = StringField()
    b = StringField()


class Counter(Model):
    count = NumberField()


def _pair_item(pid: str) -> dict:
    return {"Item": {"_id": {"S": pid}, "a": {"S": "x"}, "b": {"S": "y"}}}


def _tx(client: FakeDynamoDBClient, options: object = None, **kwargs: object) -> Transaction:
    kwargs.setdefault("sleep", no_sleep)
    return Transaction(Store(client), options, **kwargs)  # type: ignore[arg-type]


def test_default_options() -> None:
    options = TransactionOptions()
    assert (options.retries, options.initial_backoff, options.max_backoff) == (3, 0.5, 10.0)
    assert _tx(FakeDynamoDBClient()).options == options


@pytest.mark.parametrize(
    ("options", "match"),
    [
        ({"retries": -1}, "retries"),
        ({"initial_backoff": 0.0005}, "initial_backoff"),
        ({"max_backoff": 0.1}, "max_backoff"),
        ({"retries": 1.5}, "Expected int"),
        ({"max_backoff": "10"}, "Expected float"),
        ({"timeout": 1}, "Unexpected option"),
    ],
)
def test_invalid_options(options: dict, match: str) -> None:
    with pytest.raises(InvalidOptionsError, match=match):
        TransactionOptions.from_mapping(options)
    with pytest.raises(InvalidOptionsError, match=match):
        _tx(FakeDynamoDBClient(), options)


@pytest.mark.parametrize(
    ("kwargs", "match"),
    [
        ({"retries": 2.5}, "retries. Expected int"),
        ({"retries": "3"}, "retries. Expected int"),
        ({"retries": True}, "retries. Expected int"),
        ({"initial_backoff": "0.5"}, "initial_backoff. Expected float"),
        ({"max_backoff": None}, "max_backoff. Expected float"),
        ({"max_backoff": False}, "max_backoff. Expected float"),
    ],
)
def test_options_constructor_checks_types(kwargs: dict, match: str) -> None:
    with pytest.raises(InvalidOptionsError, match=match):
        TransactionOptions(**kwargs)


def test_options_constructor_accepts_int_backoffs() -> None:
    options = TransactionOptions(retries=0, initial_backoff=1, max_backoff=2)
    assert options.policy.initial == 1


def test_options_from_mapping() -> None:
    options = TransactionOptions.from_mapping({"retries": 0, "max_backoff": 1})
    assert options == TransactionOptions(retries=0, initial_backoff=0.5, max_backoff=1)
    assert options.policy.maximum == 1


def test_get_by_model_and_id() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", {"TableName": "Pair", "ConsistentRead": True, "Key": {"_id": {"S": "p1"}}}, response=_pair_item("p1"))

    model = _tx(client).get(Pair, "p1")
    assert isinstance(model, Pair)
    assert (model.id, model.a, model.b) == ("p1", "x", "y")
    assert model.is_new is False
    assert model.method is Method.GET
    client.assert_no_pending()


def test_get_eventually_consistent() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", {"ConsistentRead": False}, response=_pair_item("p1"))
    assert _tx(client).get(Key(Pair, "p1"), consistent_read=False) is not None


def test_get_missing() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", response={})
    client.expect("get_item", response={})

    tx = _tx(client)
    assert tx.get(Pair, "nope") is None

    model = tx.get(Pair, "nope", create_if_missing=True, params={"source": "test"})
    assert model is not None
    assert model.is_new is True
    assert model.method is Method.GET
    assert model.id == "nope"
    assert model.params == {"source": "test"}


def test_get_list_of_keys() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", {"Key": {"_id": {"S": "p1"}}}, response=_pair_item("p1"))
    client.expect("get_item", {"Key": {"_id": {"S": "p2"}}}, response={})

    found, missing = _tx(client).get([Key(Pair, "p1"), Key(Pair, "p2")])
    assert found is not None and found.id == "p1"
    assert missing is None


@pytest.mark.parametrize(
    "args",
    [
        (),
        (Pair,),
        (Pair, "p1", "extra"),
        (Key(Pair, "p1"), "extra"),
        ([Key(Pair, "p1"), "p2"],),
        ([Key(Pair, "p1")], "extra"),
        ("p1",),
    ],
)
def test_get_rejects_bad_arguments(args: tuple) -> None:
    client = FakeDynamoDBClient()
    with pytest.raises(InvalidParameterError, match="args"):
        _tx(client).get(*args)
    assert client.calls == []


def test_create() -> None:
    tx = _tx(FakeDynamoDBClient())
    model = tx.create(Pair, {"id": "abc", "a": "x"})
    assert model.is_new is True
    assert model.method is Method.CREATE
    assert model.a == "x"
    assert model.b is None


def test_create_validates_arguments() -> None:
    tx = _tx(FakeDynamoDBClient())
    with pytest.raises(InvalidParameterError, match="model_cls"):
        tx.create(dict, {"id": "abc"})  # type: ignore[arg-type]
    with pytest.raises(InvalidParameterError, match="data"):
        tx.create(Pair, "abc")  # type: ignore[arg-type]
    with pytest.raises(InvalidParameterError, match="composite_id"):
        tx.create(Pair, {"a": "x"})


def test_run_commits_and_returns_result() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", response=_pair_item("p1"))
    client.expect("update_item", {"UpdateExpression": "SET #a=:_0"})

    def rename(tx: Transaction) -> str:
        model = tx.get(Pair, "p1")
        model.a = "renamed"
        return "done"

    assert _tx(client).run(rename) == "done"
    client.assert_no_pending()


def test_run_reruns_the_function_on_contention() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", response={"Item": {"_id": {"S": "c1"}, "count": {"N": "1"}}})
    client.expect("update_item", error=client_error("ConditionalCheckFailedException"))
    client.expect("get_item", response={"Item": {"_id": {"S": "c1"}, "count": {"N": "5"}}})
    client.expect(
        "update_item",
        {
            "UpdateExpression": "SET #count=:_0",
            "ConditionExpression": "#count=:_1",
            "ExpressionAttributeValues": {":_0": {"N": "6"}, ":_1": {"N": "5"}},
        },
    )

    def bump(tx: Transaction) -> int:
        model = tx.get(Counter, "c1")
        model.count = model.count + 1
        return model.count

    sleep = RecordingSleep()
    assert _tx(client, sleep=sleep, uniform=fixed_uniform(0.0)).run(bump) == 6
    assert sleep.delays == [0.5]
    client.assert_no_pending()


def test_increment_by_in_transaction_has_no_condition() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", response={"Item": {"_id": {"S": "c1"}, "count": {"N": "1"}}})

    def check(req: dict) -> None:
        assert req["UpdateExpression"] == "SET #count=#count+:_0"
        assert req["ExpressionAttributeValues"] == {":_0": {"N": "3"}}
        assert "ConditionExpression" not in req

    client.expect("update_item", check)

    def bump(tx: Transaction) -> None:
        tx.get(Counter, "c1").get_field("count").increment_by(3)

    _tx(client).run(bump)
    client.assert_no_pending()


def test_run_gives_up_after_retries() -> None:
    client = FakeDynamoDBClient()
    for _ in range(3):
        client.expect("get_item", response=_pair_item("p1"))
        client.expect("update_item", error=client_error("ConditionalCheckFailedException"))

    def rename(tx: Transaction) -> None:
        tx.get(Pair, "p1").a = "renamed"

    sleep = RecordingSleep()
    tx = _tx(client, {"retries": 2}, sleep=sleep, uniform=fixed_uniform(0.0))
    with pytest.raises(TransactionFailedError, match="Too much contention.") as exc:
        tx.run(rename)

    assert exc.value.original == "Too much contention."
    assert sleep.delays == pytest.approx([0.5, 1.0])
    client.assert_no_pending()


def test_run_caps_backoff() -> None:
    calls = []

    def throttled(tx: Transaction) -> None:
        calls.append(tx)
        raise StoreError(code="ThrottlingException", message="slow down", retryable=True)

    sleep = RecordingSleep()
    tx = _tx(
        FakeDynamoDBClient(),
        TransactionOptions(retries=3, initial_backoff=0.5, max_backoff=0.8),
        sleep=sleep,
        uniform=fixed_uniform(0.0),
    )
    with pytest.raises(TransactionFailedError, match="Too much contention."):
        tx.run(throttled)

    assert len(calls) == 4
    assert sleep.delays == pytest.approx([0.5, 0.8, 0.8])


def test_run_wraps_non_retryable_errors() -> None:
    attempts = []

    def broken(tx: Transaction) -> None:
        attempts.append(1)
        raise ValueError("boom")

    with pytest.raises(TransactionFailedError, match="ValueError: boom") as exc:
        _tx(FakeDynamoDBClient()).run(broken)

    assert isinstance(exc.value.original, ValueError)
    assert exc.value.__cause__ is exc.value.original
    assert attempts == [1]


def test_run_wraps_store_errors() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", error=client_error("ValidationException", "bad key", operation="GetItem"))

    with pytest.raises(TransactionFailedError, match="ValidationException: bad key") as exc:
        _tx(client).run(lambda tx: tx.get(Pair, "p1"))
    assert isinstance(exc.value.original, StoreError)


def test_second_create_of_same_id_fails_with_already_exists() -> None:
    client = FakeDynamoDBClient()
    client.expect("update_item", {"ConditionExpression": "attribute_not_exists(#_id)"})
    client.expect("update_item", error=client_error("ConditionalCheckFailedException"))

    def create(tx: Transaction) -> None:
        tx.create(Pair, {"id": "abc", "a": "x", "b": "y"})

    store = Store(client)
    run_transaction(store, create, sleep=no_sleep)
    with pytest.raises(TransactionFailedError, match="ModelAlreadyExistsError") as exc:
        run_transaction(store, create, sleep=no_sleep)

    assert isinstance(exc.value.original, ModelAlreadyExistsError)
    assert exc.value.original.identity == "Pair _id=abc"
    client.assert_no_pending()


def test_run_requires_a_callable() -> None:
    with pytest.raises(InvalidParameterError, match="func"):
        _tx(FakeDynamoDBClient()).run("nope")  # type: ignore[arg-type]


def test_attempts_use_a_fresh_batch() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", response=_pair_item("p1"))
    client.expect("update_item", error=client_error("ConditionalCheckFailedException"))
    client.expect("get_item", response=_pair_item("p2"))
    client.expect("update_item", {"Key": {"_id": {"S": "p2"}}})

    ids = iter(["p1", "p2"])

    def rename(tx: Transaction) -> None:
        tx.get(Pair, next(ids)).a = "renamed"

    _tx(client).run(rename)
    client.assert_no_pending()


def test_is_retryable() -> None:
    assert is_retryable(ConditionFailedError("failed")) is True
    assert is_retryable(TransactionCanceledError(message="canceled")) is True
    assert is_retryable(StoreError(code="ThrottlingException", message="", retryable=True)) is True
    assert is_retryable(StoreError(code="ValidationException", message="")) is False
    assert is_retryable(ModelAlreadyExistsError("Pair _id=abc")) is False
    assert is_retryable(ValueError("x")) is False

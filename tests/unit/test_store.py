from __future__ import annotations

from decimal import Decimal

import pytest

from dynatx import Store
from dynatx.aws_errors import map_client_error, map_transaction_error
from dynatx.errors import ConditionFailedError, StoreError, TransactionCanceledError
from dynatx.marshal import marshal_item, unmarshal_item
from dynatx.mocks import FakeDynamoDBClient, client_error


def test_marshal_converts_floats_and_nested_values() -> None:
    assert marshal_item({"n": 1.5, "m": {"l": [1, True, "s"]}}) == {
        "n": {"N": "1.5"},
        "m": {"M": {"l": {"L": [{"N": "1"}, {"BOOL": True}, {"S": "s"}]}}},
    }


def test_unmarshal_turns_integral_numbers_into_ints() -> None:
    item = unmarshal_item({"a": {"N": "3"}, "b": {"N": "1.25"}, "c": {"L": [{"N": "2"}]}, "d": {"NULL": True}})
    assert item == {"a": 3, "b": Decimal("1.25"), "c": [2], "d": None}
    assert isinstance(item["a"], int)
    assert unmarshal_item(None) == {}


def test_map_client_error() -> None:
    err = map_client_error(client_error("ConditionalCheckFailedException", "nope", Item={"_id": {"S": "a"}}))
    assert isinstance(err, ConditionFailedError)
    assert err.item == {"_id": "a"}
    assert err.retryable is False

    throttled = map_client_error(client_error("ProvisionedThroughputExceededException", "slow"))
    assert throttled.retryable is True
    assert str(throttled) == "ProvisionedThroughputExceededException: slow"

    invalid = map_client_error(client_error("ValidationException", "bad"))
    assert type(invalid) is StoreError
    assert invalid.retryable is False


def test_map_transaction_error() -> None:
    err = map_transaction_error(
        client_error(
            "TransactionCanceledException",
            "canceled",
            operation="TransactWriteItems",
            CancellationReasons=[
                {"Code": "None"},
                {"Code": "ConditionalCheckFailed", "Message": "failed", "Item": {"_id": {"S": "a"}}},
            ],
        )
    )
    assert isinstance(err, TransactionCanceledError)
    assert err.reason_codes == ("None", "ConditionalCheckFailed")
    assert err.reasons[0].item == {}
    assert err.reasons[1].message == "failed"
    assert err.reasons[1].item == {"_id": "a"}

    fallback = map_transaction_error(client_error("TransactionConflictException", "busy"))
    assert fallback.retryable is True


def test_get_marshals_key_and_unmarshals_item() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "get_item",
        {"TableName": "t", "ConsistentRead": True, "Key": {"_id": {"S": "a"}}},
        response={"Item": {"_id": {"S": "a"}, "n": {"N": "2"}}},
    )
    client.expect("get_item", response={})

    store = Store(client)
    assert store.get({"TableName": "t", "ConsistentRead": True, "Key": {"_id": "a"}}) == {"_id": "a", "n": 2}
    assert store.get({"TableName": "t", "ConsistentRead": True, "Key": {"_id": "b"}}) is None
    assert store.client is client


def test_put_and_update_marshal_documents() -> None:
    client = FakeDynamoDBClient()
    client.expect("put_item", {"Item": {"_id": {"S": "a"}, "f": {"N": "0.5"}}, "ExpressionAttributeNames": {"#_id": "_id"}})
    client.expect("update_item", {"Key": {"_id": {"S": "a"}}, "ExpressionAttributeValues": {":_0": {"S": "v"}}})

    store = Store(client)
    store.put({"TableName": "t", "Item": {"_id": "a", "f": 0.5}, "ExpressionAttributeNames": {"#_id": "_id"}})
    store.update({"TableName": "t", "Key": {"_id": "a"}, "ExpressionAttributeValues": {":_0": "v"}})
    client.assert_no_pending()


def test_transact_write_marshals_every_item() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        {
            "TransactItems": [
                {"Put": {"Item": {"_id": {"S": "a"}}}},
                {"Update": {"Key": {"_id": {"S": "b"}}, "ExpressionAttributeValues": {":_0": {"N": "1"}}}},
                {"ConditionCheck": {"Key": {"_id": {"S": "c"}}, "ExpressionAttributeValues": {":_0": {"BOOL": True}}}},
            ]
        },
    )

    Store(client).transact_write(
        {
            "TransactItems": [
                {"Put": {"TableName": "t", "Item": {"_id": "a"}}},
                {"Update": {"TableName": "t", "Key": {"_id": "b"}, "ExpressionAttributeValues": {":_0": 1}}},
                {"ConditionCheck": {"TableName": "t", "Key": {"_id": "c"}, "ExpressionAttributeValues": {":_0": True}}},
            ]
        }
    )
    client.assert_no_pending()


@pytest.mark.parametrize("method", ["put", "update"])
def test_store_maps_client_errors(method: str) -> None:
    client = FakeDynamoDBClient()
    client.expect(f"{method}_item", error=client_error("ConditionalCheckFailedException"))

    with pytest.raises(ConditionFailedError) as exc:
        getattr(Store(client), method)({"TableName": "t"})
    assert exc.value.code == "ConditionalCheckFailedException"


def test_transact_write_maps_cancellation() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        error=client_error("TransactionCanceledException", operation="TransactWriteItems", CancellationReasons=[]),
    )
    with pytest.raises(TransactionCanceledError, match="transaction canceled"):
        Store(client).transact_write({"TransactItems": []})

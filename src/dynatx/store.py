from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from botocore.exceptions import ClientError

from .aws_errors import map_client_error, map_transaction_error
from .marshal import marshal_item, unmarshal_item

_DOCUMENT_PARAMS = ("Key", "Item", "ExpressionAttributeValues")


def _marshal_request(params: Mapping[str, Any]) -> dict[str, Any]:
    req = dict(params)
    for name in _DOCUMENT_PARAMS:
        if name in req:
            req[name] = marshal_item(req[name])
    return req


class Store:
    """Document-level facade over a low-level boto3 DynamoDB client.

    Requests and responses use plain Python values; marshalling to and from
    AttributeValues and mapping ``ClientError`` happen here.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        return self._client

    def get(self, params: Mapping[str, Any]) -> dict[str, Any] | None:
        try:
            resp = self._client.get_item(**_marshal_request(params))
        except ClientError as err:
            raise map_client_error(err) from err
        item = resp.get("Item")
        if not item:
            return None
        return unmarshal_item(item)

    def update(self, params: Mapping[str, Any]) -> None:
        try:
            self._client.update_item(**_marshal_request(params))
        except ClientError as err:
            raise map_client_error(err) from err

    def put(self, params: Mapping[str, Any]) -> None:
        try:
            self._client.put_item(**_marshal_request(params))
        except ClientError as err:
            raise map_client_error(err) from err

    def transact_write(self, params: Mapping[str, Any]) -> None:
        req = dict(params)
        req["TransactItems"] = [
            {action: _marshal_request(body) for action, body in item.items()} for item in params["TransactItems"]
        ]
        try:
            self._client.transact_write_items(**req)
        except ClientError as err:
            raise map_transaction_error(err) from err

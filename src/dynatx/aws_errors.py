from __future__ import annotations

from botocore.exceptions import ClientError

from .errors import (
    CancellationReason,
    ConditionFailedError,
    StoreError,
    TransactionCanceledError,
)
from .marshal import unmarshal_item

RETRYABLE_CODES = frozenset(
    {
        "InternalServerError",
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
        "RequestTimeoutException",
        "ServiceUnavailable",
        "ThrottlingException",
        "TransactionConflictException",
    }
)


def map_client_error(err: ClientError) -> StoreError:
    code = str(err.response.get("Error", {}).get("Code", ""))
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code == "ConditionalCheckFailedException":
        return ConditionFailedError(
            message or "conditional check failed",
            item=unmarshal_item(err.response.get("Item")),
        )

    return StoreError(
        code=code or "UnknownError",
        message=message or str(err),
        retryable=code in RETRYABLE_CODES,
    )


def map_transaction_error(err: ClientError) -> StoreError:
    code = str(err.response.get("Error", {}).get("Code", ""))
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code == "TransactionCanceledException":
        reasons_raw = err.response.get("CancellationReasons") or []
        reasons = tuple(
            CancellationReason(
                code=str(reason.get("Code", "None")),
                message=reason.get("Message"),
                item=unmarshal_item(reason.get("Item")),
            )
            for reason in reasons_raw
            if isinstance(reason, dict)
        )
        return TransactionCanceledError(message=message or "transaction canceled", reasons=reasons)

    return map_client_error(err)

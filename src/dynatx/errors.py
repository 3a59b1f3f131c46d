from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


class DynatxError(Exception):
    pass


class InvalidOptionsError(DynatxError):
    def __init__(self, option: str, expectation: str) -> None:
        super().__init__(f"Invalid option value for {option}. {expectation}.")
        self.option = option


class InvalidParameterError(DynatxError):
    def __init__(self, param: str, expectation: str) -> None:
        super().__init__(f"Invalid parameter {param}. {expectation}.")
        self.param = param


class InvalidFieldError(DynatxError):
    def __init__(self, field: str | None, reason: str) -> None:
        super().__init__(f"{field} {reason}")
        self.field = field
        self.reason = reason


class ModelDefinitionError(DynatxError, ValueError):
    pass


class ModelStateError(DynatxError):
    pass


class ModelAlreadyExistsError(DynatxError):
    retryable = False

    def __init__(self, identity: str) -> None:
        super().__init__(f"Tried to recreate an existing model: {identity}")
        self.identity = identity


class StoreError(DynatxError):
    def __init__(self, *, code: str, message: str, retryable: bool = False) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.retryable = retryable


class ConditionFailedError(StoreError):
    def __init__(self, message: str, *, item: Mapping[str, Any] | None = None) -> None:
        super().__init__(code="ConditionalCheckFailedException", message=message)
        self.item = dict(item) if item else None


@dataclass(frozen=True)
class CancellationReason:
    code: str
    message: str | None = None
    item: Mapping[str, Any] = field(default_factory=dict)


class TransactionCanceledError(StoreError):
    def __init__(self, *, message: str, reasons: tuple[CancellationReason, ...] = ()) -> None:
        super().__init__(code="TransactionCanceledException", message=message)
        self.reasons = reasons

    @property
    def reason_codes(self) -> tuple[str, ...]:
        return tuple(reason.code for reason in self.reasons)


class RetriesExhaustedError(DynatxError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Max retries reached after {attempts} attempts")
        self.attempts = attempts


class TransactionFailedError(DynatxError):
    def __init__(self, cause: BaseException | str) -> None:
        if isinstance(cause, BaseException):
            message = f"{type(cause).__name__}: {cause}"
        else:
            message = cause
        super().__init__(message)
        self.original = cause

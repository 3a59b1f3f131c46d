from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .batcher import WriteBatcher
from .errors import (
    CancellationReason,
    ConditionFailedError,
    DynatxError,
    InvalidFieldError,
    InvalidOptionsError,
    InvalidParameterError,
    ModelAlreadyExistsError,
    ModelDefinitionError,
    ModelStateError,
    RetriesExhaustedError,
    StoreError,
    TransactionCanceledError,
    TransactionFailedError,
)
from .fields import (
    ArrayField,
    BooleanField,
    Field,
    FieldKind,
    KeyType,
    NumberField,
    ObjectField,
    StringField,
)
from .keys import Key, UniqueKeyList
from .model import Method, Model
from .store import Store
from .transaction import Transaction, TransactionOptions, is_retryable, run_transaction

if TYPE_CHECKING:
    from .runtime import StoreConfig, create_boto3_config, create_dynamodb_client, create_store


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name in {"StoreConfig", "create_boto3_config", "create_dynamodb_client", "create_store"}:
        from . import runtime

        return getattr(runtime, name)
    raise AttributeError(name)


__all__ = [
    "ArrayField",
    "BooleanField",
    "CancellationReason",
    "ConditionFailedError",
    "DynatxError",
    "Field",
    "FieldKind",
    "InvalidFieldError",
    "InvalidOptionsError",
    "InvalidParameterError",
    "Key",
    "KeyType",
    "Method",
    "Model",
    "ModelAlreadyExistsError",
    "ModelDefinitionError",
    "ModelStateError",
    "NumberField",
    "ObjectField",
    "RetriesExhaustedError",
    "Store",
    "StoreConfig",
    "StoreError",
    "StringField",
    "Transaction",
    "TransactionCanceledError",
    "TransactionFailedError",
    "TransactionOptions",
    "UniqueKeyList",
    "WriteBatcher",
    "create_boto3_config",
    "create_dynamodb_client",
    "create_store",
    "is_retryable",
    "run_transaction",
    "__repo_version__",
    "__version__",
]

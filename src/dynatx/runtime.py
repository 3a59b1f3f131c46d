from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, cast

import boto3
from botocore.config import Config

from .options import load_options
from .store import Store


@dataclass(frozen=True)
class StoreConfig:
    region: str = "us-west-2"
    endpoint_url: str | None = None
    connect_timeout: float = 1.0
    read_timeout: float = 3.0
    max_attempts: int = 3

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> StoreConfig:
        """Reads ``AWS_REGION`` and ``DYNAMO_ENDPT`` (a local endpoint, e.g. DynamoDB Local)."""
        defaults = cls()
        return cls(
            region=environ.get("AWS_REGION") or defaults.region,
            endpoint_url=environ.get("DYNAMO_ENDPT") or None,
        )

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any] | None) -> StoreConfig:
        return cls(**load_options(options, asdict(cls())))


def create_boto3_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_attempts: int = 3,
) -> Config:
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "adaptive"},
    )


def create_dynamodb_client(config: StoreConfig | None = None, *, session: Any | None = None) -> Any:
    config = config or StoreConfig()
    sess = session or boto3.session.Session(region_name=config.region)
    return cast(Any, sess).client(
        "dynamodb",
        region_name=config.region,
        endpoint_url=config.endpoint_url,
        config=create_boto3_config(
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            max_attempts=config.max_attempts,
        ),
    )


def create_store(config: StoreConfig | None = None, *, session: Any | None = None) -> Store:
    return Store(create_dynamodb_client(config, session=session))

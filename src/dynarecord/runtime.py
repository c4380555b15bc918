from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, cast

import boto3
from botocore.config import Config


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


def create_dynamodb_client(
    *,
    region: str | None = None,
    endpoint_url: str | None = None,
    config: Config | None = None,
    session: Any | None = None,
    environ: Mapping[str, str] = os.environ,
) -> Any:
    """Build a low-level DynamoDB client.

    ``AWS_REGION`` (or ``AWS_DEFAULT_REGION``) and ``DYNAMODB_ENDPOINT`` are
    read from ``environ`` when the matching argument is not given.
    """
    region = region or environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION") or None
    endpoint_url = endpoint_url or environ.get("DYNAMODB_ENDPOINT") or None

    sess = session or boto3.session.Session(region_name=region)
    return cast(Any, sess).client("dynamodb", region_name=region, endpoint_url=endpoint_url, config=config)

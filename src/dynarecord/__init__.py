from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import Any

from .client import Client
from .codec import decode, encode, prune_empty, serialize_value
from .errors import (
    BatchIncompleteError,
    DecodeError,
    DynarecordError,
    EncodeError,
    ExhaustedError,
    IncompleteKeyError,
    KeyResolutionError,
    NoValidKeyError,
    NotFoundError,
    SchemaError,
    ValidationError,
)
from .expression import ExpressionContext
from .iterator import ResultIterator
from .keys import IndexRef, Key, key_from_item, primary_key, resolve_key, secondary_key
from .model import (
    AttributeConverter,
    AttributeDefinition,
    Projection,
    SchemaDescriptor,
    SchemaRegistry,
    SecondaryIndex,
    default_registry,
    describe,
    record_field,
)
from .query import QueryBuilder, ScanBuilder
from .runtime import create_boto3_config, create_dynamodb_client


def _read_repo_version() -> str:
    try:
        data: Any = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version") if isinstance(data, dict) else None
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


__all__ = [
    "AttributeConverter",
    "AttributeDefinition",
    "BatchIncompleteError",
    "Client",
    "create_boto3_config",
    "create_dynamodb_client",
    "decode",
    "DecodeError",
    "default_registry",
    "describe",
    "DynarecordError",
    "encode",
    "EncodeError",
    "ExhaustedError",
    "ExpressionContext",
    "IncompleteKeyError",
    "IndexRef",
    "Key",
    "key_from_item",
    "KeyResolutionError",
    "NotFoundError",
    "NoValidKeyError",
    "primary_key",
    "Projection",
    "prune_empty",
    "QueryBuilder",
    "record_field",
    "resolve_key",
    "ResultIterator",
    "ScanBuilder",
    "SchemaDescriptor",
    "SchemaError",
    "SchemaRegistry",
    "secondary_key",
    "SecondaryIndex",
    "serialize_value",
    "ValidationError",
    "__repo_version__",
    "__version__",
]

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from decimal import Decimal
from typing import Any

from .codec import AttributeMap, AttributeValue, decode, encode
from .errors import BatchIncompleteError, NotFoundError, ValidationError
from .expression import ExpressionContext
from .keys import Key, key_from_item, primary_key, resolve_key
from .model import SchemaDescriptor, SchemaRegistry, default_registry
from .query import QueryBuilder, ScanBuilder
from .runtime import create_dynamodb_client
from .validation import validate_table_name

logger = logging.getLogger(__name__)

BATCH_GET_LIMIT = 100
BATCH_WRITE_LIMIT = 25

type KeyIdentity = tuple[tuple[str, tuple[str, Any]], ...]


def _chunked[T](items: Sequence[T], size: int) -> Sequence[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [items[i : i + size] for i in range(0, len(items), size)]


def _key_identity(value: Mapping[str, AttributeValue]) -> KeyIdentity:
    parts: list[tuple[str, tuple[str, Any]]] = []
    for name, av in value.items():
        kind, raw = next(iter(av.items()))
        if kind == "N":
            # the service normalizes numbers ("1.0" comes back as "1")
            raw = str(Decimal(raw).normalize())
        parts.append((name, (kind, raw)))
    return tuple(sorted(parts))


class Client:
    """Record-level operations over a low-level DynamoDB client.

    ``client`` is anything exposing the boto3 ``dynamodb`` client methods
    (``get_item``, ``put_item``, ``delete_item``, ``batch_get_item``,
    ``batch_write_item``, ``query``, ``scan``). Transport errors propagate
    unchanged.
    """

    def __init__(
        self,
        client: Any | None = None,
        *,
        registry: SchemaRegistry | None = None,
        rand_suffix: Callable[[], str] | None = None,
    ) -> None:
        self._client: Any = client or create_dynamodb_client()
        self._registry = registry or default_registry
        self._rand_suffix = rand_suffix

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    def describe[T](self, record_type: type[T]) -> SchemaDescriptor[T]:
        return self._registry.describe(record_type)

    def resolve_key(self, record: Any) -> Key:
        return resolve_key(record, self.describe(type(record)), registry=self._registry)

    def _context(self, schema: SchemaDescriptor[Any] | None = None) -> ExpressionContext:
        return ExpressionContext(registry=self._registry, schema=schema, rand_suffix=self._rand_suffix)

    def _apply_condition(
        self,
        req: dict[str, Any],
        schema: SchemaDescriptor[Any],
        condition: str | None,
        values: Sequence[Any],
    ) -> None:
        if not condition:
            if values:
                raise ValidationError("condition values given without a condition expression")
            return
        ctx = self._context(schema)
        req["ConditionExpression"] = ctx.bind(condition, values)
        ctx.apply(req)

    def put(
        self,
        table_name: str,
        record: Any,
        *,
        condition: str | None = None,
        values: Sequence[Any] = (),
    ) -> None:
        validate_table_name(table_name)
        schema = self.describe(type(record))
        primary_key(record, schema, registry=self._registry)

        req: dict[str, Any] = {"TableName": table_name, "Item": encode(record, registry=self._registry)}
        self._apply_condition(req, schema, condition, values)

        logger.debug("put_item %s", table_name)
        self._client.put_item(**req)

    def get[T](self, table_name: str, record: T, *, consistent_read: bool = False) -> T:
        """Load the stored item identified by ``record``'s resolved key.

        Records resolving to a secondary index key are looked up with a
        single-item query against that index.
        """
        validate_table_name(table_name)
        schema = self.describe(type(record))
        key = resolve_key(record, schema, registry=self._registry)
        item = self._fetch_item(table_name, key, consistent_read=consistent_read)
        return decode(item, type(record), registry=self._registry)

    def delete(
        self,
        table_name: str,
        record: Any,
        *,
        condition: str | None = None,
        values: Sequence[Any] = (),
    ) -> None:
        validate_table_name(table_name)
        schema = self.describe(type(record))
        key = resolve_key(record, schema, registry=self._registry)
        if not key.is_primary:
            key = key_from_item(self._fetch_item(table_name, key, consistent_read=False), schema)

        req: dict[str, Any] = {"TableName": table_name, "Key": dict(key.value)}
        self._apply_condition(req, schema, condition, values)

        logger.debug("delete_item %s", table_name)
        self._client.delete_item(**req)

    def _fetch_item(self, table_name: str, key: Key, *, consistent_read: bool) -> AttributeMap:
        if key.index is None:
            logger.debug("get_item %s", table_name)
            resp = self._client.get_item(TableName=table_name, Key=dict(key.value), ConsistentRead=consistent_read)
            item = resp.get("Item")
        else:
            if consistent_read and key.index.type == "GLOBAL":
                raise ValidationError("consistent reads are not supported on global secondary indexes")

            ctx = self._context()
            req = {
                "TableName": table_name,
                "IndexName": key.index.name,
                "KeyConditionExpression": " AND ".join(ctx.equals(n, av) for n, av in key.value.items()),
                "ConsistentRead": consistent_read,
                "Limit": 1,
            }
            logger.debug("query %s index=%s", table_name, key.index.name)
            resp = self._client.query(**ctx.apply(req))
            items = resp.get("Items") or []
            item = items[0] if items else None

        if not item:
            raise NotFoundError(f"item not found in {table_name}")
        return item

    def batch_get[T](self, table_name: str, records: Sequence[T], *, consistent_read: bool = False) -> list[T]:
        """Load many records by primary key.

        Keys are sent in sub-requests of at most 100. Results come back in
        request order; keys with no stored item are skipped.
        """
        validate_table_name(table_name)
        if not records:
            return []

        requested: dict[KeyIdentity, tuple[type[Any], Mapping[str, AttributeValue]]] = {}
        for record in records:
            key = primary_key(record, self.describe(type(record)), registry=self._registry)
            requested.setdefault(_key_identity(key.value), (type(record), key.value))

        schema = self.describe(type(records[0]))
        found: dict[KeyIdentity, Any] = {}
        unprocessed: list[Any] = []

        for chunk in _chunked(list(requested.values()), BATCH_GET_LIMIT):
            req = {table_name: {"Keys": [dict(kv) for _, kv in chunk], "ConsistentRead": consistent_read}}
            logger.debug("batch_get_item %s keys=%d", table_name, len(chunk))
            resp = self._client.batch_get_item(RequestItems=req)

            for item in resp.get("Responses", {}).get(table_name, []):
                identity = _key_identity(key_from_item(item, schema).value)
                if identity in requested:
                    found[identity] = decode(item, requested[identity][0], registry=self._registry)

            unprocessed.extend(resp.get("UnprocessedKeys", {}).get(table_name, {}).get("Keys") or [])

        out = [found[identity] for identity in requested if identity in found]
        if unprocessed:
            raise BatchIncompleteError(operation="batch_get", unprocessed=unprocessed, items=out)
        return out

    def batch_write(self, table_name: str, *, puts: Sequence[Any] = (), deletes: Sequence[Any] = ()) -> None:
        """Write and delete records in sub-requests of at most 25.

        Every chunk is dispatched; unprocessed writes from all chunks are
        reported together in one ``BatchIncompleteError``.
        """
        validate_table_name(table_name)

        requests: list[dict[str, Any]] = []
        for record in puts:
            primary_key(record, self.describe(type(record)), registry=self._registry)
            requests.append({"PutRequest": {"Item": encode(record, registry=self._registry)}})
        for record in deletes:
            key = primary_key(record, self.describe(type(record)), registry=self._registry)
            requests.append({"DeleteRequest": {"Key": dict(key.value)}})

        unprocessed: list[Any] = []
        for chunk in _chunked(requests, BATCH_WRITE_LIMIT):
            logger.debug("batch_write_item %s requests=%d", table_name, len(chunk))
            resp = self._client.batch_write_item(RequestItems={table_name: list(chunk)})
            unprocessed.extend(resp.get("UnprocessedItems", {}).get(table_name, []) or [])

        if unprocessed:
            raise BatchIncompleteError(operation="batch_write", unprocessed=unprocessed)

    def batch_put(self, table_name: str, records: Sequence[Any]) -> None:
        self.batch_write(table_name, puts=records)

    def batch_delete(self, table_name: str, records: Sequence[Any]) -> None:
        self.batch_write(table_name, deletes=records)

    def query[T](self, table_name: str, record_type: type[T]) -> QueryBuilder[T]:
        return QueryBuilder(
            self._client, table_name, record_type, registry=self._registry, rand_suffix=self._rand_suffix
        )

    def scan[T](self, table_name: str, record_type: type[T]) -> ScanBuilder[T]:
        return ScanBuilder(
            self._client, table_name, record_type, registry=self._registry, rand_suffix=self._rand_suffix
        )

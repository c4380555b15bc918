from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, Self

from .codec import AttributeValue, encode_attribute
from .errors import ValidationError
from .expression import ExpressionContext
from .iterator import ResultIterator
from .keys import is_unset
from .model import AttributeDefinition, SchemaDescriptor, SchemaRegistry, default_registry
from .validation import validate_table_name

logger = logging.getLogger(__name__)


class _ReadBuilder[T]:
    _operation = ""

    def __init__(
        self,
        transport: Any,
        table_name: str,
        record_type: type[T],
        *,
        registry: SchemaRegistry | None = None,
        rand_suffix: Callable[[], str] | None = None,
    ) -> None:
        validate_table_name(table_name)
        self._transport = transport
        self._table_name = table_name
        self._record_type = record_type
        self._registry = registry or default_registry
        self._rand_suffix = rand_suffix
        self._schema: SchemaDescriptor[T] = self._registry.describe(record_type)
        self._index_name: str | None = None
        self._filters: list[tuple[str, tuple[Any, ...]]] = []
        self._limit: int | None = None
        self._consistent = False
        self._projection: list[str] | None = None
        self._start_key: Mapping[str, AttributeValue] | None = None

    def index(self, name: str) -> Self:
        self._schema.index(name)
        self._index_name = name
        return self

    def filter(self, expression: str, *values: Any) -> Self:
        self._filters.append((expression, values))
        return self

    def limit(self, n: int) -> Self:
        if n <= 0:
            raise ValidationError("limit must be > 0")
        self._limit = n
        return self

    def consistent(self, enabled: bool = True) -> Self:
        self._consistent = enabled
        return self

    def select(self, *attributes: str) -> Self:
        if not attributes:
            raise ValidationError("select requires at least one attribute")
        self._projection = [self._attribute_name(a) for a in attributes]
        return self

    def start_from(self, last_key: Mapping[str, AttributeValue]) -> Self:
        self._start_key = dict(last_key)
        return self

    def _attribute_name(self, name: str) -> str:
        attr = self._schema.attributes.get(name)
        return attr.attribute_name if attr is not None else name

    def _lookup(self, name: str) -> AttributeDefinition | None:
        return self._schema.attributes.get(name) or self._schema.by_attribute_name(name)

    def _base_request(self, ctx: ExpressionContext) -> dict[str, Any]:
        if self._consistent and self._index_name is not None:
            if self._schema.index(self._index_name).type == "GLOBAL":
                raise ValidationError("consistent reads are not supported on global secondary indexes")

        req: dict[str, Any] = {"TableName": self._table_name, "ConsistentRead": self._consistent}
        if self._index_name is not None:
            req["IndexName"] = self._index_name
        if self._limit is not None:
            req["Limit"] = self._limit
        if self._start_key is not None:
            req["ExclusiveStartKey"] = dict(self._start_key)
        if self._projection is not None:
            req["ProjectionExpression"] = ", ".join(ctx.name(a) for a in self._projection)
        if self._filters:
            bound = [ctx.bind(expr, values) for expr, values in self._filters]
            req["FilterExpression"] = bound[0] if len(bound) == 1 else " AND ".join(f"({b})" for b in bound)
        return req

    def _context(self) -> ExpressionContext:
        return ExpressionContext(registry=self._registry, schema=self._schema, rand_suffix=self._rand_suffix)

    def build(self) -> dict[str, Any]:
        ctx = self._context()
        return ctx.apply(self._base_request(ctx))

    def run(self) -> ResultIterator[T]:
        req = self.build()
        operation = getattr(self._transport, self._operation)

        def fetch(last_key: Mapping[str, AttributeValue] | None) -> Mapping[str, Any]:
            page_req = dict(req)
            if last_key:
                page_req["ExclusiveStartKey"] = dict(last_key)
            logger.debug("%s %s index=%s", self._operation, self._table_name, self._index_name)
            return operation(**page_req)

        return ResultIterator(fetch, self._record_type, registry=self._registry)


class QueryBuilder[T](_ReadBuilder[T]):
    _operation = "query"

    def __init__(
        self,
        transport: Any,
        table_name: str,
        record_type: type[T],
        *,
        registry: SchemaRegistry | None = None,
        rand_suffix: Callable[[], str] | None = None,
    ) -> None:
        super().__init__(transport, table_name, record_type, registry=registry, rand_suffix=rand_suffix)
        self._hash: tuple[str, Any] | None = None
        self._range: tuple[str, tuple[Any, ...]] | None = None
        self._forward = True

    def where_hash(self, attribute: str, value: Any) -> QueryBuilder[T]:
        if is_unset(value):
            raise ValidationError("hash key value is required")
        self._hash = (attribute, value)
        return self

    def where_range(self, expression: str, *values: Any) -> QueryBuilder[T]:
        self._range = (expression, values)
        return self

    def descending(self) -> QueryBuilder[T]:
        self._forward = False
        return self

    def ascending(self) -> QueryBuilder[T]:
        self._forward = True
        return self

    def _hash_key(self) -> AttributeDefinition:
        if self._index_name is None:
            return self._schema.hash_key
        return self._schema.index(self._index_name).hash_key

    def build(self) -> dict[str, Any]:
        if self._hash is None:
            raise ValidationError("query requires a hash key condition")

        attribute, value = self._hash
        expected = self._hash_key()
        attr = self._lookup(attribute)
        if attr is None or attr.attribute_name != expected.attribute_name:
            target = self._index_name or "table"
            raise ValidationError(f"{attribute} is not the hash key of {target} ({expected.attribute_name})")

        ctx = self._context()
        key_expr = ctx.equals(attr.attribute_name, encode_attribute(attr, value, registry=self._registry))
        if self._range is not None:
            range_expr, range_values = self._range
            key_expr = f"{key_expr} AND {ctx.bind(range_expr, range_values)}"

        req = self._base_request(ctx)
        req["KeyConditionExpression"] = key_expr
        req["ScanIndexForward"] = self._forward
        return ctx.apply(req)


class ScanBuilder[T](_ReadBuilder[T]):
    _operation = "scan"

    def __init__(
        self,
        transport: Any,
        table_name: str,
        record_type: type[T],
        *,
        registry: SchemaRegistry | None = None,
        rand_suffix: Callable[[], str] | None = None,
    ) -> None:
        super().__init__(transport, table_name, record_type, registry=registry, rand_suffix=rand_suffix)
        self._segment: tuple[int, int] | None = None

    def segment(self, segment: int, total_segments: int) -> ScanBuilder[T]:
        if total_segments <= 0 or segment < 0 or segment >= total_segments:
            raise ValidationError("invalid segment/total_segments")
        self._segment = (segment, total_segments)
        return self

    def build(self) -> dict[str, Any]:
        ctx = self._context()
        req = self._base_request(ctx)
        if self._segment is not None:
            req["Segment"], req["TotalSegments"] = self._segment
        return ctx.apply(req)

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .codec import AttributeValue, encode_attribute
from .errors import IncompleteKeyError, NoValidKeyError
from .model import AttributeDefinition, IndexType, SchemaDescriptor, SchemaRegistry

_MISSING = object()


@dataclass(frozen=True)
class IndexRef:
    name: str
    type: IndexType


@dataclass(frozen=True)
class Key:
    """Wire-encoded key attributes plus the index they address.

    ``index`` is ``None`` for the table's primary key.
    """

    value: Mapping[str, AttributeValue]
    index: IndexRef | None = None

    @property
    def is_primary(self) -> bool:
        return self.index is None

    @property
    def index_name(self) -> str | None:
        return self.index.name if self.index is not None else None


def is_unset(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, bytearray)) and len(value) == 0:
        return True
    return False


def _component_value(record: Any, attr: AttributeDefinition) -> Any:
    if isinstance(record, Mapping):
        if attr.python_name in record:
            return record[attr.python_name]
        return record.get(attr.attribute_name, _MISSING)

    value = getattr(record, attr.python_name, _MISSING)
    if value is _MISSING:
        value = getattr(record, attr.attribute_name, _MISSING)
    return value


def _key_value(
    record: Any, components: Sequence[AttributeDefinition], registry: SchemaRegistry | None
) -> dict[str, AttributeValue]:
    if not components:
        raise IncompleteKeyError("key schema has no components")

    out: dict[str, AttributeValue] = {}
    for attr in components:
        value = _component_value(record, attr)
        if value is _MISSING:
            raise IncompleteKeyError(f"key component {attr.attribute_name} has no value", component=attr.python_name)
        if is_unset(value):
            raise IncompleteKeyError(f"key component {attr.attribute_name} is not set", component=attr.python_name)
        out[attr.attribute_name] = encode_attribute(attr, value, registry=registry)
    return out


def primary_key(
    record: Any, schema: SchemaDescriptor[Any], *, registry: SchemaRegistry | None = None
) -> Key:
    return Key(value=_key_value(record, schema.key, registry))


def secondary_key(
    record: Any, schema: SchemaDescriptor[Any], *, registry: SchemaRegistry | None = None
) -> Key:
    # schema.indexes already holds local indexes ahead of global ones
    for idx in schema.indexes:
        try:
            value = _key_value(record, idx.components, registry)
        except IncompleteKeyError:
            continue
        return Key(value=value, index=IndexRef(name=idx.name, type=idx.type))

    raise NoValidKeyError(f"{schema.record_type.__name__}: no secondary index key is fully set")


def resolve_key(
    record: Any, schema: SchemaDescriptor[Any], *, registry: SchemaRegistry | None = None
) -> Key:
    """Return the key identifying ``record``.

    The primary key wins when all of its components are set; otherwise the
    first secondary index whose components are all set is used.
    """
    try:
        return primary_key(record, schema, registry=registry)
    except IncompleteKeyError:
        pass

    try:
        return secondary_key(record, schema, registry=registry)
    except NoValidKeyError:
        raise NoValidKeyError(
            f"{schema.record_type.__name__}: neither the primary key nor any secondary index key is fully set"
        ) from None


def key_from_item(item: Mapping[str, AttributeValue], schema: SchemaDescriptor[Any]) -> Key:
    missing = [attr.attribute_name for attr in schema.key if attr.attribute_name not in item]
    if missing or not schema.key:
        raise IncompleteKeyError(f"item is missing primary key attributes: {missing}")
    return Key(value={attr.attribute_name: item[attr.attribute_name] for attr in schema.key})

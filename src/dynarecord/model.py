from __future__ import annotations

import collections.abc
import threading
import types
from collections.abc import Mapping, Sequence
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Protocol, Union, cast, get_args, get_origin, get_type_hints, overload

from .errors import SchemaError, ValidationError
from .validation import validate_index_name

type IndexType = Literal["LOCAL", "GLOBAL"]

KEY_ATTRIBUTE_TYPES = frozenset({"S", "N", "B"})

# role prefix -> (index type, key position)
_INDEX_ROLES: dict[str, tuple[IndexType, int]] = {
    "lsi_range": ("LOCAL", 1),
    "gsi_hash": ("GLOBAL", 0),
    "gsi_range": ("GLOBAL", 1),
}


class AttributeConverter(Protocol):
    def to_dynamodb(self, value: Any) -> Any: ...

    def from_dynamodb(self, value: Any) -> Any: ...


@dataclass(frozen=True)
class AttributeDefinition:
    python_name: str
    attribute_name: str
    roles: tuple[str, ...]
    attribute_type: str | None
    annotation: Any = Any
    converter: AttributeConverter | None = None
    required: bool = True


@dataclass(frozen=True)
class Projection:
    type: str
    fields: tuple[str, ...] = ()

    @staticmethod
    def all() -> Projection:
        return Projection(type="ALL")

    @staticmethod
    def keys_only() -> Projection:
        return Projection(type="KEYS_ONLY")

    @staticmethod
    def include(*fields: str) -> Projection:
        return Projection(type="INCLUDE", fields=tuple(fields))


@dataclass(frozen=True)
class SecondaryIndex:
    name: str
    type: IndexType
    components: tuple[AttributeDefinition, ...]
    projection: Projection = field(default_factory=Projection.all)

    @property
    def hash_key(self) -> AttributeDefinition:
        return self.components[0]

    @property
    def range_key(self) -> AttributeDefinition | None:
        return self.components[1] if len(self.components) > 1 else None


@overload
def record_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
) -> Any: ...


@overload
def record_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
    default: Any,
) -> Any: ...


@overload
def record_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
    default_factory: Any,
) -> Any: ...


def record_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    """Declare a dataclass field with its DynamoDB attribute name and key roles.

    Roles are ``"hash"`` and ``"range"`` for the primary key, and
    ``"lsi_range:<index>"``, ``"gsi_hash:<index>"`` or ``"gsi_range:<index>"``
    for secondary indexes. A field may carry several roles.
    """
    if default is not MISSING and default_factory is not MISSING:
        raise ValueError("record_field: cannot set both default and default_factory")

    opts: dict[str, Any] = {"converter": converter, "ignore": ignore}
    if name is not None:
        opts["name"] = name
    if roles is not None:
        opts["roles"] = list(roles)

    return field(default=default, default_factory=default_factory, metadata={"dynarecord": opts})


def _unwrap_optional(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _scalar_type(annotation: Any) -> str | None:
    if annotation is bool:
        return "BOOL"
    if annotation in (int, float, Decimal):
        return "N"
    if annotation is str:
        return "S"
    if annotation in (bytes, bytearray):
        return "B"
    if isinstance(annotation, type) and issubclass(annotation, Enum):
        if issubclass(annotation, str):
            return "S"
        if issubclass(annotation, int):
            return "N"
    return None


def attribute_type_of(annotation: Any) -> str | None:
    annotation = _unwrap_optional(annotation)

    scalar = _scalar_type(annotation)
    if scalar is not None:
        return scalar

    if isinstance(annotation, type) and is_dataclass(annotation):
        return "M"

    origin = get_origin(annotation) or annotation
    if origin in (list, tuple, collections.abc.Sequence, collections.abc.MutableSequence):
        return "L"
    if origin in (dict, collections.abc.Mapping, collections.abc.MutableMapping):
        return "M"
    if origin in (set, frozenset, collections.abc.Set, collections.abc.MutableSet):
        args = get_args(annotation)
        if not args:
            return None
        elem = _scalar_type(_unwrap_optional(args[0]))
        if elem in KEY_ATTRIBUTE_TYPES:
            return f"{elem}S"
    return None


@dataclass(frozen=True)
class SchemaDescriptor[T]:
    record_type: type[T]
    attributes: Mapping[str, AttributeDefinition]
    key: tuple[AttributeDefinition, ...]
    indexes: tuple[SecondaryIndex, ...] = ()

    @property
    def hash_key(self) -> AttributeDefinition:
        if not self.key:
            raise SchemaError(f"{self.record_type.__name__} declares no primary key")
        return self.key[0]

    @property
    def range_key(self) -> AttributeDefinition | None:
        return self.key[1] if len(self.key) > 1 else None

    @property
    def attribute_types(self) -> dict[str, str | None]:
        return {a.attribute_name: a.attribute_type for a in self.attributes.values()}

    @property
    def local_indexes(self) -> tuple[SecondaryIndex, ...]:
        return tuple(idx for idx in self.indexes if idx.type == "LOCAL")

    @property
    def global_indexes(self) -> tuple[SecondaryIndex, ...]:
        return tuple(idx for idx in self.indexes if idx.type == "GLOBAL")

    def index(self, name: str) -> SecondaryIndex:
        for idx in self.indexes:
            if idx.name == name:
                return idx
        raise ValidationError(f"unknown index for {self.record_type.__name__}: {name}")

    def by_attribute_name(self, attribute_name: str) -> AttributeDefinition | None:
        for attr in self.attributes.values():
            if attr.attribute_name == attribute_name:
                return attr
        return None

    @classmethod
    def from_dataclass(cls, record_type: type[T], *, require_key: bool = True) -> SchemaDescriptor[T]:
        if not isinstance(record_type, type) or not is_dataclass(record_type):
            raise SchemaError(f"record type must be a dataclass: {record_type!r}")

        try:
            hints = get_type_hints(record_type)
        except (NameError, TypeError):
            hints = {}

        attributes: dict[str, AttributeDefinition] = {}
        attribute_names: set[str] = set()
        hash_fields: list[AttributeDefinition] = []
        range_fields: list[AttributeDefinition] = []
        index_types: dict[str, IndexType] = {}
        index_parts: dict[str, dict[int, AttributeDefinition]] = {}

        for dc_field in fields(record_type):
            opts = cast(dict[str, Any], dc_field.metadata.get("dynarecord", {}))
            if bool(opts.get("ignore", False)):
                continue

            annotation = hints.get(dc_field.name)
            if annotation is None:
                annotation = Any if isinstance(dc_field.type, str) else dc_field.type

            attribute_name = cast(str, opts.get("name", dc_field.name))
            if not attribute_name:
                raise SchemaError(f"{dc_field.name}: attribute name is empty")
            if attribute_name in attribute_names:
                raise SchemaError(f"duplicate attribute name: {attribute_name}")
            attribute_names.add(attribute_name)

            roles = tuple(cast(list[str], opts.get("roles", [])))
            attr = AttributeDefinition(
                python_name=dc_field.name,
                attribute_name=attribute_name,
                roles=roles,
                attribute_type=attribute_type_of(annotation),
                annotation=annotation,
                converter=cast(AttributeConverter | None, opts.get("converter")),
                required=dc_field.default is MISSING and dc_field.default_factory is MISSING,
            )
            attributes[dc_field.name] = attr

            for role in roles:
                if role == "hash":
                    hash_fields.append(attr)
                    continue
                if role == "range":
                    range_fields.append(attr)
                    continue

                kind, _, index_name = role.partition(":")
                if kind not in _INDEX_ROLES or not index_name:
                    raise SchemaError(f"{dc_field.name}: unknown role: {role}")

                index_type, position = _INDEX_ROLES[kind]
                declared = index_types.setdefault(index_name, index_type)
                if declared != index_type:
                    raise SchemaError(f"index {index_name} is declared both local and global")

                parts = index_parts.setdefault(index_name, {})
                if position in parts:
                    raise SchemaError(f"index {index_name}: duplicate key role: {kind}")
                parts[position] = attr

        if len(hash_fields) > 1:
            raise SchemaError(f"duplicate key role: hash ({', '.join(a.python_name for a in hash_fields)})")
        if len(range_fields) > 1:
            raise SchemaError(f"duplicate key role: range ({', '.join(a.python_name for a in range_fields)})")
        if hash_fields and range_fields and hash_fields[0] is range_fields[0]:
            raise SchemaError(f"duplicate key role: {hash_fields[0].python_name} is both hash and range key")
        if range_fields and not hash_fields:
            raise SchemaError(f"{record_type.__name__} declares a range key without a hash key")
        if require_key and not hash_fields:
            raise SchemaError(f"{record_type.__name__} declares no primary key")

        key = tuple(hash_fields + range_fields)
        projections = cast(Mapping[str, Projection], getattr(record_type, "__projections__", {}) or {})
        for index_name in projections:
            if index_name not in index_parts:
                raise SchemaError(f"index {index_name} declares no key components")

        locals_: list[SecondaryIndex] = []
        globals_: list[SecondaryIndex] = []
        for index_name, parts in index_parts.items():
            try:
                validate_index_name(index_name)
            except ValidationError as err:
                raise SchemaError(str(err)) from err

            index_type = index_types[index_name]
            projection = projections.get(index_name) or Projection.all()
            if index_type == "LOCAL":
                if not hash_fields:
                    raise SchemaError(f"local index {index_name} requires a table hash key")
                if parts[1] is hash_fields[0]:
                    raise SchemaError(f"local index {index_name}: range key duplicates the table hash key")
                locals_.append(
                    SecondaryIndex(
                        name=index_name,
                        type="LOCAL",
                        components=(hash_fields[0], parts[1]),
                        projection=projection,
                    )
                )
                continue

            if 0 not in parts:
                raise SchemaError(f"global index {index_name} declares no hash key")
            if 1 in parts and parts[0] is parts[1]:
                raise SchemaError(f"global index {index_name}: duplicate key role: {parts[0].python_name}")
            components = (parts[0], parts[1]) if 1 in parts else (parts[0],)
            globals_.append(
                SecondaryIndex(name=index_name, type="GLOBAL", components=components, projection=projection)
            )

        for attr in key + tuple(c for idx in locals_ + globals_ for c in idx.components):
            if attr.attribute_type is not None and attr.attribute_type not in KEY_ATTRIBUTE_TYPES:
                raise SchemaError(
                    f"{attr.python_name}: key attributes must be string, number or binary "
                    f"(got {attr.attribute_type})"
                )

        return cls(
            record_type=record_type,
            attributes=attributes,
            key=key,
            indexes=tuple(locals_ + globals_),
        )


class SchemaRegistry:
    """Process-lifetime cache of schema descriptors keyed by record type."""

    def __init__(self) -> None:
        self._schemas: dict[type[Any], SchemaDescriptor[Any]] = {}
        self._lock = threading.Lock()

    def describe[T](self, record_type: type[T], *, require_key: bool = True) -> SchemaDescriptor[T]:
        """Return the cached descriptor for ``record_type``, building it on first use.

        Nested map types are described with ``require_key=False``; the same
        cached descriptor serves both uses.
        """
        schema = self._schemas.get(record_type)
        if schema is None:
            with self._lock:
                schema = self._schemas.get(record_type)
                if schema is None:
                    schema = SchemaDescriptor.from_dataclass(record_type, require_key=False)
                    self._schemas[record_type] = schema

        if require_key and not schema.key:
            raise SchemaError(f"{record_type.__name__} declares no primary key")
        return schema

    def clear(self) -> None:
        with self._lock:
            self._schemas.clear()

    def __contains__(self, record_type: object) -> bool:
        return record_type in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)


default_registry = SchemaRegistry()


def describe[T](record_type: type[T]) -> SchemaDescriptor[T]:
    return default_registry.describe(record_type)

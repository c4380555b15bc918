from __future__ import annotations

import collections.abc
import dataclasses
import math
from collections.abc import Mapping
from dataclasses import is_dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, cast, get_args, get_origin

from boto3.dynamodb.types import Binary, TypeDeserializer, TypeSerializer

from .errors import DecodeError, EncodeError
from .model import AttributeDefinition, SchemaDescriptor, SchemaRegistry, _unwrap_optional, default_registry

type AttributeValue = dict[str, Any]
type AttributeMap = dict[str, AttributeValue]

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _to_python(value: Any, registry: SchemaRegistry) -> Any:
    if value is None:
        return None
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodeError(f"cannot encode non-finite number: {value!r}")
        return Decimal(str(value))
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if is_dataclass(value) and not isinstance(value, type):
        schema = registry.describe(type(value), require_key=False)
        return {
            attr.attribute_name: _to_python(_apply_converter(attr, getattr(value, attr.python_name)), registry)
            for attr in schema.attributes.values()
        }
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise EncodeError(f"map keys must be strings (got {type(k).__name__})")
            out[k] = _to_python(v, registry)
        return out
    if isinstance(value, (set, frozenset)):
        if not value:
            return None
        return {_to_python(v, registry) for v in value}
    if isinstance(value, (list, tuple)):
        return [_to_python(v, registry) for v in value]
    return value


def _apply_converter(attr: AttributeDefinition, value: Any) -> Any:
    if attr.converter is not None and value is not None:
        return attr.converter.to_dynamodb(value)
    return value


def serialize_value(value: Any, *, registry: SchemaRegistry | None = None) -> AttributeValue:
    """Wire form of a single Python value."""
    try:
        return cast(AttributeValue, _serializer.serialize(_to_python(value, registry or default_registry)))
    except (TypeError, ValueError, ArithmeticError) as err:
        raise EncodeError(f"cannot encode value {value!r}: {err}") from err


def encode_attribute(
    attr: AttributeDefinition, value: Any, *, registry: SchemaRegistry | None = None
) -> AttributeValue:
    try:
        value = _apply_converter(attr, value)
        return cast(AttributeValue, _serializer.serialize(_to_python(value, registry or default_registry)))
    except EncodeError as err:
        raise EncodeError(f"{attr.attribute_name}: {err}") from err
    except (TypeError, ValueError, ArithmeticError) as err:
        raise EncodeError(f"{attr.attribute_name}: {err}") from err


def prune_empty(item: Mapping[str, AttributeValue]) -> AttributeMap:
    """Drop empty-string and null attributes, recursing into nested maps.

    Numbers (including zero) and booleans are always kept.
    """
    out: AttributeMap = {}
    for name, av in item.items():
        if "S" in av and av["S"] == "":
            continue
        if av.get("NULL") is True:
            continue
        if "M" in av:
            out[name] = {"M": prune_empty(av["M"])}
            continue
        out[name] = av
    return out


def encode(record: Any, *, registry: SchemaRegistry | None = None) -> AttributeMap:
    if not is_dataclass(record) or isinstance(record, type):
        raise EncodeError(f"record must be a dataclass instance (got {type(record).__name__})")

    registry = registry or default_registry
    schema = registry.describe(type(record), require_key=False)

    out: AttributeMap = {}
    for attr in schema.attributes.values():
        out[attr.attribute_name] = encode_attribute(attr, getattr(record, attr.python_name), registry=registry)
    return prune_empty(out)


def _mismatch(expected: str, value: Any, path: str) -> DecodeError:
    return DecodeError(f"expected {expected}, got {type(value).__name__}", attribute=path)


def _coerce_scalar(value: Any, annotation: Any, path: str, registry: SchemaRegistry) -> Any:
    if annotation is bool:
        if isinstance(value, bool):
            return value
        raise _mismatch("bool", value, path)

    if annotation is int:
        if isinstance(value, Decimal) and value == value.to_integral_value():
            return int(value)
        raise _mismatch("int", value, path)

    if annotation is float:
        if isinstance(value, Decimal):
            return float(value)
        raise _mismatch("float", value, path)

    if annotation is Decimal:
        if isinstance(value, Decimal):
            return value
        raise _mismatch("Decimal", value, path)

    if annotation is str:
        if isinstance(value, str):
            return value
        raise _mismatch("str", value, path)

    if annotation in (bytes, bytearray):
        if isinstance(value, Binary):
            return annotation(value.value)
        if isinstance(value, (bytes, bytearray)):
            return annotation(value)
        raise _mismatch("bytes", value, path)

    if isinstance(annotation, type) and issubclass(annotation, Enum):
        raw = value
        if isinstance(raw, Decimal):
            raw = int(raw) if raw == raw.to_integral_value() else float(raw)
        try:
            return annotation(raw)
        except ValueError as err:
            raise DecodeError(f"{value!r} is not a valid {annotation.__name__}", attribute=path) from err

    if isinstance(annotation, type) and is_dataclass(annotation):
        if not isinstance(value, dict):
            raise _mismatch("map", value, path)
        nested = registry.describe(annotation, require_key=False)
        return _construct(nested, _fields_from_python(nested, value, registry, path), path)

    if annotation in (list, tuple):
        if isinstance(value, list):
            return annotation(value)
        raise _mismatch("list", value, path)

    if annotation is dict:
        if isinstance(value, dict):
            return value
        raise _mismatch("map", value, path)

    if annotation in (set, frozenset):
        if isinstance(value, set):
            return annotation(value)
        raise _mismatch("set", value, path)

    return value


def _coerce(value: Any, annotation: Any, path: str, registry: SchemaRegistry) -> Any:
    if value is None:
        return None

    annotation = _unwrap_optional(annotation)
    if annotation is Any or annotation is object:
        return value

    origin = get_origin(annotation)
    if origin is None:
        return _coerce_scalar(value, annotation, path, registry)

    args = get_args(annotation)
    if origin in (list, collections.abc.Sequence, collections.abc.MutableSequence):
        if not isinstance(value, list):
            raise _mismatch("list", value, path)
        elem = args[0] if args else Any
        return [_coerce(v, elem, f"{path}[{i}]", registry) for i, v in enumerate(value)]

    if origin is tuple:
        if not isinstance(value, list):
            raise _mismatch("list", value, path)
        if len(args) == 2 and args[1] is Ellipsis:
            return tuple(_coerce(v, args[0], f"{path}[{i}]", registry) for i, v in enumerate(value))
        if args and len(args) != len(value):
            raise DecodeError(f"expected {len(args)} elements, got {len(value)}", attribute=path)
        return tuple(
            _coerce(v, args[i] if args else Any, f"{path}[{i}]", registry) for i, v in enumerate(value)
        )

    if origin in (set, frozenset, collections.abc.Set, collections.abc.MutableSet):
        if not isinstance(value, set):
            raise _mismatch("set", value, path)
        elem = args[0] if args else Any
        coerced = {_coerce(v, elem, path, registry) for v in value}
        return frozenset(coerced) if origin is frozenset else coerced

    if origin in (dict, collections.abc.Mapping, collections.abc.MutableMapping):
        if not isinstance(value, dict):
            raise _mismatch("map", value, path)
        elem = args[1] if len(args) == 2 else Any
        return {k: _coerce(v, elem, f"{path}.{k}", registry) for k, v in value.items()}

    if origin is Literal:
        if isinstance(value, Decimal):
            value = int(value) if value == value.to_integral_value() else float(value)
        if value not in args:
            raise DecodeError(f"{value!r} is not one of {args!r}", attribute=path)
        return value

    return value


def _fields_from_python(
    schema: SchemaDescriptor[Any], data: Mapping[str, Any], registry: SchemaRegistry, prefix: str = ""
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    for attr in schema.attributes.values():
        if attr.attribute_name not in data:
            continue

        path = f"{prefix}.{attr.attribute_name}" if prefix else attr.attribute_name
        raw = data[attr.attribute_name]
        if attr.converter is not None and raw is not None:
            try:
                kwargs[attr.python_name] = attr.converter.from_dynamodb(raw)
            except (TypeError, ValueError) as err:
                raise DecodeError(str(err), attribute=path) from err
            continue

        kwargs[attr.python_name] = _coerce(raw, attr.annotation, path, registry)
    return kwargs


def _construct(schema: SchemaDescriptor[Any], kwargs: dict[str, Any], path: str = "") -> Any:
    for attr in schema.attributes.values():
        if attr.required and attr.python_name not in kwargs:
            name = f"{path}.{attr.attribute_name}" if path else attr.attribute_name
            raise DecodeError("missing required attribute", attribute=name)

    try:
        return schema.record_type(**kwargs)
    except TypeError as err:
        raise DecodeError(f"cannot construct {schema.record_type.__name__}: {err}") from err


def decode[T](
    item: Mapping[str, AttributeValue], target: type[T] | T, *, registry: SchemaRegistry | None = None
) -> T:
    """Build a record from a wire attribute map.

    ``target`` is either a dataclass type, in which case a new instance is
    constructed, or a dataclass instance, in which case a copy with the decoded
    attributes replaced is returned.
    """
    registry = registry or default_registry
    if isinstance(target, type):
        if not is_dataclass(target):
            raise DecodeError(f"decode target must be a dataclass type or instance (got {target.__name__})")
        record_type = target
        base: Any = None
    elif is_dataclass(target):
        record_type = type(target)
        base = target
    else:
        raise DecodeError(f"decode target must be a dataclass type or instance (got {type(target).__name__})")

    if not isinstance(item, Mapping):
        raise DecodeError(f"item must be an attribute map (got {type(item).__name__})")

    schema = registry.describe(cast(type[T], record_type), require_key=False)

    data: dict[str, Any] = {}
    for name, av in item.items():
        try:
            data[name] = _deserializer.deserialize(av)
        except (TypeError, ValueError, AttributeError) as err:
            raise DecodeError(f"invalid attribute value: {err}", attribute=name) from err

    kwargs = _fields_from_python(schema, data, registry)
    if base is not None:
        try:
            return cast(T, dataclasses.replace(base, **kwargs))
        except TypeError as err:
            raise DecodeError(f"cannot construct {record_type.__name__}: {err}") from err
    return cast(T, _construct(schema, kwargs))

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import ClassVar

import pytest

from dynarecord import Projection, SchemaError, SchemaRegistry, describe, record_field
from dynarecord.model import SchemaDescriptor


@dataclass(frozen=True)
class Order:
    customer: str | None = record_field(name="Customer", roles=["hash"], default=None)
    order_id: str | None = record_field(name="OrderID", roles=["range"], default=None)
    status: str | None = record_field(name="Status", roles=["gsi_hash:ByStatus"], default=None)
    created: int | None = record_field(name="Created", roles=["lsi_range:ByCreated", "gsi_range:ByStatus"], default=None)
    email: str | None = record_field(name="Email", roles=["gsi_hash:ByEmail"], default=None)
    total: float = 0.0
    tags: set[str] = field(default_factory=set)
    lines: list[str] = field(default_factory=list)
    cache: str = record_field(ignore=True, default="")

    __projections__: ClassVar[dict[str, Projection]] = {"ByEmail": Projection.keys_only()}


def test_describe_extracts_keys_indexes_and_attribute_names() -> None:
    schema = SchemaDescriptor.from_dataclass(Order)

    assert [a.attribute_name for a in schema.key] == ["Customer", "OrderID"]
    assert schema.hash_key.python_name == "customer"
    assert schema.range_key is not None and schema.range_key.attribute_name == "OrderID"
    assert schema.attributes["total"].attribute_name == "total"
    assert "cache" not in schema.attributes


def test_describe_orders_local_indexes_before_global_indexes() -> None:
    schema = SchemaDescriptor.from_dataclass(Order)

    assert [(idx.name, idx.type) for idx in schema.indexes] == [
        ("ByCreated", "LOCAL"),
        ("ByStatus", "GLOBAL"),
        ("ByEmail", "GLOBAL"),
    ]

    by_created = schema.index("ByCreated")
    assert [c.attribute_name for c in by_created.components] == ["Customer", "Created"]

    by_status = schema.index("ByStatus")
    assert by_status.hash_key.attribute_name == "Status"
    assert by_status.range_key is not None and by_status.range_key.attribute_name == "Created"

    by_email = schema.index("ByEmail")
    assert by_email.range_key is None
    assert by_email.projection == Projection.keys_only()
    assert by_status.projection == Projection.all()


def test_describe_reports_semantic_attribute_types() -> None:
    types = SchemaDescriptor.from_dataclass(Order).attribute_types
    assert types["Customer"] == "S"
    assert types["Created"] == "N"
    assert types["total"] == "N"
    assert types["tags"] == "SS"
    assert types["lines"] == "L"


def test_describe_rejects_missing_primary_key() -> None:
    @dataclass(frozen=True)
    class Bad:
        name: str = ""

    with pytest.raises(SchemaError, match="no primary key"):
        SchemaDescriptor.from_dataclass(Bad)


def test_describe_rejects_range_without_hash() -> None:
    @dataclass(frozen=True)
    class Bad:
        sort: str = record_field(roles=["range"], default="")

    with pytest.raises(SchemaError, match="range key without a hash key"):
        SchemaDescriptor.from_dataclass(Bad)


@pytest.mark.parametrize("role", ["hash", "range", "gsi_hash:ByX"])
def test_describe_rejects_duplicate_key_roles(role: str) -> None:
    @dataclass(frozen=True)
    class Bad:
        pk: str = record_field(roles=["hash"], default="")
        sk: str = record_field(roles=["range"], default="")
        a: str = record_field(roles=[role], default="")
        b: str = record_field(roles=[role], default="")

    with pytest.raises(SchemaError, match="duplicate key role"):
        SchemaDescriptor.from_dataclass(Bad)


def test_describe_rejects_global_index_without_hash() -> None:
    @dataclass(frozen=True)
    class Bad:
        pk: str = record_field(roles=["hash"], default="")
        when: int = record_field(roles=["gsi_range:ByWhen"], default=0)

    with pytest.raises(SchemaError, match="declares no hash key"):
        SchemaDescriptor.from_dataclass(Bad)


def test_describe_rejects_projection_for_index_without_components() -> None:
    @dataclass(frozen=True)
    class Bad:
        pk: str = record_field(roles=["hash"], default="")

        __projections__: ClassVar[dict[str, Projection]] = {"Ghost": Projection.all()}

    with pytest.raises(SchemaError, match="declares no key components"):
        SchemaDescriptor.from_dataclass(Bad)


def test_describe_rejects_unknown_role_and_mixed_index_types() -> None:
    @dataclass(frozen=True)
    class UnknownRole:
        pk: str = record_field(roles=["partition"], default="")

    with pytest.raises(SchemaError, match="unknown role"):
        SchemaDescriptor.from_dataclass(UnknownRole)

    @dataclass(frozen=True)
    class Mixed:
        pk: str = record_field(roles=["hash", "gsi_hash:Idx"], default="")
        sk: str = record_field(roles=["range", "lsi_range:Idx"], default="")

    with pytest.raises(SchemaError, match="both local and global"):
        SchemaDescriptor.from_dataclass(Mixed)


def test_describe_rejects_non_scalar_key_and_duplicate_attribute_names() -> None:
    @dataclass(frozen=True)
    class ListKey:
        pk: list[str] = record_field(roles=["hash"], default_factory=list)

    with pytest.raises(SchemaError, match="key attributes must be string, number or binary"):
        SchemaDescriptor.from_dataclass(ListKey)

    @dataclass(frozen=True)
    class Clash:
        pk: str = record_field(name="id", roles=["hash"], default="")
        other: str = record_field(name="id", default="")

    with pytest.raises(SchemaError, match="duplicate attribute name"):
        SchemaDescriptor.from_dataclass(Clash)


def test_describe_rejects_non_dataclass() -> None:
    class Plain:
        pass

    with pytest.raises(SchemaError, match="must be a dataclass"):
        SchemaDescriptor.from_dataclass(Plain)


def test_record_field_rejects_default_and_factory() -> None:
    with pytest.raises(ValueError, match="cannot set both"):
        record_field(default="", default_factory=str)


def test_registry_caches_by_type_identity() -> None:
    registry = SchemaRegistry()
    first = registry.describe(Order)
    assert registry.describe(Order) is first
    assert Order in registry
    assert len(registry) == 1

    registry.clear()
    assert Order not in registry
    assert describe(Order) is describe(Order)


def test_registry_builds_one_descriptor_under_concurrent_first_use() -> None:
    registry = SchemaRegistry()
    barrier = threading.Barrier(8)
    results: list[SchemaDescriptor[Order]] = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        schema = registry.describe(Order)
        with lock:
            results.append(schema)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    assert all(r is results[0] for r in results)


def test_registry_describes_keyless_types_for_nested_use_only() -> None:
    @dataclass(frozen=True)
    class Address:
        street: str = ""

    registry = SchemaRegistry()
    nested = registry.describe(Address, require_key=False)
    assert nested.key == ()
    with pytest.raises(SchemaError, match="no primary key"):
        registry.describe(Address)


def test_describe_rejects_one_field_used_twice_in_a_key() -> None:
    @dataclass(frozen=True)
    class SameField:
        pk: str = record_field(roles=["hash", "range"], default="")

    with pytest.raises(SchemaError, match="pk is both hash and range key"):
        SchemaDescriptor.from_dataclass(SameField)

    @dataclass(frozen=True)
    class LocalOnHash:
        pk: str = record_field(roles=["hash", "lsi_range:ByPk"], default="")
        sk: str = record_field(roles=["range"], default="")

    with pytest.raises(SchemaError, match="range key duplicates the table hash key"):
        SchemaDescriptor.from_dataclass(LocalOnHash)

    @dataclass(frozen=True)
    class GlobalOnOneField:
        pk: str = record_field(roles=["hash"], default="")
        tag: str = record_field(roles=["gsi_hash:ByTag", "gsi_range:ByTag"], default="")

    with pytest.raises(SchemaError, match="global index ByTag: duplicate key role"):
        SchemaDescriptor.from_dataclass(GlobalOnOneField)

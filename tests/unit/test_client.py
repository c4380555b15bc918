from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest
from botocore.exceptions import ClientError

from dynarecord import (
    BatchIncompleteError,
    Client,
    IncompleteKeyError,
    NotFoundError,
    NoValidKeyError,
    ValidationError,
    record_field,
)
from dynarecord.testkit import ANY, FakeDynamoDBClient, InMemoryDynamoDBClient, sequential_suffixes


@dataclass(frozen=True)
class Entry:
    key: str | None = record_field(name="Key", roles=["hash"], default=None)
    value: str = record_field(name="Value", default="")


@dataclass(frozen=True)
class User:
    user_id: str | None = record_field(name="UserID", roles=["hash"], default=None)
    email: str | None = record_field(name="Email", roles=["gsi_hash:ByEmail"], default=None)
    name: str = ""


def _in_memory() -> tuple[Client, InMemoryDynamoDBClient]:
    backend = InMemoryDynamoDBClient()
    backend.add_table("entries", "Key")
    backend.add_table("users", "UserID")
    return Client(backend), backend


def test_put_then_get_round_trips_record() -> None:
    client, backend = _in_memory()

    client.put("entries", Entry(key="k1", value="v1"))

    assert backend.items("entries") == [{"Key": {"S": "k1"}, "Value": {"S": "v1"}}]
    assert client.get("entries", Entry(key="k1")) == Entry(key="k1", value="v1")


def test_get_missing_item_raises_not_found() -> None:
    client, _ = _in_memory()

    with pytest.raises(NotFoundError, match="item not found in entries"):
        client.get("entries", Entry(key="missing"))


def test_get_and_delete_via_global_index() -> None:
    client, backend = _in_memory()
    client.put("users", User(user_id="u1", email="a@example.com", name="Ann"))
    backend.calls.clear()

    found = client.get("users", User(email="a@example.com"))
    assert found == User(user_id="u1", email="a@example.com", name="Ann")

    method, req = backend.calls[-1]
    assert method == "query"
    assert req["IndexName"] == "ByEmail"
    assert req["Limit"] == 1

    client.delete("users", User(email="a@example.com"))
    assert backend.items("users") == []
    assert backend.calls[-1] == ("delete_item", {"TableName": "users", "Key": {"UserID": {"S": "u1"}}})


def test_consistent_get_through_global_index_is_rejected() -> None:
    client, _ = _in_memory()

    with pytest.raises(ValidationError, match="global secondary indexes"):
        client.get("users", User(email="a@example.com"), consistent_read=True)


def test_operations_reject_records_without_usable_key() -> None:
    fake = FakeDynamoDBClient()
    client = Client(fake)

    with pytest.raises(IncompleteKeyError):
        client.put("users", User(email="a@example.com"))
    with pytest.raises(NoValidKeyError):
        client.get("users", User(name="nobody"))
    with pytest.raises(NoValidKeyError):
        client.delete("users", User())

    assert fake.calls == []


def test_put_binds_condition_placeholders() -> None:
    fake = FakeDynamoDBClient()
    fake.expect(
        "put_item",
        {
            "TableName": "entries",
            "Item": {"Key": {"S": "k1"}, "Value": {"S": "v1"}},
            "ConditionExpression": "attribute_not_exists(#Key_s1) OR #Value_s2 = :old_s3",
            "ExpressionAttributeNames": {"#Key_s1": "Key", "#Value_s2": "Value"},
            "ExpressionAttributeValues": {":old_s3": {"S": "v0"}},
        },
    )

    client = Client(fake, rand_suffix=sequential_suffixes())
    client.put(
        "entries",
        Entry(key="k1", value="v1"),
        condition="attribute_not_exists(Key) OR Value = :old",
        values=["v0"],
    )
    fake.assert_no_pending()

    with pytest.raises(ValidationError, match="without a condition"):
        client.put("entries", Entry(key="k1"), values=["v0"])


def test_transport_errors_propagate_unchanged() -> None:
    err = ClientError({"Error": {"Code": "ConditionalCheckFailedException", "Message": "nope"}}, "PutItem")
    fake = FakeDynamoDBClient()
    fake.expect("put_item", {"TableName": "entries"}, error=err)

    with pytest.raises(ClientError) as excinfo:
        Client(fake).put("entries", Entry(key="k1"))
    assert excinfo.value is err


def test_batch_get_splits_requests_and_preserves_order() -> None:
    client, backend = _in_memory()
    entries = [Entry(key=f"k{i:03d}", value=str(i)) for i in range(250)]
    client.batch_put("entries", entries)
    backend.calls.clear()

    wanted = list(reversed(entries)) + [Entry(key="missing"), Entry(key="k000")]
    got = client.batch_get("entries", wanted)

    assert got == list(reversed(entries))
    sizes = [len(req["RequestItems"]["entries"]["Keys"]) for method, req in backend.calls]
    assert sizes == [100, 100, 51]


def test_batch_write_splits_requests() -> None:
    client, backend = _in_memory()
    client.batch_write("entries", puts=[Entry(key=f"k{i}", value="v") for i in range(60)])

    sizes = [len(req["RequestItems"]["entries"]) for _, req in backend.calls]
    assert sizes == [25, 25, 10]
    assert len(backend.items("entries")) == 60

    backend.calls.clear()
    client.batch_delete("entries", [Entry(key=f"k{i}") for i in range(30)])
    assert [len(req["RequestItems"]["entries"]) for _, req in backend.calls] == [25, 5]
    assert len(backend.items("entries")) == 30


def test_batch_write_reports_unprocessed_requests() -> None:
    leftover = {"PutRequest": {"Item": {"Key": {"S": "k1"}, "Value": {"S": "v"}}}}
    fake = FakeDynamoDBClient()
    fake.expect(
        "batch_write_item",
        {"RequestItems": {"entries": ANY}},
        response={"UnprocessedItems": {"entries": [leftover]}},
    )

    with pytest.raises(BatchIncompleteError) as excinfo:
        Client(fake).batch_put("entries", [Entry(key="k1", value="v"), Entry(key="k2", value="v")])

    assert excinfo.value.operation == "batch_write"
    assert excinfo.value.unprocessed == [leftover]


def test_batch_get_reports_unprocessed_keys_with_partial_results() -> None:
    def check(req: Any) -> None:
        assert req["RequestItems"]["entries"]["Keys"] == [{"Key": {"S": "k1"}}, {"Key": {"S": "k2"}}]

    fake = FakeDynamoDBClient()
    fake.expect(
        "batch_get_item",
        check,
        response={
            "Responses": {"entries": [{"Key": {"S": "k1"}, "Value": {"S": "v1"}}]},
            "UnprocessedKeys": {"entries": {"Keys": [{"Key": {"S": "k2"}}]}},
        },
    )

    with pytest.raises(BatchIncompleteError) as excinfo:
        Client(fake).batch_get("entries", [Entry(key="k1"), Entry(key="k2")])

    assert excinfo.value.items == [Entry(key="k1", value="v1")]
    assert excinfo.value.unprocessed == [{"Key": {"S": "k2"}}]


def test_batch_operations_require_primary_keys() -> None:
    client, backend = _in_memory()

    with pytest.raises(IncompleteKeyError):
        client.batch_get("users", [User(email="a@example.com")])
    with pytest.raises(IncompleteKeyError):
        client.batch_put("users", [User(user_id="u1"), User(email="b@example.com")])

    assert backend.calls == []
    assert client.batch_get("users", []) == []


def test_condition_expressions_accept_field_names() -> None:
    fake = FakeDynamoDBClient()
    fake.expect("put_item", {"TableName": "entries"}, expressions={"ConditionExpression": "Value = 'v0'"})
    fake.expect(
        "delete_item",
        {"Key": {"Key": {"S": "k1"}}},
        expressions={"ConditionExpression": "attribute_exists(Key) AND Value <> 'v2'"},
    )

    client = Client(fake)
    client.put("entries", Entry(key="k1", value="v1"), condition="value = :old", values=["v0"])
    client.delete("entries", Entry(key="k1"), condition="attribute_exists(key) AND value <> :v", values=["v2"])
    fake.assert_no_pending()

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from boto3.dynamodb.types import TypeDeserializer

from .client import BATCH_GET_LIMIT, BATCH_WRITE_LIMIT

_deserializer = TypeDeserializer()
_REF_RE = re.compile(r"[#:][A-Za-z0-9_]+")


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()


def _assert_match(expected: Any, actual: Any, *, path: str) -> None:
    if expected is ANY:
        return

    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            raise AssertionError(f"{path}: expected dict, got {type(actual).__name__}")
        for k, v in expected.items():
            if k not in actual:
                raise AssertionError(f"{path}: missing key {k!r}")
            _assert_match(v, actual[k], path=f"{path}.{k}")
        return

    if isinstance(expected, list):
        if not isinstance(actual, list):
            raise AssertionError(f"{path}: expected list, got {type(actual).__name__}")
        if len(expected) != len(actual):
            raise AssertionError(f"{path}: expected {len(expected)} items, got {len(actual)}")
        for i, (e, a) in enumerate(zip(expected, actual, strict=True)):
            _assert_match(e, a, path=f"{path}[{i}]")
        return

    if expected != actual:
        raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")


def render_expression(req: Mapping[str, Any], field: str) -> str | None:
    """Return ``req[field]`` with generated references replaced by what they stand for.

    ``#ref`` becomes the attribute name and ``:ref`` the Python value (strings
    quoted), so ``"#Value_ab = :v_cd"`` renders as ``"Value = 42"``.
    """
    expression = req.get(field)
    if expression is None:
        return None

    names = req.get("ExpressionAttributeNames") or {}
    values = req.get("ExpressionAttributeValues") or {}

    def substitute(match: re.Match[str]) -> str:
        ref = match.group(0)
        if ref.startswith("#"):
            return str(names.get(ref, ref))
        if ref not in values:
            return ref
        value = _deserializer.deserialize(values[ref])
        return repr(value) if isinstance(value, str) else str(value)

    return _REF_RE.sub(substitute, str(expression))


@dataclass(frozen=True)
class ExpectedCall:
    method: str
    expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None
    expressions: Mapping[str, str] | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None


class FakeDynamoDBClient:
    """Scripted client: each call must match the next expectation in order.

    ``expressions`` maps request fields such as ``"FilterExpression"`` to their
    rendered form (see ``render_expression``), which does not depend on the
    generated placeholder suffixes.
    """

    def __init__(self) -> None:
        self._expected: list[ExpectedCall] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None,
        *,
        expressions: Mapping[str, str] | None = None,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._expected.append(
            ExpectedCall(method=method, expected=expected, expressions=expressions, response=response, error=error)
        )

    def assert_no_pending(self) -> None:
        if self._expected:
            raise AssertionError(f"pending expected calls: {self._expected!r}")

    def _handle(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        self.calls.append((method, dict(req)))
        if not self._expected:
            raise AssertionError(f"unexpected call: {method}")

        call = self._expected.pop(0)
        if call.method != method:
            raise AssertionError(f"expected {call.method}, got {method}")

        if callable(call.expected):
            call.expected(req)
        elif call.expected is not None:
            _assert_match(dict(call.expected), req, path=method)

        for field, rendered in (call.expressions or {}).items():
            actual = render_expression(req, field)
            if actual != rendered:
                raise AssertionError(f"{method}.{field}: expected {rendered!r}, got {actual!r}")

        if call.error is not None:
            raise call.error

        return dict(call.response or {})

    def put_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("put_item", kwargs)

    def get_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("get_item", kwargs)

    def delete_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("delete_item", kwargs)

    def query(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("query", kwargs)

    def scan(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("scan", kwargs)

    def batch_get_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("batch_get_item", kwargs)

    def batch_write_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._handle("batch_write_item", kwargs)


_EQUALITY_RE = re.compile(r"^\s*(#[A-Za-z0-9_]+)\s*=\s*(:[A-Za-z0-9_]+)\s*$")

type _Identity = tuple[tuple[str, str, Any], ...]


class InMemoryDynamoDBClient:
    """Dict-backed stand-in for the low-level client.

    Tables are registered with their primary key attribute names. Queries
    support equality key conditions only; filter and condition expressions are
    rejected.
    """

    def __init__(self) -> None:
        self._keys: dict[str, tuple[str, ...]] = {}
        self._items: dict[str, dict[_Identity, dict[str, Any]]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def add_table(self, table_name: str, *key_attributes: str) -> None:
        if not key_attributes:
            raise ValueError("a table needs at least one key attribute")
        self._keys[table_name] = tuple(key_attributes)
        self._items.setdefault(table_name, {})

    def items(self, table_name: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(item) for item in self._table(table_name).values()]

    def _table(self, table_name: str) -> dict[_Identity, dict[str, Any]]:
        if table_name not in self._items:
            raise AssertionError(f"unknown table: {table_name}")
        return self._items[table_name]

    def _identity(self, table_name: str, item: Mapping[str, Any]) -> _Identity:
        out: list[tuple[str, str, Any]] = []
        for name in self._keys[table_name]:
            if name not in item:
                raise AssertionError(f"{table_name}: missing key attribute {name}")
            (kind, raw), *_ = item[name].items()
            out.append((name, kind, raw))
        return tuple(out)

    @staticmethod
    def _reject_expressions(req: Mapping[str, Any], *names: str) -> None:
        for name in names:
            if req.get(name):
                raise AssertionError(f"{name} is not supported by InMemoryDynamoDBClient")

    def put_item(self, **req: Any) -> Mapping[str, Any]:
        self.calls.append(("put_item", dict(req)))
        self._reject_expressions(req, "ConditionExpression")
        table_name = req["TableName"]
        self._table(table_name)[self._identity(table_name, req["Item"])] = copy.deepcopy(req["Item"])
        return {}

    def get_item(self, **req: Any) -> Mapping[str, Any]:
        self.calls.append(("get_item", dict(req)))
        table_name = req["TableName"]
        item = self._table(table_name).get(self._identity(table_name, req["Key"]))
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def delete_item(self, **req: Any) -> Mapping[str, Any]:
        self.calls.append(("delete_item", dict(req)))
        self._reject_expressions(req, "ConditionExpression")
        table_name = req["TableName"]
        self._table(table_name).pop(self._identity(table_name, req["Key"]), None)
        return {}

    def batch_get_item(self, **req: Any) -> Mapping[str, Any]:
        self.calls.append(("batch_get_item", dict(req)))
        responses: dict[str, list[dict[str, Any]]] = {}
        total = 0
        for table_name, spec in req["RequestItems"].items():
            table = self._table(table_name)
            total += len(spec["Keys"])
            found = [table.get(self._identity(table_name, key)) for key in spec["Keys"]]
            responses[table_name] = [copy.deepcopy(item) for item in found if item is not None]
        if total > BATCH_GET_LIMIT:
            raise AssertionError(f"batch_get_item supports at most {BATCH_GET_LIMIT} keys (got {total})")
        return {"Responses": responses, "UnprocessedKeys": {}}

    def batch_write_item(self, **req: Any) -> Mapping[str, Any]:
        self.calls.append(("batch_write_item", dict(req)))
        total = sum(len(writes) for writes in req["RequestItems"].values())
        if total > BATCH_WRITE_LIMIT:
            raise AssertionError(f"batch_write_item supports at most {BATCH_WRITE_LIMIT} writes (got {total})")

        for table_name, writes in req["RequestItems"].items():
            table = self._table(table_name)
            for write in writes:
                if "PutRequest" in write:
                    item = write["PutRequest"]["Item"]
                    table[self._identity(table_name, item)] = copy.deepcopy(item)
                else:
                    table.pop(self._identity(table_name, write["DeleteRequest"]["Key"]), None)
        return {"UnprocessedItems": {}}

    def query(self, **req: Any) -> Mapping[str, Any]:
        self.calls.append(("query", dict(req)))
        self._reject_expressions(req, "FilterExpression")
        names = req.get("ExpressionAttributeNames") or {}
        values = req.get("ExpressionAttributeValues") or {}

        conditions: list[tuple[str, Any]] = []
        for part in req["KeyConditionExpression"].split(" AND "):
            match = _EQUALITY_RE.match(part)
            if match is None:
                raise AssertionError(f"unsupported key condition: {part!r}")
            conditions.append((names[match.group(1)], values[match.group(2)]))

        matches = [
            item
            for item in self._table(req["TableName"]).values()
            if all(item.get(name) == value for name, value in conditions)
        ]
        if req.get("ScanIndexForward") is False:
            matches.reverse()
        return self._page(req, matches)

    def scan(self, **req: Any) -> Mapping[str, Any]:
        self.calls.append(("scan", dict(req)))
        self._reject_expressions(req, "FilterExpression")
        return self._page(req, list(self._table(req["TableName"]).values()))

    def _page(self, req: Mapping[str, Any], matches: Sequence[dict[str, Any]]) -> Mapping[str, Any]:
        table_name = req["TableName"]
        start = 0
        if req.get("ExclusiveStartKey"):
            after = self._identity(table_name, req["ExclusiveStartKey"])
            identities = [self._identity(table_name, item) for item in matches]
            start = identities.index(after) + 1 if after in identities else len(matches)

        limit = req.get("Limit")
        end = len(matches) if limit is None else min(len(matches), start + limit)
        page = [copy.deepcopy(item) for item in matches[start:end]]

        resp: dict[str, Any] = {"Items": page, "Count": len(page), "ScannedCount": len(page)}
        if end < len(matches) and page:
            last = page[-1]
            resp["LastEvaluatedKey"] = {name: last[name] for name in self._keys[table_name]}
        return resp

from __future__ import annotations

import re
import secrets
import string
from collections.abc import Callable, Sequence
from typing import Any

from .codec import AttributeValue, serialize_value
from .errors import ValidationError
from .model import SchemaDescriptor, SchemaRegistry
from .validation import validate_expression

_TOKEN_RE = re.compile(r"(?P<value>:[A-Za-z0-9_]+)|(?P<name>#[A-Za-z0-9_]+)|(?P<ident>[A-Za-z_][A-Za-z0-9_]*)")
_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_]")
_KEYWORDS = frozenset({"AND", "OR", "NOT", "BETWEEN", "IN"})
_SUFFIX_ALPHABET = string.ascii_letters


def random_suffix(n: int = 8) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(n))


class ExpressionContext:
    """Placeholder bookkeeping shared by every expression of one request.

    Caller expressions use ``:name`` placeholders bound positionally to the
    values passed alongside them. Each placeholder and each attribute name is
    rewritten to a generated, request-unique reference. With a ``schema``,
    top-level identifiers naming a record field resolve to that field's
    attribute name.
    """

    def __init__(
        self,
        *,
        registry: SchemaRegistry | None = None,
        schema: SchemaDescriptor[Any] | None = None,
        rand_suffix: Callable[[], str] | None = None,
    ) -> None:
        self.names: dict[str, str] = {}
        self.values: dict[str, AttributeValue] = {}
        self._name_refs: dict[str, str] = {}
        self._registry = registry
        self._schema = schema
        self._rand_suffix = rand_suffix or random_suffix

    def _unique(self, prefix: str, base: str, taken: dict[str, Any]) -> str:
        base = _UNSAFE_RE.sub("_", base) or "x"
        while True:
            ref = f"{prefix}{base}_{self._rand_suffix()}"
            if ref not in taken:
                return ref

    def name(self, attribute_name: str) -> str:
        ref = self._name_refs.get(attribute_name)
        if ref is None:
            ref = self._unique("#", attribute_name, self.names)
            self.names[ref] = attribute_name
            self._name_refs[attribute_name] = ref
        return ref

    def value(self, value: Any, *, hint: str = "v") -> str:
        return self.encoded_value(serialize_value(value, registry=self._registry), hint=hint)

    def encoded_value(self, av: AttributeValue, *, hint: str = "v") -> str:
        ref = self._unique(":", hint, self.values)
        self.values[ref] = av
        return ref

    def equals(self, attribute_name: str, av: AttributeValue) -> str:
        return f"{self.name(attribute_name)} = {self.encoded_value(av, hint=attribute_name)}"

    def bind(self, expression: str, values: Sequence[Any]) -> str:
        validate_expression(expression)

        bound: dict[str, str] = {}
        parts: list[str] = []
        pos = 0
        for match in _TOKEN_RE.finditer(expression):
            parts.append(expression[pos : match.start()])
            pos = match.end()
            token = match.group(0)

            if match.lastgroup == "value":
                ref = bound.get(token)
                if ref is None:
                    if len(bound) >= len(values):
                        raise ValidationError(
                            f"expression {expression!r} has more placeholders than values ({len(values)})"
                        )
                    ref = self.value(values[len(bound)], hint=token[1:])
                    bound[token] = ref
                parts.append(ref)
                continue

            if match.lastgroup == "ident" and not _is_keyword_or_function(expression, match):
                parts.append(self.name(self._attribute_name(expression, match)))
                continue

            parts.append(token)

        parts.append(expression[pos:])
        if len(bound) != len(values):
            raise ValidationError(
                f"expression {expression!r} binds {len(bound)} placeholders but {len(values)} values were given"
            )
        return "".join(parts)

    def _attribute_name(self, expression: str, match: re.Match[str]) -> str:
        token = match.group(0)
        # nested path segments are not record fields
        if self._schema is None or expression[: match.start()].endswith("."):
            return token
        attr = self._schema.attributes.get(token)
        return attr.attribute_name if attr is not None else token

    def apply(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.names:
            req["ExpressionAttributeNames"] = dict(self.names)
        if self.values:
            req["ExpressionAttributeValues"] = dict(self.values)
        return req


def _is_keyword_or_function(expression: str, match: re.Match[str]) -> bool:
    if match.group(0).upper() in _KEYWORDS:
        return True
    rest = expression[match.end() :].lstrip()
    return rest.startswith("(")

from __future__ import annotations

import itertools
from collections.abc import Callable

from .mocks import ANY, FakeDynamoDBClient, InMemoryDynamoDBClient, render_expression


def sequential_suffixes(prefix: str = "s") -> Callable[[], str]:
    if not prefix.isidentifier():
        raise ValueError("prefix must be an identifier")

    counter = itertools.count(1)

    def suffix() -> str:
        return f"{prefix}{next(counter)}"

    return suffix


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "InMemoryDynamoDBClient",
    "render_expression",
    "sequential_suffixes",
]

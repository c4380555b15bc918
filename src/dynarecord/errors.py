from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class DynarecordError(Exception):
    pass


class SchemaError(DynarecordError, ValueError):
    pass


class KeyResolutionError(DynarecordError):
    pass


class IncompleteKeyError(KeyResolutionError):
    def __init__(self, message: str, *, component: str | None = None) -> None:
        super().__init__(message)
        self.component = component


class NoValidKeyError(KeyResolutionError):
    pass


class EncodeError(DynarecordError):
    pass


class DecodeError(DynarecordError):
    def __init__(self, message: str, *, attribute: str | None = None) -> None:
        super().__init__(f"{attribute}: {message}" if attribute else message)
        self.attribute = attribute


class ExhaustedError(DynarecordError):
    pass


class ValidationError(DynarecordError):
    pass


class NotFoundError(DynarecordError):
    pass


class BatchIncompleteError(DynarecordError):
    def __init__(
        self,
        *,
        operation: str,
        unprocessed: Sequence[Any],
        items: Sequence[Any] = (),
    ) -> None:
        super().__init__(f"{operation}: unprocessed requests remain (unprocessed={len(unprocessed)})")
        self.operation = operation
        self.unprocessed = list(unprocessed)
        self.items = list(items)

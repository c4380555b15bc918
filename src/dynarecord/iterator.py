from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from typing import Any

from .codec import AttributeMap, AttributeValue, decode
from .errors import ExhaustedError
from .model import SchemaRegistry

logger = logging.getLogger(__name__)

type FetchPage = Callable[[Mapping[str, AttributeValue] | None], Mapping[str, Any]]


class ResultIterator[T]:
    """Single-cursor, lazily paginated view over query or scan results.

    ``fetch`` receives the previous page's ``LastEvaluatedKey`` (``None`` for
    the first page) and returns the raw response.
    """

    def __init__(
        self,
        fetch: FetchPage,
        record_type: type[T],
        *,
        registry: SchemaRegistry | None = None,
    ) -> None:
        self._fetch = fetch
        self._record_type = record_type
        self._registry = registry
        self._buffer: deque[AttributeMap] = deque()
        self._last_key: Mapping[str, AttributeValue] | None = None
        self._started = False
        self._lock = threading.RLock()
        self.fetch_count = 0
        self.scanned_count = 0

    @property
    def last_evaluated_key(self) -> Mapping[str, AttributeValue] | None:
        return self._last_key

    def has_next(self) -> bool:
        with self._lock:
            while not self._buffer:
                if self._started and self._last_key is None:
                    return False
                self._fetch_page()
            return True

    def next(self, target: type[T] | T | None = None) -> T:
        """Decode the head item into ``target`` and advance.

        The cursor advances even when decoding fails.
        """
        with self._lock:
            if not self.has_next():
                raise ExhaustedError("result set is exhausted")
            item = self._buffer.popleft()

        return decode(item, target if target is not None else self._record_type, registry=self._registry)

    def _fetch_page(self) -> None:
        resp = self._fetch(self._last_key)
        items = list(resp.get("Items") or [])

        self._started = True
        self.fetch_count += 1
        self.scanned_count += int(resp.get("ScannedCount", len(items)))
        self._buffer.extend(items)
        self._last_key = resp.get("LastEvaluatedKey") or None
        logger.debug(
            "fetched page %d: %d items, more=%s", self.fetch_count, len(items), self._last_key is not None
        )

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        if not self.has_next():
            raise StopIteration
        return self.next()

"""Extractor interface and registry."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Iterator, Sequence
from typing import Any, ClassVar, Generic, Protocol, TypeVar, runtime_checkable

from pydantic import TypeAdapter, ValidationError

from ..models import ParsedLine

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class Extractor(Protocol[T]):
    """Analyzer that derives one typed signal from parsed transcript lines.

    ``extract`` receives only the newly read lines and may be sync or async.
    It must not raise; the scanner still guards every call.
    """

    id: str
    persist: bool
    cache_ttl: float | None

    def extract(self, lines: Sequence[ParsedLine]) -> T | Awaitable[T]:
        ...

    def empty(self) -> T:
        ...

    def merge(self, previous: T | None, fresh: T, *, prior_messages: int) -> T:
        ...

    def dump(self, value: T) -> Any:
        ...

    def load(self, raw: Any) -> T | None:
        ...


class BaseExtractor(Generic[T]):
    """Shared plumbing: persisted form via a pydantic adapter, replace-on-merge."""

    id: ClassVar[str]
    persist: ClassVar[bool] = True
    cache_ttl: ClassVar[float | None] = None
    output_type: ClassVar[Any]

    def __init__(self) -> None:
        self._adapter: TypeAdapter[Any] = TypeAdapter(self.output_type)

    def extract(self, lines: Sequence[ParsedLine]) -> T:
        try:
            return self._extract(lines)
        except Exception:
            logger.exception("Extractor %s failed", self.id)
            return self.empty()

    def _extract(self, lines: Sequence[ParsedLine]) -> T:
        raise NotImplementedError

    def empty(self) -> T:
        raise NotImplementedError

    def merge(self, previous: T | None, fresh: T, *, prior_messages: int) -> T:
        return fresh

    def dump(self, value: T) -> Any:
        return self._adapter.dump_python(value, mode="json")

    def load(self, raw: Any) -> T | None:
        """Validate a persisted value; ``None`` when missing or malformed."""
        if raw is None:
            return None
        try:
            return self._adapter.validate_python(raw)
        except ValidationError as exc:
            logger.warning("Discarding persisted %s data: %s", self.id, exc.errors()[:1])
            return None


class ExtractorRegistry:
    """Ordered set of extractors handed to a scanner instance."""

    def __init__(self, extractors: Sequence[Extractor[Any]] = ()) -> None:
        self._extractors: dict[str, Extractor[Any]] = {}
        for extractor in extractors:
            self.register(extractor)

    def register(self, extractor: Extractor[Any]) -> None:
        if extractor.id in self._extractors:
            raise ValueError(f"Extractor '{extractor.id}' is already registered")
        self._extractors[extractor.id] = extractor

    def unregister(self, extractor_id: str) -> None:
        self._extractors.pop(extractor_id, None)

    def get(self, extractor_id: str) -> Extractor[Any] | None:
        return self._extractors.get(extractor_id)

    def ids(self) -> list[str]:
        return list(self._extractors)

    def __iter__(self) -> Iterator[Extractor[Any]]:
        return iter(list(self._extractors.values()))

    def __len__(self) -> int:
        return len(self._extractors)

    def __contains__(self, extractor_id: object) -> bool:
        return extractor_id in self._extractors

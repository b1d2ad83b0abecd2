"""Resource keys: the identity of a cacheable unit of data.

A key is an ordered sequence of segments such as ``("exam", "detail", "e1")``
or ``("exam", "list", {"page": 1, "size": 20})``. Two keys are equal when
their canonical JSON serializations are equal, so mapping segments compare
by content regardless of insertion order.

Usage:
    key = ResourceKey.of("exam", "detail", exam_id)
    key.family          # "exam"
    key.serialize()     # '["exam","detail","e1"]'
"""

from __future__ import annotations

import copy
import json
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from cachepilot.errors import ResourceKeyError


def _canonical(segments: tuple[Any, ...]) -> str:
    return json.dumps(list(segments), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class ResourceKey:
    """Immutable, hashable resource key.

    Segments are deep-copied on construction, so mutating a filters dict
    after building a key does not change the key.
    """

    __slots__ = ("_segments", "_serialized")

    _segments: tuple[Any, ...]
    _serialized: str

    def __init__(self, segments: Sequence[Any]) -> None:
        if isinstance(segments, (str, bytes)) or not isinstance(segments, Sequence):
            raise ResourceKeyError("Resource key segments must be a sequence", segments=segments)
        if len(segments) == 0:
            raise ResourceKeyError("Resource key must have at least one segment", segments=segments)

        frozen = tuple(copy.deepcopy(list(segments)))
        try:
            serialized = _canonical(frozen)
        except (TypeError, ValueError) as e:
            raise ResourceKeyError(
                "Resource key segments must be JSON-serializable", segments=segments, cause=e
            ) from e

        object.__setattr__(self, "_segments", frozen)
        object.__setattr__(self, "_serialized", serialized)

    @classmethod
    def of(cls, *segments: Any) -> ResourceKey:
        """Build a key from positional segments."""
        return cls(segments)

    @classmethod
    def coerce(cls, value: ResourceKey | Sequence[Any] | str | int) -> ResourceKey:
        """Accept a key, a sequence of segments, or a single scalar segment."""
        if isinstance(value, ResourceKey):
            return value
        if isinstance(value, (str, int)):
            return cls((value,))
        return cls(value)

    @property
    def segments(self) -> tuple[Any, ...]:
        # Copy so callers cannot mutate mapping segments in place
        return copy.deepcopy(self._segments)

    @property
    def family(self) -> str:
        """First segment as a string; the coarse "resource family" identifier."""
        head = self._segments[0]
        return head if isinstance(head, str) else json.dumps(head, sort_keys=True)

    def serialize(self) -> str:
        return self._serialized

    def child(self, *segments: Any) -> ResourceKey:
        """Return a new key with segments appended."""
        return ResourceKey(self._segments + segments)

    def startswith(self, prefix: ResourceKey | Sequence[Any]) -> bool:
        prefix_segments = prefix._segments if isinstance(prefix, ResourceKey) else tuple(prefix)
        if len(prefix_segments) > len(self._segments):
            return False
        return _canonical(self._segments[: len(prefix_segments)]) == _canonical(
            tuple(prefix_segments)
        )

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("ResourceKey is immutable")

    def __copy__(self) -> ResourceKey:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> ResourceKey:
        return self

    def __reduce__(self) -> tuple[Any, ...]:
        return (ResourceKey, (list(self._segments),))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceKey):
            return NotImplemented
        return self._serialized == other._serialized

    def __hash__(self) -> int:
        return hash(self._serialized)

    def __len__(self) -> int:
        return len(self._segments)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.segments)

    def __repr__(self) -> str:
        return f"ResourceKey({self._serialized})"

    def __str__(self) -> str:
        return self._serialized


def merge_filters(filters: Mapping[str, Any] | None, **overrides: Any) -> dict[str, Any]:
    """Copy a filters mapping and apply overrides (e.g. ``page=n + 1``)."""
    merged = dict(filters or {})
    merged.update(overrides)
    return merged


KeyLike = ResourceKey | Sequence[Any] | str | int

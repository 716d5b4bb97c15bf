"""Single-flight flush guard and the key -> artifact registry."""

from __future__ import annotations

from slacknote.core.models import AggregationKey, ArtifactRef


class FlushGuard:
    """Set of aggregation keys with a flush in progress.

    Not a lock and not a queue: a second acquisition for a busy key fails and
    the caller drops the request. Safe under asyncio because the test and the
    mark happen without an intervening await.
    """

    def __init__(self) -> None:
        self._in_flight: set[AggregationKey] = set()

    def try_acquire(self, key: AggregationKey) -> bool:
        if key in self._in_flight:
            return False
        self._in_flight.add(key)
        return True

    def release(self, key: AggregationKey) -> None:
        self._in_flight.discard(key)

    def is_busy(self, key: AggregationKey) -> bool:
        return key in self._in_flight

    def in_flight(self) -> list[str]:
        return sorted(str(key) for key in self._in_flight)


class ArtifactRegistry:
    """Which aggregation keys already have a document.

    Only accessed while the key is held by :class:`FlushGuard`.
    """

    def __init__(self) -> None:
        self._refs: dict[AggregationKey, ArtifactRef] = {}

    def lookup(self, key: AggregationKey) -> ArtifactRef | None:
        return self._refs.get(key)

    def record(self, key: AggregationKey, ref: ArtifactRef) -> None:
        self._refs[key] = ref

    def items(self) -> list[tuple[AggregationKey, ArtifactRef]]:
        return list(self._refs.items())

    def __len__(self) -> int:
        return len(self._refs)

"""Keyed, deduplicated accumulation of labeled message fragments."""

from __future__ import annotations

from collections.abc import Iterable

from slacknote.core.models import AggregationKey, BufferedMessage


class MessageBuffer:
    """In-memory fragment store keyed by :class:`AggregationKey`.

    Fragments are kept in insertion order, which is not necessarily
    chronological: a thread collection can back-fill older replies after
    newer ones were buffered. Callers that need chronological order sort by
    ``ts_value`` themselves, because single-thread and channel-wide flushes
    materialize the same store differently.
    """

    def __init__(self) -> None:
        self._fragments: dict[AggregationKey, list[BufferedMessage]] = {}

    def add(self, key: AggregationKey, fragment: BufferedMessage) -> bool:
        """Insert *fragment* unless ``(ts, label)`` already exists under *key*.

        Returns:
            True when stored, False for a duplicate.
        """
        bucket = self._fragments.setdefault(key, [])
        if any(m.ts == fragment.ts and m.label == fragment.label for m in bucket):
            return False
        bucket.append(fragment)
        return True

    def list(self, key: AggregationKey) -> list[BufferedMessage]:
        return list(self._fragments.get(key, ()))

    def clear(self, key: AggregationKey) -> None:
        self._fragments.pop(key, None)

    def discard(self, key: AggregationKey, fragments: Iterable[BufferedMessage]) -> None:
        """Remove only the given fragments from *key*; later arrivals stay."""
        taken = {(m.ts, m.label) for m in fragments}
        bucket = [m for m in self._fragments.get(key, ()) if (m.ts, m.label) not in taken]
        if bucket:
            self._fragments[key] = bucket
        else:
            self._fragments.pop(key, None)

    def list_by_channel(self, channel: str) -> list[BufferedMessage]:
        """All fragments of every key in *channel*, key by key in insertion order."""
        out: list[BufferedMessage] = []
        for key, bucket in self._fragments.items():
            if key.channel == channel:
                out.extend(bucket)
        return out

    def clear_by_channel(self, channel: str) -> None:
        for key in [k for k in self._fragments if k.channel == channel]:
            del self._fragments[key]

    def discard_by_channel(self, channel: str, fragments: Iterable[BufferedMessage]) -> None:
        fragments = list(fragments)
        for key in [k for k in self._fragments if k.channel == channel]:
            self.discard(key, fragments)

    def status(self) -> list[dict[str, object]]:
        """Diagnostic snapshot of non-empty keys."""
        return [
            {"key": str(key), "count": len(bucket)}
            for key, bucket in self._fragments.items()
            if bucket
        ]

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._fragments.values())

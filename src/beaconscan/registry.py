from __future__ import annotations

from typing import Dict, Iterator, List, Optional

from .models import BeaconRecord


class BeaconRegistry:
    """Track the last dispatched record for every dedup key."""

    def __init__(self) -> None:
        self._entries: Dict[str, BeaconRecord] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def get(self, key: str) -> Optional[BeaconRecord]:
        return self._entries.get(key)

    def keys(self) -> List[str]:
        return list(self._entries)

    def put(self, key: str, record: BeaconRecord) -> None:
        if record.last_seen is None:
            raise ValueError(f"Record for {key!r} has no last_seen timestamp.")
        self._entries[key] = record

    def insert_if_absent(self, key: str, record: BeaconRecord) -> bool:
        """Store ``record`` under ``key`` unless the key is tracked already.

        Returns True when the record was stored, i.e. the sighting is novel.
        """
        if key in self._entries:
            return False
        self.put(key, record)
        return True

    def evict_stale(self, *, now_ms: int, grace_period_ms: int) -> List[str]:
        """Drop entries older than ``grace_period_ms`` and return their keys.

        An entry exactly ``grace_period_ms`` old is kept until the next sweep.
        """
        cutoff = now_ms - grace_period_ms
        evicted = [
            key
            for key, record in self._entries.items()
            if record.last_seen is not None and record.last_seen < cutoff
        ]
        for key in evicted:
            del self._entries[key]
        return evicted

    def clear(self) -> int:
        cleared = len(self._entries)
        self._entries.clear()
        return cleared

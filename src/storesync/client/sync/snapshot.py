"""Per-collection memory of the last reconciled identifier sets."""

from __future__ import annotations

from collections.abc import Iterable


class SnapshotTracker:
    """Last-known identifier set for each collection, keyed by table name.

    The snapshot is the only authority for what counts as "removed": a diff
    is always taken against it and it is updated after every observation.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, frozenset[str]] = {}

    def get(self, table: str) -> frozenset[str]:
        """Get the snapshot for a table (empty if never recorded)."""
        return self._snapshots.get(table, frozenset())

    def update(self, table: str, ids: Iterable[str]) -> None:
        """Record a new identifier set for a table."""
        self._snapshots[table] = frozenset(ids)

    def diff(self, table: str, current: Iterable[str]) -> tuple[set[str], set[str]]:
        """Compare current ids against the snapshot.

        Returns:
            Tuple of (removed, added).
        """
        previous = self.get(table)
        current_ids = set(current)
        return set(previous - current_ids), current_ids - previous

    def clear(self) -> None:
        """Discard every snapshot."""
        self._snapshots.clear()

    def __contains__(self, table: object) -> bool:
        return table in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)

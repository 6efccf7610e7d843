"""Local state store the sync engine reads and writes.

This module provides:
- LocalStateStore: Protocol injected into the engine
- InMemoryStore: Dict-backed store with change listeners
- JsonFileStore: InMemoryStore persisted to a JSON file

Collections are addressed by their local name (see storesync.core.tables).
Listeners are called synchronously with ``(collection, value)`` for every
changed collection. ``replace()`` installs all collections first and only
then notifies, so listeners never see a half-updated view. Values are
treated as immutable: writers pass new lists instead of mutating in place.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

StoreListener = Callable[[str, Any], None]


class LocalStateStore(Protocol):
    """Per-collection get/set access to the local state."""

    def get(self, collection: str) -> Any:
        """Get a collection's current value (None if never set)."""
        ...

    def set(self, collection: str, value: Any) -> None:
        """Replace one collection."""
        ...

    def replace(self, values: Mapping[str, Any]) -> None:
        """Replace several collections in one update."""
        ...

    def clear(self) -> None:
        """Reset every collection to empty."""
        ...

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener. Returns an unsubscribe function."""
        ...


class InMemoryStore:
    """Dict-backed local store.

    Usage:
        store = InMemoryStore()
        unsubscribe = store.subscribe(lambda name, value: print(name))
        store.set("products", [{"id": "p1"}])
        unsubscribe()
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})
        self._listeners: list[StoreListener] = []

    def get(self, collection: str) -> Any:
        return self._data.get(collection)

    def snapshot(self) -> dict[str, Any]:
        """Get a deep copy of the whole state."""
        return copy.deepcopy(self._data)

    def set(self, collection: str, value: Any) -> None:
        self.replace({collection: value})

    def replace(self, values: Mapping[str, Any]) -> None:
        changed = [name for name, value in values.items() if self._data.get(name) != value]
        self._data.update(values)
        if changed:
            self._on_changed(changed)
        for name in changed:
            self._notify(name, self._data[name])

    def clear(self) -> None:
        self.replace({name: _empty_like(value) for name, value in self._data.items()})

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _on_changed(self, collections: list[str]) -> None:
        """Hook for subclasses, called before listeners run."""

    def _notify(self, collection: str, value: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(collection, value)
            except Exception:
                logger.exception("Store listener failed for %s", collection)


class JsonFileStore(InMemoryStore):
    """Local store persisted to a JSON file after every change."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        initial: dict[str, Any] = {}
        if self._path.exists():
            try:
                initial = dict(json.loads(self._path.read_text()))
            except (OSError, ValueError):
                logger.warning("Ignoring unreadable store file %s", self._path)
        super().__init__(initial)

    @property
    def path(self) -> Path:
        return self._path

    def _on_changed(self, collections: list[str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2, sort_keys=True))
        tmp_path.replace(self._path)


def _empty_like(value: Any) -> Any:
    return [] if isinstance(value, list) else None

"""Expanded-folder state, optionally persisted as a JSON list of ids."""

import json
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from loguru import logger

ExpansionListener = Callable[[frozenset[int]], None]


class ExpansionState:
    """The set of expanded entity ids.

    When a ``path`` is given the set is loaded from it on creation and written
    back after every change. A missing or unreadable file starts empty.
    """

    def __init__(self, expanded: Iterable[int] = (), *, path: Path | None = None) -> None:
        self._ids: set[int] = set(expanded)
        self._path = path
        self._listeners: list[ExpansionListener] = []
        if path is not None:
            self._ids |= self._load(path)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._ids

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._ids))

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def ids(self) -> frozenset[int]:
        return frozenset(self._ids)

    def is_expanded(self, entity_id: int) -> bool:
        return entity_id in self._ids

    def expand(self, entity_id: int) -> bool:
        """Expand a node. Returns False when it was already expanded."""
        if entity_id in self._ids:
            return False
        self._ids.add(entity_id)
        self._changed()
        return True

    def collapse(self, entity_id: int) -> bool:
        """Collapse a node. Returns False when it was already collapsed."""
        if entity_id not in self._ids:
            return False
        self._ids.discard(entity_id)
        self._changed()
        return True

    def toggle(self, entity_id: int) -> bool:
        """Flip a node; returns the new expanded state."""
        if not self.collapse(entity_id):
            self.expand(entity_id)
            return True
        return False

    def expand_many(self, entity_ids: Iterable[int]) -> int:
        new = set(entity_ids) - self._ids
        if new:
            self._ids |= new
            self._changed()
        return len(new)

    def collapse_all(self) -> None:
        if self._ids:
            self._ids.clear()
            self._changed()

    def retain(self, live_ids: Iterable[int]) -> None:
        """Forget ids of entities that no longer exist."""
        gone = self._ids - set(live_ids)
        if gone:
            logger.debug("Dropping expansion state for {} removed entities", len(gone))
            self._ids -= gone
            self._changed()

    def subscribe(self, listener: ExpansionListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(sorted(self._ids)), encoding="utf-8")

    def _changed(self) -> None:
        self.save()
        snapshot = self.ids
        for listener in list(self._listeners):
            listener(snapshot)

    @staticmethod
    def _load(path: Path) -> set[int]:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return set()
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable expansion state {}: {}", path, e)
            return set()
        if not isinstance(raw, list) or not all(isinstance(i, int) for i in raw):
            logger.warning("Ignoring malformed expansion state {}", path)
            return set()
        return set(raw)

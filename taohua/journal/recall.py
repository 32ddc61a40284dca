"""
Dream Echo — fair random recall of past memories.

``select_next`` is a pure function over the current id set and the recent
history. It never returns an id that is still in the history while another
id remains unseen, and once every id has been shown it resets so that no
entry is starved. ``DreamEcho`` is the stateful wrapper the service uses.
"""

from __future__ import annotations

import random
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

import structlog

from taohua.errors import CorruptRecordError
from taohua.storage import atomic_write_json, read_json, unlink_if_exists

if TYPE_CHECKING:
    from taohua.journal.repository import EntryRepository

logger = structlog.get_logger(__name__)

DEFAULT_CAPACITY = 10


@dataclass(frozen=True)
class RecallSelection:
    selected_id: Optional[str]
    history: tuple[str, ...]


def select_next(
    all_ids: Sequence[str],
    history: Iterable[str],
    capacity: int = DEFAULT_CAPACITY,
    rng: Optional[random.Random] = None,
) -> RecallSelection:
    """
    Pick the next entry to recall.

    History ids that no longer exist are dropped first. Candidates are the
    ids not in the history; when there are none, the oldest history entries
    are released until the history is shorter than the id set, and the
    whole set becomes eligible again. The pick is uniform over candidates.
    An empty id set yields ``selected_id=None`` and the history unchanged.
    """
    capacity = max(1, capacity)
    rng = rng or random.Random()
    history = tuple(history)
    if not all_ids:
        return RecallSelection(None, history)

    known = set(all_ids)
    pruned = [i for i in history if i in known]

    # Preserve the caller's ordering so a seeded rng is reproducible
    unique_ids = list(dict.fromkeys(all_ids))
    seen = set(pruned)
    candidates = [i for i in unique_ids if i not in seen]
    if not candidates:
        candidates = unique_ids
        keep = max(0, len(unique_ids) - 1)
        pruned = pruned[len(pruned) - keep:] if keep else []

    selected = rng.choice(candidates)
    window = deque((i for i in pruned if i != selected), maxlen=capacity)
    window.append(selected)
    return RecallSelection(selected, tuple(window))


class RecallHistory:
    """Bounded FIFO of recently recalled entry ids, oldest first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, ids: Iterable[str] = ()) -> None:
        self.capacity = max(1, capacity)
        self._ids: deque[str] = deque(ids, maxlen=self.capacity)

    def push(self, entry_id: str) -> None:
        self._ids.append(entry_id)

    def ids(self) -> list[str]:
        return list(self._ids)

    def replace(self, ids: Iterable[str]) -> None:
        self._ids = deque(ids, maxlen=self.capacity)

    def clear(self) -> None:
        self._ids.clear()

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._ids

    def to_dict(self) -> dict:
        return {"capacity": self.capacity, "ids": list(self._ids)}

    @classmethod
    def from_dict(cls, data: dict, capacity: Optional[int] = None) -> RecallHistory:
        ids = data.get("ids", [])
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise CorruptRecordError("recall history ids must be a list of strings")
        return cls(capacity or int(data.get("capacity", DEFAULT_CAPACITY)), ids)


class DreamEcho:
    """
    Serves random recalls from a repository, remembering recent picks.

    History is in memory only unless ``history_path`` is given, in which
    case it is written atomically after every committed pick. The history holds entry
    ids only, never content.
    """

    def __init__(
        self,
        repository: EntryRepository,
        capacity: int = DEFAULT_CAPACITY,
        history_path: Optional[Path] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._repository = repository
        self._history = RecallHistory(capacity)
        self._history_path = history_path
        self._rng = rng or random.Random()
        if history_path is not None and history_path.exists():
            self._history = RecallHistory.from_dict(read_json(history_path), capacity)
            logger.debug("recall.history_loaded", size=len(self._history))

    @property
    def history(self) -> RecallHistory:
        return self._history

    def select(self) -> RecallSelection:
        """Pick the next id without touching the history."""
        return select_next(
            self._repository.ids(),
            self._history.ids(),
            capacity=self._history.capacity,
            rng=self._rng,
        )

    def commit(self, selection: RecallSelection) -> None:
        """Record ``selection`` as shown. Call only once the entry was opened."""
        self._history.replace(selection.history)
        if selection.selected_id is not None and self._history_path is not None:
            atomic_write_json(self._history_path, self._history.to_dict())

    def next_id(self) -> Optional[str]:
        selection = self.select()
        self.commit(selection)
        return selection.selected_id

    def reset(self) -> None:
        self._history.clear()
        if self._history_path is not None:
            unlink_if_exists(self._history_path)

"""
Ownership arena for driver handles.

Every object created by the job is registered here right after creation.
Teardown walks the arena in reverse insertion order, so a run that fails
halfway releases exactly the objects that exist, newest first.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from .errors import TeardownError

logger = logging.getLogger(__name__)


@dataclass
class ArenaEntry:
    index: int
    kind: str
    release: Callable[[], None]
    released: bool = False


class ResourceArena:
    """Insertion-ordered registry of release actions."""

    def __init__(self):
        self._entries: list[ArenaEntry] = []
        self._next_index = 0

    def push(self, kind: str, release: Callable[[], None]) -> int:
        """Register ``release`` for an object that was just created.

        Returns the stable index of the entry.
        """
        entry = ArenaEntry(self._next_index, kind, release)
        self._next_index += 1
        self._entries.append(entry)
        logger.debug("Registered %s (#%d)", kind, entry.index)
        return entry.index

    def kinds(self) -> list[str]:
        """Kinds still owned, in creation order."""
        return [entry.kind for entry in self._entries]

    def __len__(self):
        return len(self._entries)

    def __bool__(self):
        return bool(self._entries)

    def teardown(self):
        """Release every owned object in reverse creation order.

        A failing release is logged and the walk continues so the remaining
        handles are still released; the first failure is re-raised at the end.
        """
        first_error = None
        first_kind = None
        while self._entries:
            entry = self._entries.pop()
            if entry.released:
                continue
            entry.released = True
            logger.debug("Releasing %s (#%d)", entry.kind, entry.index)
            try:
                entry.release()
            except Exception as exc:
                logger.error("Failed to release %s: %s", entry.kind, exc)
                if first_error is None:
                    first_error, first_kind = exc, entry.kind
        if first_error is not None:
            raise TeardownError(f"Releasing {first_kind} failed: {first_error}") from first_error

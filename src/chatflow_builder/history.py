"""
Linear undo/redo history for flow editing.

Every committed GraphStore mutation is stored as an immutable FlowSnapshot.
Committing after an undo discards the redo branch; there is no history tree.
"""

import logging
from collections.abc import Iterable

from .models import Block, Connection, FlowSnapshot

logger = logging.getLogger(__name__)


class HistoryManager:
    """
    Manages the ordered sequence of snapshots plus the current index.

    Entry 0 is the baseline (the seed graph) and undo never goes below it.
    """

    def __init__(self, initial: FlowSnapshot, max_entries: int | None = None):
        """
        Initialize history with a single baseline entry.

        Args:
            initial: Snapshot of the seed graph
            max_entries: Maximum entries to keep (default: unlimited). When
                exceeded, the oldest entries are dropped and the oldest
                retained entry becomes the new baseline.

        Raises:
            ValueError: If max_entries is smaller than 1
        """
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: list[FlowSnapshot] = [initial]
        self._index = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"HistoryManager(entries={len(self._entries)}, index={self._index})"

    # ==================== Properties ====================

    @property
    def index(self) -> int:
        """Position of the current entry."""
        return self._index

    @property
    def current(self) -> FlowSnapshot:
        """The snapshot the editor is currently showing."""
        return self._entries[self._index]

    @property
    def entries(self) -> tuple[FlowSnapshot, ...]:
        """All retained snapshots, oldest first."""
        return tuple(self._entries)

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._entries) - 1

    # ==================== Operations ====================

    def commit(
        self,
        blocks: Iterable[Block],
        connections: Iterable[Connection],
    ) -> FlowSnapshot:
        """
        Append a new snapshot after the current index.

        Any entries after the current index are discarded first.

        Args:
            blocks: Blocks of the new state
            connections: Connections of the new state

        Returns:
            The committed snapshot
        """
        snapshot = FlowSnapshot(blocks=tuple(blocks), connections=tuple(connections))

        discarded = len(self._entries) - self._index - 1
        if discarded:
            del self._entries[self._index + 1 :]
            logger.debug(f"Discarded {discarded} redo entries")

        self._entries.append(snapshot)
        self._index = len(self._entries) - 1

        if self.max_entries is not None and len(self._entries) > self.max_entries:
            excess = len(self._entries) - self.max_entries
            del self._entries[:excess]
            self._index -= excess
            logger.debug(f"Trimmed {excess} oldest history entries")

        logger.debug(
            f"Committed snapshot {self._index} "
            f"(blocks={len(snapshot.blocks)}, connections={len(snapshot.connections)})"
        )
        return snapshot

    def undo(self) -> FlowSnapshot | None:
        """
        Step back one entry.

        Returns:
            The snapshot to restore, or None at the baseline
        """
        if not self.can_undo:
            logger.debug("Undo ignored: already at baseline")
            return None
        self._index -= 1
        logger.debug(f"Undo to snapshot {self._index}")
        return self._entries[self._index]

    def redo(self) -> FlowSnapshot | None:
        """
        Step forward one entry.

        Returns:
            The snapshot to restore, or None at the latest entry
        """
        if not self.can_redo:
            logger.debug("Redo ignored: already at latest snapshot")
            return None
        self._index += 1
        logger.debug(f"Redo to snapshot {self._index}")
        return self._entries[self._index]

    def clear(self, baseline: FlowSnapshot) -> None:
        """Drop every entry and start over from a new baseline."""
        self._entries = [baseline]
        self._index = 0
        logger.info("Cleared history")

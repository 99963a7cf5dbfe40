"""
GraphStore: the editable conversation graph.

The GraphStore owns the block and connection collections, enforces the
structural invariants on every mutation, and commits each state change to the
HistoryManager as exactly one snapshot. Requests that would break an invariant
(second Welcome block, self-loop, duplicate connection, unknown ids) are
ignored rather than raised: they come from UI misuse, not system failure.
"""

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from pydantic import ValidationError

from .config import EditorConfig
from .exceptions import BlockNotFoundError, ConnectionNotFoundError
from .history import HistoryManager
from .models import (
    DATA_MODELS,
    Block,
    BlockType,
    Connection,
    FlowSnapshot,
    HandleRef,
    MessageData,
    Position,
    as_position,
    make_block,
    new_block_id,
    new_connection_id,
)

logger = logging.getLogger(__name__)

Listener = Callable[[FlowSnapshot], None]


def seed_snapshot(config: EditorConfig | None = None) -> FlowSnapshot:
    """
    Build the graph every editing session starts from.

    Args:
        config: Editor configuration (default: EditorConfig())

    Returns:
        Snapshot with a single Welcome block and no connections
    """
    config = config or EditorConfig()
    welcome = Block(
        id=config.seed_welcome_id,
        type=BlockType.WELCOME,
        position=as_position(config.seed_welcome_position),
        data=MessageData(message=config.seed_welcome_message),
    )
    return FlowSnapshot(blocks=(welcome,), connections=())


def as_handle_ref(value: HandleRef | Mapping[str, str] | tuple[str, str]) -> HandleRef:
    """Coerce a dict or (block_id, handle_id) tuple into a HandleRef."""
    if isinstance(value, HandleRef):
        return value
    if isinstance(value, Mapping):
        return HandleRef.model_validate(dict(value))
    block_id, handle_id = value
    return HandleRef(block_id=block_id, handle_id=handle_id)


class GraphStore:
    """
    Main store for an editing session.

    This class handles:
    - Block and connection mutations with invariant checks
    - Selection, edit focus and drag bookkeeping
    - Committing every state change to history (undo/redo)
    - Notifying subscribers after each change
    """

    def __init__(
        self,
        config: EditorConfig | None = None,
        initial: FlowSnapshot | None = None,
    ):
        """
        Initialize a GraphStore.

        Args:
            config: Editor configuration (default: EditorConfig())
            initial: Starting graph (default: the seed graph from config)
        """
        self.config = config or EditorConfig()
        baseline = initial if initial is not None else seed_snapshot(self.config)

        self._blocks: list[Block] = list(baseline.blocks)
        self._connections: list[Connection] = list(baseline.connections)
        self.history = HistoryManager(baseline, max_entries=self.config.max_history)

        self._selected_ids: list[str] = []
        self._active_block_id: str | None = None
        self._confirming_remove = False
        self._drag_origins: dict[str, Position] = {}

        self._batch_depth = 0
        self._batch_dirty = False
        self._batch_origin: FlowSnapshot | None = None
        self._batch_ui: tuple[list[str], str | None, bool, dict[str, Position]] | None = None

        self._listeners: list[Listener] = []

        logger.debug(f"Created GraphStore with {len(self._blocks)} block(s)")

    def __repr__(self) -> str:
        return (
            f"GraphStore(blocks={len(self._blocks)}, "
            f"connections={len(self._connections)}, "
            f"history={self.history.index + 1}/{len(self.history)})"
        )

    # ==================== Properties ====================

    @property
    def blocks(self) -> tuple[Block, ...]:
        """Current blocks in insertion order."""
        return tuple(self._blocks)

    @property
    def connections(self) -> tuple[Connection, ...]:
        """Current connections in insertion order."""
        return tuple(self._connections)

    @property
    def snapshot(self) -> FlowSnapshot:
        """Immutable copy of the current graph."""
        return FlowSnapshot(blocks=tuple(self._blocks), connections=tuple(self._connections))

    @property
    def block_count(self) -> int:
        return len(self._blocks)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def selected_block_ids(self) -> tuple[str, ...]:
        """Selected block ids in selection order."""
        return tuple(self._selected_ids)

    @property
    def active_block_id(self) -> str | None:
        """Id of the block whose properties are being edited."""
        return self._active_block_id

    @property
    def active_block(self) -> Block | None:
        if self._active_block_id is None:
            return None
        return self._find_block(self._active_block_id)

    @property
    def is_confirming_remove(self) -> bool:
        """True while a multi-block delete waits for confirmation."""
        return self._confirming_remove

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo

    @property
    def can_redo(self) -> bool:
        return self.history.can_redo

    # ==================== Lookups ====================

    def get_block(self, block_id: str) -> Block:
        """
        Get a block by ID.

        Raises:
            BlockNotFoundError: If block doesn't exist
        """
        block = self._find_block(block_id)
        if block is None:
            raise BlockNotFoundError(f"Block '{block_id}' not found in flow")
        return block

    def get_connection(self, connection_id: str) -> Connection:
        """
        Get a connection by ID.

        Raises:
            ConnectionNotFoundError: If connection doesn't exist
        """
        for connection in self._connections:
            if connection.id == connection_id:
                return connection
        raise ConnectionNotFoundError(f"Connection '{connection_id}' not found in flow")

    def block_exists(self, block_id: str) -> bool:
        return self._find_block(block_id) is not None

    def is_selected(self, block_id: str) -> bool:
        return block_id in self._selected_ids

    def outgoing(self, block_id: str, handle_id: str | None = None) -> list[Connection]:
        """Connections leaving a block, optionally restricted to one handle."""
        return self.snapshot.outgoing(block_id, handle_id)

    def incoming(self, block_id: str) -> list[Connection]:
        """Connections entering a block."""
        return self.snapshot.incoming(block_id)

    def _find_block(self, block_id: str) -> Block | None:
        for block in self._blocks:
            if block.id == block_id:
                return block
        return None

    def _has_welcome(self) -> bool:
        return any(block.type is BlockType.WELCOME for block in self._blocks)

    # ==================== Observation ====================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a callback invoked with the current snapshot after every change.

        Args:
            listener: Callable receiving a FlowSnapshot

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot
        for listener in list(self._listeners):
            listener(snapshot)

    # ==================== Commit & Batching ====================

    def _commit(self) -> None:
        """Record the working state as one history entry (deferred inside a batch)."""
        if self._batch_depth:
            self._batch_dirty = True
            return
        self.history.commit(self._blocks, self._connections)
        self._notify()

    @contextmanager
    def batch(self) -> Iterator["GraphStore"]:
        """
        Group several mutations into a single history entry.

        Mutations inside the block are applied immediately but committed once
        on exit. If the block raises, the graph together with selection, edit
        focus, remove confirmation and drag origins from before the outermost
        batch is restored and the exception propagates.

        Example:
            >>> with store.batch():
            ...     block = store.add_block(BlockType.MESSAGE, (300, 150))
            ...     store.add_connection(("start", "output"), (block.id, "input"))
        """
        if self._batch_depth == 0:
            self._batch_origin = self.snapshot
            self._batch_ui = (
                list(self._selected_ids),
                self._active_block_id,
                self._confirming_remove,
                dict(self._drag_origins),
            )
            self._batch_dirty = False
        self._batch_depth += 1
        try:
            yield self
        except BaseException:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._batch_origin is not None:
                self._blocks = list(self._batch_origin.blocks)
                self._connections = list(self._batch_origin.connections)
                (
                    self._selected_ids,
                    self._active_block_id,
                    self._confirming_remove,
                    self._drag_origins,
                ) = self._batch_ui
                self._batch_dirty = False
                self._batch_origin = None
                self._batch_ui = None
                logger.warning("Batch aborted, restored previous flow state")
                self._notify()
            raise
        else:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                self._batch_origin = None
                self._batch_ui = None
                if self._batch_dirty:
                    self._batch_dirty = False
                    self._commit()

    # ==================== Block Operations ====================

    def add_block(
        self,
        block_type: BlockType | str,
        position: Position | tuple[float, float] | Mapping[str, float] | None = None,
    ) -> Block | None:
        """
        Add a block with default data for its type.

        Args:
            block_type: Type of the block to add
            position: Canvas position of the new block

        Returns:
            The new Block, or None if the request was ignored (unknown type,
            or a Welcome block while one already exists)
        """
        try:
            block_type = BlockType(block_type)
        except ValueError:
            logger.debug(f"Ignored add_block: unknown block type '{block_type}'")
            return None

        if block_type is BlockType.WELCOME and self._has_welcome():
            logger.debug("Ignored add_block: flow already has a Welcome block")
            return None

        block = make_block(block_type, as_position(position))
        self._blocks = [*self._blocks, block]
        self._commit()
        logger.debug(f"Added {block_type.value} block '{block.id}'")
        return block

    def update_block_data(self, block_id: str, data: Mapping[str, Any]) -> Block | None:
        """
        Merge partial fields into a block's payload.

        Keys may use the UI's camelCase names ("variableName") or the field
        names ("variable_name"). Buttons options supplied without an id get a
        fresh one. Connections leaving a Buttons option that no longer exists
        are removed in the same commit.

        Args:
            block_id: ID of the block to update
            data: Partial payload

        Returns:
            The updated Block, or None if the block is unknown or the merged
            payload fails validation (e.g. Buttons with 0 or more than 5 options)
        """
        block = self._find_block(block_id)
        if block is None:
            logger.debug(f"Ignored update_block_data: block '{block_id}' not found")
            return None

        model = DATA_MODELS[block.type]
        aliases = {f.alias: name for name, f in model.model_fields.items() if f.alias}
        partial = {aliases.get(key, key): value for key, value in data.items()}

        try:
            new_data = model.model_validate({**block.data.model_dump(), **partial})
        except ValidationError as e:
            logger.debug(f"Ignored update_block_data for '{block_id}': {e.error_count()} error(s)")
            return None

        if new_data == block.data:
            return block

        updated = block.model_copy(update={"data": new_data})
        self._blocks = [updated if b.id == block_id else b for b in self._blocks]

        if block.type is BlockType.BUTTONS:
            handles = set(updated.output_handles)
            before = len(self._connections)
            self._connections = [
                c
                for c in self._connections
                if c.source.block_id != block_id or c.source.handle_id in handles
            ]
            dropped = before - len(self._connections)
            if dropped:
                logger.debug(f"Removed {dropped} connection(s) from deleted options of '{block_id}'")

        self._commit()
        return updated

    def remove_block(self, block_id: str) -> None:
        """
        Remove a block and every connection touching it in one commit.

        Also drops the block from the selection and clears the edit focus if
        it pointed at this block. Unknown ids are ignored.
        """
        self._remove_blocks({block_id})

    def _remove_blocks(self, block_ids: set[str]) -> int:
        present = {b.id for b in self._blocks if b.id in block_ids}
        if not present:
            logger.debug(f"Ignored remove: no such block(s) {sorted(block_ids)}")
            return 0

        self._blocks = [b for b in self._blocks if b.id not in present]
        before = len(self._connections)
        self._connections = [
            c
            for c in self._connections
            if c.source.block_id not in present and c.target.block_id not in present
        ]
        self._selected_ids = [i for i in self._selected_ids if i not in present]
        if self._active_block_id in present:
            self._active_block_id = None
        for block_id in present:
            self._drag_origins.pop(block_id, None)

        self._commit()
        logger.debug(
            f"Removed {len(present)} block(s) and {before - len(self._connections)} connection(s)"
        )
        return len(present)

    def move_blocks(
        self,
        block_ids: str | Iterable[str],
        delta: Position | tuple[float, float] | Mapping[str, float],
    ) -> None:
        """
        Translate one or more blocks and commit the result once.

        A single id that belongs to a multi-selection moves the whole
        selection. Use start_drag/drag/end_drag for interactive drags.
        """
        ids = self._move_group(block_ids) if isinstance(block_ids, str) else set(block_ids)
        delta = as_position(delta)
        if (delta.x == 0 and delta.y == 0) or not self._translate(ids, delta):
            return
        self._commit()

    def _translate(self, block_ids: set[str], delta: Position) -> int:
        moved = 0
        blocks = []
        for block in self._blocks:
            if block.id in block_ids:
                block = block.moved(delta.x, delta.y)
                moved += 1
            blocks.append(block)
        self._blocks = blocks
        return moved

    def duplicate_blocks(self, block_ids: Iterable[str]) -> list[str]:
        """
        Clone blocks with fresh ids, shifted by the configured offset.

        Connections whose both endpoints are inside the duplicated set are
        cloned and remapped to the copies; connections crossing the boundary
        are not. Welcome blocks are never duplicated.

        Args:
            block_ids: IDs of the blocks to duplicate

        Returns:
            IDs of the new blocks, in flow order (empty if nothing was copied)
        """
        wanted = set(block_ids)
        originals = [
            b for b in self._blocks if b.id in wanted and b.type is not BlockType.WELCOME
        ]
        if not originals:
            logger.debug("Ignored duplicate_blocks: nothing to duplicate")
            return []

        dx, dy = self.config.duplicate_offset
        id_map: dict[str, str] = {}
        copies: list[Block] = []
        for block in originals:
            new_id = new_block_id(block.type)
            id_map[block.id] = new_id
            copies.append(
                block.model_copy(
                    update={"id": new_id, "position": block.position.translated(dx, dy)}
                )
            )

        cloned = [
            Connection(
                id=new_connection_id(),
                source=c.source.model_copy(update={"block_id": id_map[c.source.block_id]}),
                target=c.target.model_copy(update={"block_id": id_map[c.target.block_id]}),
            )
            for c in self._connections
            if c.source.block_id in id_map and c.target.block_id in id_map
        ]

        self._blocks = [*self._blocks, *copies]
        self._connections = [*self._connections, *cloned]
        self._commit()
        logger.debug(f"Duplicated {len(copies)} block(s) and {len(cloned)} connection(s)")
        return [block.id for block in copies]

    # ==================== Connection Operations ====================

    def add_connection(
        self,
        source: HandleRef | Mapping[str, str] | tuple[str, str],
        target: HandleRef | Mapping[str, str] | tuple[str, str],
    ) -> Connection | None:
        """
        Connect an output handle to an input handle.

        Besides self-loops and exact duplicates, endpoints that do not exist
        are rejected too: unknown blocks, a source handle that is not one of
        the source block's output handles, or a target handle that is not the
        target block's input handle. Handles are derived from the block type,
        so such a connection could never be routed.

        Args:
            source: Output end as HandleRef, {"blockId", "handleId"} or tuple
            target: Input end as HandleRef, {"blockId", "handleId"} or tuple

        Returns:
            The new Connection, or None if rejected
        """
        source = as_handle_ref(source)
        target = as_handle_ref(target)

        if source.block_id == target.block_id:
            logger.debug(f"Ignored add_connection: self-loop on '{source.block_id}'")
            return None

        source_block = self._find_block(source.block_id)
        target_block = self._find_block(target.block_id)
        if source_block is None or target_block is None:
            logger.debug(
                f"Ignored add_connection: unknown block in "
                f"'{source.block_id}' -> '{target.block_id}'"
            )
            return None
        if source.handle_id not in source_block.output_handles:
            logger.debug(
                f"Ignored add_connection: '{source.block_id}' has no output '{source.handle_id}'"
            )
            return None
        if target.handle_id != target_block.input_handle:
            logger.debug(
                f"Ignored add_connection: '{target.block_id}' has no input '{target.handle_id}'"
            )
            return None

        connection = Connection(source=source, target=target)
        if any(c.key == connection.key for c in self._connections):
            logger.debug(f"Ignored add_connection: duplicate of {connection.key}")
            return None

        self._connections = [*self._connections, connection]
        self._commit()
        logger.debug(
            f"Connected '{source.block_id}'.{source.handle_id} -> "
            f"'{target.block_id}'.{target.handle_id}"
        )
        return connection

    def remove_connection(self, connection_id: str) -> None:
        """Remove a connection. Unknown ids are ignored."""
        remaining = [c for c in self._connections if c.id != connection_id]
        if len(remaining) == len(self._connections):
            logger.debug(f"Ignored remove_connection: '{connection_id}' not found")
            return
        self._connections = remaining
        self._commit()

    # ==================== Selection & Focus ====================

    def toggle_selection(self, block_id: str) -> None:
        """Add or remove a block from the selection. Welcome is never selectable."""
        block = self._find_block(block_id)
        if block is None or block.type is BlockType.WELCOME:
            return
        if block_id in self._selected_ids:
            self._selected_ids.remove(block_id)
        else:
            self._selected_ids.append(block_id)
        self._notify()

    def clear_selection(self) -> None:
        if self._selected_ids:
            self._selected_ids = []
            self._notify()

    def set_active_block(self, block_id: str | None) -> None:
        """Open a block for property editing, or close the editor with None."""
        if block_id is not None and self._find_block(block_id) is None:
            block_id = None
        self._active_block_id = block_id

    def duplicate_selected(self) -> list[str]:
        """Duplicate the selection and select the copies."""
        new_ids = self.duplicate_blocks(self._selected_ids)
        if new_ids:
            self._selected_ids = list(new_ids)
            self._notify()
        return new_ids

    def request_remove_selected(self) -> None:
        """Ask for confirmation before deleting the selection."""
        if self._selected_ids:
            self._confirming_remove = True

    def confirm_remove_selected(self) -> None:
        """Delete every selected block (and their connections) as one commit."""
        self._confirming_remove = False
        if not self._selected_ids:
            return
        self._remove_blocks(set(self._selected_ids))
        self.clear_selection()

    def cancel_remove_selected(self) -> None:
        self._confirming_remove = False

    # ==================== Dragging ====================

    def start_drag(self, block_id: str) -> None:
        """Remember where a dragged block started."""
        block = self._find_block(block_id)
        if block is not None:
            self._drag_origins[block_id] = block.position

    def drag(
        self,
        block_id: str,
        delta: Position | tuple[float, float] | Mapping[str, float],
    ) -> None:
        """
        Move a block during a drag without committing.

        If the dragged block is part of a multi-selection the whole selection
        moves as a rigid group, otherwise only the dragged block moves.
        """
        if self._translate(self._move_group(block_id), as_position(delta)):
            self._notify()

    def _move_group(self, block_id: str) -> set[str]:
        if block_id in self._selected_ids and len(self._selected_ids) > 1:
            return set(self._selected_ids)
        return {block_id}

    def end_drag(self, block_id: str) -> None:
        """Finish a drag; commits once if the block ended up somewhere else."""
        origin = self._drag_origins.pop(block_id, None)
        block = self._find_block(block_id)
        if origin is None or block is None:
            return
        if block.position != origin:
            self._commit()
        else:
            logger.debug(f"Drag of '{block_id}' ended where it started, nothing committed")

    # ==================== History ====================

    def undo(self) -> bool:
        """
        Restore the previous snapshot.

        Returns:
            True if a snapshot was restored
        """
        if self._batch_depth:
            logger.debug("Ignored undo inside a batch")
            return False
        snapshot = self.history.undo()
        if snapshot is None:
            return False
        self._restore(snapshot)
        return True

    def redo(self) -> bool:
        """
        Restore the next snapshot.

        Returns:
            True if a snapshot was restored
        """
        if self._batch_depth:
            logger.debug("Ignored redo inside a batch")
            return False
        snapshot = self.history.redo()
        if snapshot is None:
            return False
        self._restore(snapshot)
        return True

    def _restore(self, snapshot: FlowSnapshot) -> None:
        self._blocks = list(snapshot.blocks)
        self._connections = list(snapshot.connections)
        self._selected_ids = []
        self._active_block_id = None
        self._confirming_remove = False
        self._drag_origins.clear()
        self._notify()

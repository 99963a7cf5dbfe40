"""
Interactive connection workflows built on GraphStore.

Provides:
- Drag-to-connect: start_connecting / complete_connection / cancel_connection
- Create-and-connect: new block wired to a pending output handle
- Insert-between: new block spliced into an existing connection
- The creation menu that dispatches to the last two
"""

import logging
from collections.abc import Mapping
from enum import Enum

from pydantic import BaseModel, ConfigDict

from .exceptions import BlockNotFoundError, ConnectionNotFoundError
from .graph import GraphStore
from .models import (
    INPUT_HANDLE,
    OUTPUT_HANDLE,
    Block,
    BlockType,
    Connection,
    HandleRef,
    Position,
    as_position,
)

logger = logging.getLogger(__name__)

# Types offered by the creation workflows; Welcome is the unique entry point
CREATABLE_TYPES = frozenset(
    {
        BlockType.MESSAGE,
        BlockType.QUESTION,
        BlockType.BUTTONS,
        BlockType.FIELD,
        BlockType.GOODBYE,
    }
)


class MenuKind(str, Enum):
    """What choosing a block type from the creation menu will do."""

    CREATE = "create"
    INSERT = "insert"


class CreationMenu(BaseModel):
    """Open creation menu: where it was opened and what it applies to."""

    kind: MenuKind
    position: Position
    source: HandleRef | None = None
    connection_id: str | None = None

    model_config = ConfigDict(frozen=True)


def _creatable(block_type: BlockType | str) -> BlockType | None:
    try:
        block_type = BlockType(block_type)
    except ValueError:
        return None
    return block_type if block_type in CREATABLE_TYPES else None


class ConnectionRouter:
    """
    Higher-level editing workflows on top of a GraphStore.

    Each workflow commits its new block and connections as a single history
    entry. Unrecognized requests are ignored.
    """

    def __init__(self, store: GraphStore) -> None:
        self.store = store
        self._pending_source: HandleRef | None = None
        self._menu: CreationMenu | None = None

    def __repr__(self) -> str:
        return f"ConnectionRouter(pending={self._pending_source}, menu={self._menu})"

    @property
    def pending_source(self) -> HandleRef | None:
        """Output handle a connection is being dragged from."""
        return self._pending_source

    @property
    def is_connecting(self) -> bool:
        return self._pending_source is not None

    @property
    def menu(self) -> CreationMenu | None:
        return self._menu

    # ==================== Drag-to-connect ====================

    def start_connecting(self, block_id: str, handle_id: str) -> None:
        """Record the output handle a new connection starts from."""
        self._pending_source = HandleRef(block_id=block_id, handle_id=handle_id)

    def complete_connection(
        self,
        target_block_id: str,
        target_handle_id: str = INPUT_HANDLE,
    ) -> Connection | None:
        """
        Connect the pending source to a target handle.

        The pending source is cleared whether or not the connection was added.

        Returns:
            The new Connection, or None if nothing was pending or the store
            rejected the connection
        """
        source = self._pending_source
        self._pending_source = None
        if source is None:
            logger.debug("Ignored complete_connection: nothing pending")
            return None
        return self.store.add_connection(
            source, HandleRef(block_id=target_block_id, handle_id=target_handle_id)
        )

    def cancel_connection(self) -> None:
        self._pending_source = None

    # ==================== Create-and-connect ====================

    def create_and_connect(
        self,
        block_type: BlockType | str,
        position: Position | tuple[float, float] | Mapping[str, float],
        source: HandleRef | None = None,
    ) -> Block | None:
        """
        Create a block and connect an output handle to its input.

        Args:
            block_type: Type of the new block (Welcome is not creatable here)
            position: Canvas position of the new block
            source: Output handle to connect from (default: the pending source)

        Returns:
            The new Block, or None if the type is unrecognized or the source
            handle is not a valid output
        """
        source = source or self._pending_source
        self._pending_source = None

        block_type = _creatable(block_type)
        if block_type is None or source is None:
            logger.debug("Ignored create_and_connect: unrecognized type or no source")
            return None

        try:
            source_block = self.store.get_block(source.block_id)
        except BlockNotFoundError:
            logger.debug(f"Ignored create_and_connect: source block '{source.block_id}' not found")
            return None
        if source.handle_id not in source_block.output_handles:
            logger.debug(
                f"Ignored create_and_connect: '{source.block_id}' has no output "
                f"'{source.handle_id}'"
            )
            return None

        with self.store.batch():
            block = self.store.add_block(block_type, as_position(position))
            self.store.add_connection(source, HandleRef(block_id=block.id, handle_id=INPUT_HANDLE))

        logger.info(
            f"Created {block_type.value} block '{block.id}' from "
            f"'{source.block_id}'.{source.handle_id}"
        )
        return block

    # ==================== Insert-between ====================

    def insert_between(
        self,
        connection_id: str,
        block_type: BlockType | str,
        position: Position | tuple[float, float] | Mapping[str, float],
    ) -> Block | None:
        """
        Splice a new block into an existing connection.

        The original connection is replaced by source -> new block, plus
        new block -> original target when the new block has a single output
        (Message, Question, Field). Inserting a Buttons or Goodbye block leaves
        the original target unconnected on this path.

        Returns:
            The new Block, or None if the connection or type is unknown
        """
        block_type = _creatable(block_type)
        if block_type is None:
            logger.debug("Ignored insert_between: unrecognized block type")
            return None

        try:
            original = self.store.get_connection(connection_id)
        except ConnectionNotFoundError:
            logger.debug(f"Ignored insert_between: connection '{connection_id}' not found")
            return None

        with self.store.batch():
            self.store.remove_connection(original.id)
            block = self.store.add_block(block_type, as_position(position))
            self.store.add_connection(
                original.source, HandleRef(block_id=block.id, handle_id=INPUT_HANDLE)
            )
            if block.has_single_output:
                self.store.add_connection(
                    HandleRef(block_id=block.id, handle_id=OUTPUT_HANDLE), original.target
                )

        logger.info(f"Inserted {block_type.value} block '{block.id}' into '{connection_id}'")
        return block

    # ==================== Creation Menu ====================

    def open_create_menu(
        self,
        position: Position | tuple[float, float] | Mapping[str, float],
    ) -> None:
        """
        Open the menu for creating a block from the pending source.

        Ends the drag-to-connect gesture; ignored if nothing is pending.
        """
        source = self._pending_source
        self._pending_source = None
        if source is None:
            return
        self._menu = CreationMenu(
            kind=MenuKind.CREATE, position=as_position(position), source=source
        )

    def open_insert_menu(
        self,
        connection_id: str,
        position: Position | tuple[float, float] | Mapping[str, float],
    ) -> None:
        """Open the menu for inserting a block into a connection."""
        self._pending_source = None
        self._menu = CreationMenu(
            kind=MenuKind.INSERT, position=as_position(position), connection_id=connection_id
        )

    def close_menu(self) -> None:
        self._menu = None

    def choose_block_type(self, block_type: BlockType | str) -> Block | None:
        """Apply the open menu with the chosen type; the menu always closes."""
        menu = self._menu
        self._menu = None
        if menu is None:
            return None
        if menu.kind is MenuKind.CREATE:
            return self.create_and_connect(block_type, menu.position, source=menu.source)
        return self.insert_between(menu.connection_id, block_type, menu.position)

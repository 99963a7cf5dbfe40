"""
Data models for chatflow-builder package.

This module defines the core data structures:
- Block: One conversation step (Welcome, Message, Question, Buttons, Field, Goodbye)
- Connection: Directed edge from an output handle to an input handle
- FlowSnapshot: Immutable (blocks, connections) pair stored in history

All graph values are frozen; editing produces new instances.
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

INPUT_HANDLE = "input"
OUTPUT_HANDLE = "output"

MIN_BUTTON_OPTIONS = 1
MAX_BUTTON_OPTIONS = 5


class BlockType(str, Enum):
    """Kind of conversation step a block represents."""

    WELCOME = "Welcome"
    MESSAGE = "Message"
    QUESTION = "Question"
    BUTTONS = "Buttons"
    FIELD = "Field"
    GOODBYE = "Goodbye"


# Block types with exactly one "output" handle
SINGLE_OUTPUT_TYPES = frozenset(
    {BlockType.WELCOME, BlockType.MESSAGE, BlockType.QUESTION, BlockType.FIELD}
)


def new_block_id(block_type: BlockType | str) -> str:
    """Generate a fresh block id prefixed with the lowercased type name."""
    return f"{BlockType(block_type).value.lower()}-{uuid4().hex[:12]}"


def new_connection_id() -> str:
    """Generate a fresh connection id."""
    return f"conn-{uuid4().hex[:12]}"


def new_option_id() -> str:
    """Generate a fresh Buttons option id."""
    return f"btn-{uuid4().hex[:12]}"


class Position(BaseModel):
    """Canvas coordinates of a block."""

    x: float = 0.0
    y: float = 0.0

    def translated(self, dx: float, dy: float) -> "Position":
        """Return a copy moved by (dx, dy)."""
        return Position(x=self.x + dx, y=self.y + dy)

    model_config = ConfigDict(frozen=True)


class ButtonOption(BaseModel):
    """A selectable choice of a Buttons block. Its id doubles as an output handle."""

    id: str = Field(
        default_factory=new_option_id,
        description="Unique option id, used as the output handle name",
    )
    text: str = Field(
        default="",
        description="Label shown to the user",
    )

    @field_validator("id", mode="before")
    @classmethod
    def assign_missing_id(cls, v: Any) -> Any:
        """Options supplied without an id get a fresh one."""
        if v is None or v == "":
            return new_option_id()
        return v

    model_config = ConfigDict(frozen=True)


class BlockData(BaseModel):
    """Base class for type-specific block payloads."""

    def to_dict(self) -> dict[str, Any]:
        """Convert payload to the camelCase dictionary used by the UI layer."""
        return self.model_dump(by_alias=True, exclude_none=True)

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class MessageData(BlockData):
    """Payload of Welcome, Message and Goodbye blocks."""

    message: str = ""


class QuestionData(BlockData):
    """Payload of a Question block."""

    message: str = ""
    variable_name: str | None = Field(default=None, alias="variableName")


class FieldData(BlockData):
    """Payload of a Field block."""

    variable_name: str = Field(default="my_variable", alias="variableName")


class ButtonsData(BlockData):
    """Payload of a Buttons block. Each option is its own output handle."""

    message: str = ""
    options: tuple[ButtonOption, ...] = Field(
        ...,
        min_length=MIN_BUTTON_OPTIONS,
        max_length=MAX_BUTTON_OPTIONS,
    )
    variable_name: str | None = Field(default=None, alias="variableName")

    @field_validator("options")
    @classmethod
    def validate_unique_option_ids(
        cls, v: tuple[ButtonOption, ...]
    ) -> tuple[ButtonOption, ...]:
        """Ensure no two options share an id."""
        ids = [option.id for option in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Buttons option ids must be unique")
        return v

    def get_option(self, option_id: str) -> ButtonOption | None:
        """Return the option with the given id, if any."""
        for option in self.options:
            if option.id == option_id:
                return option
        return None


BlockPayload = MessageData | QuestionData | FieldData | ButtonsData

DATA_MODELS: dict[BlockType, type[BlockData]] = {
    BlockType.WELCOME: MessageData,
    BlockType.MESSAGE: MessageData,
    BlockType.GOODBYE: MessageData,
    BlockType.QUESTION: QuestionData,
    BlockType.FIELD: FieldData,
    BlockType.BUTTONS: ButtonsData,
}


class Block(BaseModel):
    """
    Represents one step of the conversation graph.

    Handles are not stored; they are derived from the block type. Every block
    except Welcome has an "input" handle. Buttons blocks expose one output
    handle per option, Goodbye exposes none, all others expose "output".
    """

    id: str = Field(
        ...,
        description="Unique identifier for the block",
        min_length=1,
    )
    type: BlockType = Field(
        ...,
        description="Kind of conversation step",
    )
    position: Position = Field(
        default_factory=Position,
        description="Canvas position (rendering only)",
    )
    data: BlockPayload = Field(
        ...,
        description="Type-specific payload",
    )

    @model_validator(mode="before")
    @classmethod
    def coerce_data_for_type(cls, values: Any) -> Any:
        """Parse a raw data dict with the payload model matching the block type."""
        if not isinstance(values, dict):
            return values
        raw = values.get("data")
        try:
            block_type = BlockType(values.get("type"))
        except ValueError:
            # Let field validation report the bad type
            return values
        if isinstance(raw, dict):
            values = {**values, "data": DATA_MODELS[block_type].model_validate(raw)}
        return values

    @model_validator(mode="after")
    def check_data_matches_type(self) -> "Block":
        """Ensure the payload class matches the block type."""
        expected = DATA_MODELS[self.type]
        if not isinstance(self.data, expected):
            raise ValueError(
                f"{self.type.value} block requires {expected.__name__}, "
                f"got {type(self.data).__name__}"
            )
        return self

    @property
    def input_handle(self) -> str | None:
        """Name of the input handle, or None for the Welcome entry point."""
        if self.type is BlockType.WELCOME:
            return None
        return INPUT_HANDLE

    @property
    def output_handles(self) -> tuple[str, ...]:
        """Ordered output handle names."""
        if self.type is BlockType.BUTTONS:
            return tuple(option.id for option in self.data.options)
        if self.type is BlockType.GOODBYE:
            return ()
        return (OUTPUT_HANDLE,)

    @property
    def has_single_output(self) -> bool:
        """True when the block continues through a single "output" handle."""
        return self.type in SINGLE_OUTPUT_TYPES

    @property
    def is_terminal(self) -> bool:
        """True for blocks without any output handle."""
        return not self.output_handles

    def moved(self, dx: float, dy: float) -> "Block":
        """Return a copy translated by (dx, dy)."""
        return self.model_copy(update={"position": self.position.translated(dx, dy)})

    def to_dict(self) -> dict[str, Any]:
        """Convert block to dictionary format."""
        return {
            "id": self.id,
            "type": self.type.value,
            "position": {"x": self.position.x, "y": self.position.y},
            "data": self.data.to_dict(),
        }

    model_config = ConfigDict(frozen=True)


class HandleRef(BaseModel):
    """One end of a connection: a block id plus one of its handle names."""

    block_id: str = Field(..., alias="blockId", min_length=1)
    handle_id: str = Field(..., alias="handleId", min_length=1)

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Connection(BaseModel):
    """Directed edge from one block's output handle to another block's input handle."""

    id: str = Field(
        default_factory=new_connection_id,
        description="Unique identifier for the connection",
    )
    source: HandleRef
    target: HandleRef

    @property
    def key(self) -> tuple[str, str, str, str]:
        """Endpoint tuple used to detect duplicate connections."""
        return (
            self.source.block_id,
            self.source.handle_id,
            self.target.block_id,
            self.target.handle_id,
        )

    def touches(self, block_id: str) -> bool:
        """True when either endpoint belongs to the given block."""
        return self.source.block_id == block_id or self.target.block_id == block_id

    def to_dict(self) -> dict[str, Any]:
        """Convert connection to dictionary format."""
        return self.model_dump(by_alias=True)

    model_config = ConfigDict(frozen=True)


class FlowSnapshot(BaseModel):
    """
    Immutable copy of the whole graph.

    Snapshots are what history stores and what the simulation runs on.
    Collection order is insertion order.
    """

    blocks: tuple[Block, ...] = ()
    connections: tuple[Connection, ...] = ()

    def get_block(self, block_id: str) -> Block | None:
        """Return the block with the given id, or None."""
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None

    def get_connection(self, connection_id: str) -> Connection | None:
        """Return the connection with the given id, or None."""
        for connection in self.connections:
            if connection.id == connection_id:
                return connection
        return None

    def find_welcome(self) -> Block | None:
        """Return the Welcome block, if the flow has one."""
        for block in self.blocks:
            if block.type is BlockType.WELCOME:
                return block
        return None

    def outgoing(self, block_id: str, handle_id: str | None = None) -> list[Connection]:
        """Connections leaving a block, optionally restricted to one handle."""
        return [
            c
            for c in self.connections
            if c.source.block_id == block_id
            and (handle_id is None or c.source.handle_id == handle_id)
        ]

    def incoming(self, block_id: str) -> list[Connection]:
        """Connections entering a block."""
        return [c for c in self.connections if c.target.block_id == block_id]

    def to_dict(self) -> dict[str, Any]:
        """Convert snapshot to dictionary format."""
        return {
            "blocks": [block.to_dict() for block in self.blocks],
            "connections": [connection.to_dict() for connection in self.connections],
        }

    model_config = ConfigDict(frozen=True)


def default_block_data(block_type: BlockType | str) -> BlockPayload:
    """
    Build the payload a freshly created block starts with.

    Args:
        block_type: Type of the new block

    Returns:
        Default payload instance for that type

    Raises:
        ValueError: If block_type is not a known BlockType
    """
    block_type = BlockType(block_type)
    if block_type is BlockType.WELCOME:
        return MessageData(message="Welcome message")
    if block_type is BlockType.MESSAGE:
        return MessageData(message="Informational message")
    if block_type is BlockType.GOODBYE:
        return MessageData(message="Goodbye!")
    if block_type is BlockType.QUESTION:
        return QuestionData(message="Your question here...")
    if block_type is BlockType.BUTTONS:
        return ButtonsData(
            message="Choose an option",
            options=(ButtonOption(text="Option 1"), ButtonOption(text="Option 2")),
        )
    return FieldData(variable_name="my_variable")


def make_block(
    block_type: BlockType | str,
    position: Position | tuple[float, float] | Mapping[str, float] | None = None,
    block_id: str | None = None,
) -> Block:
    """
    Create a block with default data.

    Args:
        block_type: Type of the new block
        position: Canvas position; tuples and dicts are accepted
        block_id: Explicit id, generated when omitted

    Returns:
        The new Block

    Raises:
        ValueError: If block_type is not a known BlockType
    """
    block_type = BlockType(block_type)
    return Block(
        id=block_id or new_block_id(block_type),
        type=block_type,
        position=as_position(position),
        data=default_block_data(block_type),
    )


def as_position(value: Position | tuple[float, float] | Mapping[str, float] | None) -> Position:
    """Coerce a tuple, mapping or None into a Position."""
    if value is None:
        return Position()
    if isinstance(value, Position):
        return value
    if isinstance(value, Mapping):
        return Position(**value)
    x, y = value
    return Position(x=x, y=y)

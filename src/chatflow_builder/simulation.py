"""
Simulated chat session over a frozen conversation graph.

The SimulationInterpreter walks blocks along connections, appends bot and
user messages to a transcript, paces itself with cancellable delayed
callbacks, and suspends without timeout when a Question or Buttons block
needs input. Input events are checked against the interpreter's state at the
moment they are handled, so stale or duplicate events are ignored.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .config import SimulationConfig
from .exceptions import SimulationError
from .models import (
    OUTPUT_HANDLE,
    Block,
    BlockType,
    Connection,
    FlowSnapshot,
)
from .scheduling import AsyncioScheduler, ScheduledHandle, Scheduler

logger = logging.getLogger(__name__)


class SimulationMode(str, Enum):
    """State of a simulation session."""

    RUNNING = "Running"
    AWAITING_TEXT = "AwaitingText"
    AWAITING_BUTTON = "AwaitingButton"
    ENDED = "Ended"


class Author(str, Enum):
    """Who wrote a transcript entry."""

    BOT = "bot"
    USER = "user"


class Choice(BaseModel):
    """A selectable Buttons option as shown in the chat."""

    option_id: str
    label: str

    model_config = ConfigDict(frozen=True)


class TranscriptEntry(BaseModel):
    """
    One chat bubble.

    A bot entry carrying choices is an unresolved Buttons prompt; the UI
    renders the choices as buttons until one is selected.
    """

    author: Author
    content: str
    choices: tuple[Choice, ...] = Field(default=())

    @property
    def is_prompt(self) -> bool:
        return bool(self.choices)

    model_config = ConfigDict(frozen=True)


class SimulationEventKind(str, Enum):
    """Kind of change reported to the boundary layer."""

    ENTRY_ADDED = "entry_added"
    PROMPT_RESOLVED = "prompt_resolved"
    ENDED = "ended"


class SimulationEvent(BaseModel):
    """
    Change emitted by the interpreter.

    ENTRY_ADDED carries the appended entry. PROMPT_RESOLVED carries the plain
    bot message that replaced the trailing Buttons prompt. ENDED carries no
    entry and is always the last event of a session.
    """

    kind: SimulationEventKind
    mode: SimulationMode
    entry: TranscriptEntry | None = None
    block_id: str | None = None

    model_config = ConfigDict(frozen=True)


@dataclass
class SimulationState:
    """Mutable state of one session. Created per run, discarded afterwards."""

    current_block_id: str | None = None
    mode: SimulationMode = SimulationMode.RUNNING
    transcript: list[TranscriptEntry] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)
    """Captured values keyed by variable name, recorded verbatim."""
    last_input: str | None = None
    """Most recent text submitted or option label chosen."""


class EventStream:
    """
    Events of one simulation session.

    Every event is kept in `events`. Consumers can register callbacks with
    subscribe() or iterate with `async for`, which finishes after the ENDED
    event.
    """

    def __init__(self) -> None:
        self._events: list[SimulationEvent] = []
        self._listeners: list[Callable[[SimulationEvent], None]] = []
        self._queue: asyncio.Queue[SimulationEvent | None] = asyncio.Queue()
        self._closed = False
        self._exhausted = False

    @property
    def events(self) -> tuple[SimulationEvent, ...]:
        return tuple(self._events)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(
        self,
        listener: Callable[[SimulationEvent], None],
        replay: bool = True,
    ) -> Callable[[], None]:
        """
        Register a callback for future events.

        Args:
            listener: Callable receiving each SimulationEvent
            replay: Also deliver events emitted before subscribing

        Returns:
            Function that removes the listener again
        """
        if replay:
            for event in self._events:
                listener(event)
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: SimulationEvent) -> None:
        if self._closed:
            return
        self._events.append(event)
        self._queue.put_nowait(event)
        for listener in list(self._listeners):
            listener(event)

    def _close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> SimulationEvent:
        if self._exhausted:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            self._exhausted = True
            raise StopAsyncIteration
        return event


class SimulationInterpreter:
    """
    Runs a conversation graph as a chat session.

    Only one scheduled advance is outstanding at a time; stop() cancels it.
    The interpreter never mutates the graph it was started with.
    """

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        config: SimulationConfig | None = None,
    ) -> None:
        """
        Initialize the interpreter.

        Args:
            scheduler: Delay mechanism (default: AsyncioScheduler on the running loop)
            config: Pacing configuration (default: SimulationConfig())
        """
        self.scheduler = scheduler or AsyncioScheduler()
        self.config = config or SimulationConfig()

        self._flow = FlowSnapshot()
        self._routes: dict[tuple[str, str], str] = {}
        self._state: SimulationState | None = None
        self._stream: EventStream | None = None
        self._handle: ScheduledHandle | None = None

    def __repr__(self) -> str:
        mode = self._state.mode.value if self._state else "idle"
        return f"SimulationInterpreter(mode={mode})"

    # ==================== Properties ====================

    @property
    def state(self) -> SimulationState | None:
        """State of the current (or last) session, None before the first start."""
        return self._state

    @property
    def mode(self) -> SimulationMode | None:
        return self._state.mode if self._state else None

    @property
    def transcript(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._state.transcript) if self._state else ()

    @property
    def is_active(self) -> bool:
        """True while a session has been started and not yet ended."""
        return self._state is not None and self._state.mode is not SimulationMode.ENDED

    @property
    def current_block(self) -> Block | None:
        if self._state is None or self._state.current_block_id is None:
            return None
        return self._flow.get_block(self._state.current_block_id)

    # ==================== Session Lifecycle ====================

    def start(
        self,
        blocks: FlowSnapshot | Iterable[Block],
        connections: Iterable[Connection] = (),
    ) -> EventStream:
        """
        Start a session on a frozen copy of the graph.

        Args:
            blocks: Blocks of the flow, or a FlowSnapshot
            connections: Connections of the flow (ignored for a FlowSnapshot)

        Returns:
            EventStream of the new session. Events produced synchronously by
            the first step are already recorded in it.

        Raises:
            SimulationError: If a session is already active
            RuntimeError: If the scheduler cannot schedule the first step
                (e.g. AsyncioScheduler without a running event loop); the
                interpreter is left idle
        """
        if self.is_active:
            raise SimulationError("Simulation already running; call stop() first")

        if isinstance(blocks, FlowSnapshot):
            self._flow = blocks
        else:
            self._flow = FlowSnapshot(blocks=tuple(blocks), connections=tuple(connections))

        # First matching connection wins when a handle fans out
        self._routes = {}
        for connection in self._flow.connections:
            key = (connection.source.block_id, connection.source.handle_id)
            self._routes.setdefault(key, connection.target.block_id)

        self._state = SimulationState()
        self._stream = EventStream()
        self._handle = None

        welcome = self._flow.find_welcome()
        logger.info(
            f"Starting simulation over {len(self._flow.blocks)} block(s), "
            f"{len(self._flow.connections)} connection(s)"
        )
        try:
            if welcome is None:
                logger.debug("No Welcome block, ending immediately")
                self._end()
            else:
                self._enter(welcome.id)
        except Exception as e:
            # Leave no half-started session behind
            logger.error(f"Failed to start simulation: {e}", exc_info=True)
            self._cancel_pending()
            self._state = None
            self._stream = None
            raise
        return self._stream

    def stop(self) -> None:
        """Tear the session down and release any pending scheduled advance."""
        self._cancel_pending()
        if self.is_active:
            logger.info("Simulation stopped")
            self._end()

    # ==================== Input Events ====================

    def submit_text(self, text: str) -> bool:
        """
        Answer the current Question block.

        Returns:
            True if accepted, False if the session isn't awaiting text
        """
        state = self._state
        if state is None or state.mode is not SimulationMode.AWAITING_TEXT:
            logger.debug("Ignored submit_text: not awaiting text")
            return False

        block = self.current_block
        state.mode = SimulationMode.RUNNING
        state.last_input = text
        if block.data.variable_name:
            state.variables[block.data.variable_name] = text

        self._append(TranscriptEntry(author=Author.USER, content=text), block.id)
        next_id = self._routes.get((block.id, OUTPUT_HANDLE))
        self._schedule(self.config.reply_delay, lambda: self._enter(next_id))
        return True

    def select_option(self, option_id: str) -> bool:
        """
        Choose an option of the current Buttons block.

        The trailing prompt entry is replaced by the plain bot message and the
        chosen label is appended as the user's reply.

        Returns:
            True if accepted, False if the session isn't awaiting a button or
            the option doesn't belong to the current block
        """
        state = self._state
        if state is None or state.mode is not SimulationMode.AWAITING_BUTTON:
            logger.debug("Ignored select_option: not awaiting a button")
            return False

        block = self.current_block
        option = block.data.get_option(option_id)
        if option is None:
            logger.debug(f"Ignored select_option: '{option_id}' is not an option of '{block.id}'")
            return False

        state.mode = SimulationMode.RUNNING
        state.last_input = option.text
        if block.data.variable_name:
            state.variables[block.data.variable_name] = option.text

        if state.transcript and state.transcript[-1].is_prompt:
            state.transcript.pop()
        plain = TranscriptEntry(author=Author.BOT, content=block.data.message)
        state.transcript.append(plain)
        self._stream._emit(
            SimulationEvent(
                kind=SimulationEventKind.PROMPT_RESOLVED,
                mode=state.mode,
                entry=plain,
                block_id=block.id,
            )
        )
        self._append(TranscriptEntry(author=Author.USER, content=option.text), block.id)

        next_id = self._routes.get((block.id, option.id))
        self._schedule(self.config.reply_delay, lambda: self._enter(next_id))
        return True

    # ==================== Block Processing ====================

    def _enter(self, block_id: str | None) -> None:
        """Process the block with the given id; None or unknown ids end the session."""
        state = self._state
        passed_fields: set[str] = set()

        while True:
            block = self._flow.get_block(block_id) if block_id else None
            if block is None:
                logger.debug("Reached a dead end, ending simulation")
                self._end()
                return

            state.current_block_id = block.id
            state.mode = SimulationMode.RUNNING
            if block.type is not BlockType.FIELD:
                break

            if block.id in passed_fields:
                logger.warning(f"Field blocks loop at '{block.id}', ending simulation")
                self._end()
                return
            passed_fields.add(block.id)
            if state.last_input is not None:
                state.variables[block.data.variable_name] = state.last_input
            block_id = self._routes.get((block.id, OUTPUT_HANDLE))

        logger.debug(f"Entering {block.type.value} block '{block.id}'")

        if block.type in (BlockType.WELCOME, BlockType.MESSAGE):
            self._append(TranscriptEntry(author=Author.BOT, content=block.data.message), block.id)
            next_id = self._routes.get((block.id, OUTPUT_HANDLE))
            self._schedule(self.config.message_delay, lambda: self._enter(next_id))

        elif block.type is BlockType.GOODBYE:
            self._append(TranscriptEntry(author=Author.BOT, content=block.data.message), block.id)
            self._schedule(self.config.message_delay, self._end)

        elif block.type is BlockType.QUESTION:
            state.mode = SimulationMode.AWAITING_TEXT
            self._append(TranscriptEntry(author=Author.BOT, content=block.data.message), block.id)

        elif block.type is BlockType.BUTTONS:
            state.mode = SimulationMode.AWAITING_BUTTON
            choices = tuple(
                Choice(option_id=option.id, label=option.text) for option in block.data.options
            )
            self._append(
                TranscriptEntry(author=Author.BOT, content=block.data.message, choices=choices),
                block.id,
            )

    def _append(self, entry: TranscriptEntry, block_id: str) -> None:
        self._state.transcript.append(entry)
        self._stream._emit(
            SimulationEvent(
                kind=SimulationEventKind.ENTRY_ADDED,
                mode=self._state.mode,
                entry=entry,
                block_id=block_id,
            )
        )

    def _end(self) -> None:
        self._cancel_pending()
        state = self._state
        if state.mode is SimulationMode.ENDED:
            return
        state.mode = SimulationMode.ENDED
        self._stream._emit(
            SimulationEvent(
                kind=SimulationEventKind.ENDED,
                mode=state.mode,
                block_id=state.current_block_id,
            )
        )
        self._stream._close()
        logger.debug(f"Simulation ended with {len(state.transcript)} transcript entries")

    # ==================== Scheduling ====================

    def _schedule(self, delay: float, step: Callable[[], None]) -> None:
        self._cancel_pending()
        state = self._state

        def run() -> None:
            self._handle = None
            # The session may have been stopped or restarted meanwhile
            if self._state is not state or state.mode is SimulationMode.ENDED:
                return
            step()

        self._handle = self.scheduler.schedule(delay, run)

    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

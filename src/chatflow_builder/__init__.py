"""
chatflow-builder: A Python package for assembling conversation-block graphs
and running them as simulated chat sessions.

The editing core keeps blocks and connections consistent under structural
edits with linear undo/redo, and the simulation interpreter walks a frozen
copy of the graph, suspending for button choices or free-text input.
"""

from chatflow_builder.config import EditorConfig, SimulationConfig
from chatflow_builder.exceptions import (
    BlockNotFoundError,
    ChatflowError,
    ConnectionNotFoundError,
    SimulationError,
)
from chatflow_builder.graph import GraphStore, seed_snapshot
from chatflow_builder.history import HistoryManager
from chatflow_builder.models import (
    INPUT_HANDLE,
    OUTPUT_HANDLE,
    Block,
    BlockType,
    ButtonOption,
    ButtonsData,
    Connection,
    FieldData,
    FlowSnapshot,
    HandleRef,
    MessageData,
    Position,
    QuestionData,
    make_block,
)
from chatflow_builder.router import ConnectionRouter, CreationMenu, MenuKind
from chatflow_builder.scheduling import AsyncioScheduler, ManualScheduler, Scheduler
from chatflow_builder.simulation import (
    Author,
    Choice,
    EventStream,
    SimulationEvent,
    SimulationEventKind,
    SimulationInterpreter,
    SimulationMode,
    SimulationState,
    TranscriptEntry,
)
from chatflow_builder.visualization import (
    VisualizationError,
    export_graphviz,
    export_json,
    to_networkx,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Editing core
    "GraphStore",
    "HistoryManager",
    "ConnectionRouter",
    "CreationMenu",
    "MenuKind",
    "seed_snapshot",
    # Simulation
    "SimulationInterpreter",
    "SimulationMode",
    "SimulationState",
    "SimulationEvent",
    "SimulationEventKind",
    "EventStream",
    "TranscriptEntry",
    "Author",
    "Choice",
    # Scheduling
    "Scheduler",
    "AsyncioScheduler",
    "ManualScheduler",
    # Configuration
    "EditorConfig",
    "SimulationConfig",
    # Data models
    "Block",
    "BlockType",
    "ButtonOption",
    "ButtonsData",
    "Connection",
    "FieldData",
    "FlowSnapshot",
    "HandleRef",
    "MessageData",
    "Position",
    "QuestionData",
    "INPUT_HANDLE",
    "OUTPUT_HANDLE",
    "make_block",
    # Visualization
    "to_networkx",
    "export_graphviz",
    "export_json",
    "VisualizationError",
    # Exceptions
    "ChatflowError",
    "BlockNotFoundError",
    "ConnectionNotFoundError",
    "SimulationError",
]

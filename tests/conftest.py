"""
Pytest configuration and fixtures for chatflow-builder tests.

This module provides:
- GraphStore / ConnectionRouter fixtures seeded with the default Welcome block
- A deterministic ManualScheduler and an interpreter driven by it
- Small factories for building flows without going through the store
"""

from collections.abc import Callable

import pytest

from chatflow_builder import (
    Block,
    BlockType,
    Connection,
    ConnectionRouter,
    GraphStore,
    HandleRef,
    ManualScheduler,
    SimulationConfig,
    SimulationInterpreter,
)

# ============================================================================
# Editing Fixtures
# ============================================================================


@pytest.fixture
def store() -> GraphStore:
    """Fresh store holding only the seed Welcome block."""
    return GraphStore()


@pytest.fixture
def router(store: GraphStore) -> ConnectionRouter:
    """Router bound to the store fixture."""
    return ConnectionRouter(store)


# ============================================================================
# Simulation Fixtures
# ============================================================================


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Virtual-clock scheduler; nothing runs until advanced."""
    return ManualScheduler()


@pytest.fixture
def interpreter(scheduler: ManualScheduler) -> SimulationInterpreter:
    """Interpreter paced at 1.0s after bot messages and 0.5s after replies."""
    return SimulationInterpreter(
        scheduler=scheduler,
        config=SimulationConfig(message_delay=1.0, reply_delay=0.5),
    )


# ============================================================================
# Flow Factories
# ============================================================================


@pytest.fixture
def block() -> Callable[..., Block]:
    """Factory: block(id, type, **data) -> Block."""

    def _block(block_id: str, block_type: BlockType, **data) -> Block:
        return Block(id=block_id, type=block_type, data=data)

    return _block


@pytest.fixture
def link() -> Callable[..., Connection]:
    """Factory: link(source_id, target_id, handle="output") -> Connection."""

    def _link(source_id: str, target_id: str, handle: str = "output") -> Connection:
        return Connection(
            id=f"{source_id}:{handle}->{target_id}",
            source=HandleRef(block_id=source_id, handle_id=handle),
            target=HandleRef(block_id=target_id, handle_id="input"),
        )

    return _link

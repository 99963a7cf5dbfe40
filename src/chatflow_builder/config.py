"""
Configuration for the flow editor and the chat simulation.

Both configs are plain dataclasses handed to constructors; nothing is read
from the environment.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class EditorConfig:
    """Settings for GraphStore and its history."""

    duplicate_offset: tuple[float, float] = (40.0, 40.0)
    """Offset applied to every duplicated block."""

    seed_welcome_id: str = "start"
    """Block id of the Welcome block in a fresh session."""

    seed_welcome_position: tuple[float, float] = (150.0, 150.0)
    """Canvas position of the seed Welcome block."""

    seed_welcome_message: str = "Welcome to our chatbot!"
    """Message of the seed Welcome block."""

    max_history: int | None = None
    """
    Maximum number of history entries kept. None keeps everything.
    When the cap is hit the oldest entries are dropped.
    """


@dataclass(frozen=True)
class SimulationConfig:
    """Pacing of the simulated conversation, in seconds."""

    message_delay: float = 1.0
    """Delay after a Welcome, Message or Goodbye block before moving on."""

    reply_delay: float = 0.5
    """Delay after the user answered a Question or Buttons block."""

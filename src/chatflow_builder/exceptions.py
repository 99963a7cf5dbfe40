"""
Exceptions for chatflow-builder package.

Editing misuse coming from the UI layer is never raised; these cover lookups
and programming errors only.
"""


class ChatflowError(Exception):
    """Base exception for chatflow-builder errors."""

    pass


class BlockNotFoundError(ChatflowError):
    """Raised when a block is not found in the flow."""

    pass


class ConnectionNotFoundError(ChatflowError):
    """Raised when a connection is not found in the flow."""

    pass


class SimulationError(ChatflowError):
    """Raised when the simulation interpreter is driven incorrectly."""

    pass

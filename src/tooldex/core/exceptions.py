"""Core exception types for tooldex."""

from __future__ import annotations

from typing import Optional

RETRIEVAL_FAILED_MESSAGE = "Tool retrieval failed. Please try again later."
EXECUTION_FAILED_MESSAGE = "Tool execution failed. Please try again later."


class ToolDexError(Exception):
    """Base error for tooldex runtime failures."""


class NotInitializedError(ToolDexError):
    """Raised when an index operation runs before ``initialize()`` completed."""

    def __init__(self, message: str = "Tool recommender is not initialized") -> None:
        super().__init__(message)


class ToolNotFoundError(ToolDexError):
    """Raised when a fingerprint does not match any live tool."""

    def __init__(self, identifier: str, kind: str = "fingerprint") -> None:
        super().__init__(f"No tool found with {kind} {identifier}")
        self.identifier = identifier
        self.kind = kind


class ValidationError(ToolDexError):
    """Raised when caller input is malformed. The message is safe to show."""


class TransientProviderError(ToolDexError):
    """Raised when the embedding provider fails for a single request."""

    def __init__(self, message: str, *, text: Optional[str] = None) -> None:
        super().__init__(message)
        self.text = text


class StorageError(ToolDexError):
    """Raised when the backing SQLite database fails."""


class ToolExecutionError(ToolDexError):
    """Raised when a live tool cannot be invoked."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name

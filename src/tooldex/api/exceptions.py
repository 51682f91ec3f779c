"""Public exception surface for tooldex API consumers."""

from tooldex.core.exceptions import (
    NotInitializedError,
    StorageError,
    ToolDexError,
    ToolExecutionError,
    ToolNotFoundError,
    TransientProviderError,
    ValidationError,
)

__all__ = [
    "NotInitializedError",
    "StorageError",
    "ToolDexError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "TransientProviderError",
    "ValidationError",
]

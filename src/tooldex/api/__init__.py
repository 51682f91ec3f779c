"""Public programmatic API surface for tooldex."""

from tooldex.api.exceptions import (
    NotInitializedError,
    StorageError,
    ToolDexError,
    ToolExecutionError,
    ToolNotFoundError,
    TransientProviderError,
    ValidationError,
)
from tooldex.api.factory import build_recommender, build_service
from tooldex.api.service import ToolRetrievalService
from tooldex.api.types import (
    KnownToolEntry,
    NewToolEntry,
    QueryToolGroup,
    RetrievalResult,
)

__all__ = [
    "build_recommender",
    "build_service",
    "KnownToolEntry",
    "NewToolEntry",
    "NotInitializedError",
    "QueryToolGroup",
    "RetrievalResult",
    "StorageError",
    "ToolDexError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolRetrievalService",
    "TransientProviderError",
    "ValidationError",
]

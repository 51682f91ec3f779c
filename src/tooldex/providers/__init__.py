"""Live tool providers and server group configuration."""

from tooldex.providers.base import InMemoryToolProvider, LiveTool, ToolProvider
from tooldex.providers.command import CommandToolProvider
from tooldex.providers.registry import ServerRegistry

__all__ = [
    "CommandToolProvider",
    "InMemoryToolProvider",
    "LiveTool",
    "ServerRegistry",
    "ToolProvider",
]

"""Provider interface for the set of currently live tools."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from tooldex.core.exceptions import ToolExecutionError, ToolNotFoundError
from tooldex.index.common import TOOL_NAME_SEPARATOR, compute_fingerprint

ToolExecutor = Callable[[Dict[str, Any]], Any]


@dataclass
class LiveTool:
    """A tool currently exposed by a provider, named ``<server>__<tool>``."""

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    output_schema: Optional[Dict[str, Any]] = None
    server: str = ""

    @property
    def fingerprint(self) -> str:
        return compute_fingerprint(self.name, self.description)


class ToolProvider(ABC):
    """Source of live tools and the means to invoke them."""

    @abstractmethod
    def list_tools(self) -> List[LiveTool]:
        """Return every tool currently available."""
        pass

    @abstractmethod
    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Invoke a live tool by its published name."""
        pass

    def find_by_fingerprint(self, fingerprint: str) -> Optional[LiveTool]:
        """Recompute fingerprints of the live tools and return the match."""
        for tool in self.list_tools():
            if tool.fingerprint == fingerprint:
                return tool
        return None


class InMemoryToolProvider(ToolProvider):
    """Provider backed by Python callables registered at runtime."""

    def __init__(self):
        self._tools: Dict[str, LiveTool] = {}
        self._executors: Dict[str, ToolExecutor] = {}

    def register(
        self,
        server: str,
        name: str,
        description: str,
        executor: ToolExecutor,
        input_schema: Optional[Dict[str, Any]] = None,
        output_schema: Optional[Dict[str, Any]] = None,
    ) -> LiveTool:
        """Register ``executor`` as ``<server>__<name>``."""
        full_name = f"{server}{TOOL_NAME_SEPARATOR}{name}"
        tool = LiveTool(
            name=full_name,
            description=description,
            input_schema=input_schema or {"type": "object", "properties": {}},
            output_schema=output_schema,
            server=server,
        )
        self._tools[full_name] = tool
        self._executors[full_name] = executor
        return tool

    def unregister(self, full_name: str) -> None:
        self._tools.pop(full_name, None)
        self._executors.pop(full_name, None)

    def list_tools(self) -> List[LiveTool]:
        return list(self._tools.values())

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        executor = self._executors.get(name)
        if executor is None:
            raise ToolNotFoundError(name, kind="name")
        try:
            return executor(arguments or {})
        except Exception as exc:
            raise ToolExecutionError(name, str(exc)) from exc

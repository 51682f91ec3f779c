"""Server and group metadata used to scope retrieval."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from tooldex.config import GROUPS, SERVERS
from tooldex.index.common import split_tool_name
from tooldex.providers.base import LiveTool

logger = logging.getLogger(__name__)


class ServerRegistry:
    """Read-only view over the configured servers and server groups."""

    def __init__(
        self,
        servers: Optional[Dict[str, Any]] = None,
        groups: Optional[Dict[str, Any]] = None,
    ):
        self.servers = SERVERS if servers is None else servers
        self.groups = GROUPS if groups is None else groups

    def enabled_servers(self) -> List[str]:
        return sorted(
            name
            for name, cfg in self.servers.items()
            if isinstance(cfg, dict) and cfg.get("enabled", True)
        )

    def server_names_for_groups(self, group_names: Iterable[str]) -> List[str]:
        """Enabled servers belonging to any of ``group_names``, sorted and unique."""
        enabled = set(self.enabled_servers())
        resolved = set()
        for group_name in group_names:
            group = self.groups.get(group_name)
            if not isinstance(group, dict):
                logger.debug("Unknown server group '%s'", group_name)
                continue
            resolved.update(name for name in group.get("servers", []) if name in enabled)
        return sorted(resolved)

    def describe_servers(self, tools: Optional[Iterable[LiveTool]] = None) -> str:
        """One-line overview of the enabled servers and their live tools.

        Returns an empty string when no server is enabled.
        """
        tools_by_server: Dict[str, List[str]] = {}
        for tool in tools or []:
            server_name, tool_name = split_tool_name(tool.name)
            tools_by_server.setdefault(server_name, []).append(tool_name)

        descriptions = []
        for server_name in self.enabled_servers():
            text = server_name
            server_description = self.servers[server_name].get("description")
            if server_description:
                text += f"({server_description})"
            server_tools = tools_by_server.get(server_name)
            if server_tools:
                text += f" - Tools: {', '.join(server_tools)}"
            descriptions.append(text)

        if not descriptions:
            return ""
        return (
            f"Available servers: {', '.join(descriptions)}. "
            "Do not call them directly; only use them for retrieval."
        )

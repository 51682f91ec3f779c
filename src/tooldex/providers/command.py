"""Tools declared in ``servers.toml`` and executed as shell commands."""

import logging
import os
import shlex
import subprocess
from typing import Any, Dict, List, Optional

from tooldex.config import DEFAULT_TOOL_TIMEOUT, SERVERS
from tooldex.config.loader import expand_env_placeholders
from tooldex.core.exceptions import ToolExecutionError, ToolNotFoundError
from tooldex.index.common import TOOL_NAME_SEPARATOR
from tooldex.providers.base import LiveTool, ToolProvider

logger = logging.getLogger(__name__)

DEFAULT_INPUT_SCHEMA = {"type": "object", "properties": {}}


def _input_schema(tool_cfg: Dict[str, Any]) -> Dict[str, Any]:
    schema = dict(tool_cfg.get("parameters") or DEFAULT_INPUT_SCHEMA)
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    return schema


class CommandToolProvider(ToolProvider):
    """Expose the ``[servers.<name>.tools.<tool>]`` entries of the config.

    Disabled servers and tools without a ``command`` are not listed.
    """

    def __init__(
        self,
        servers: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ):
        self.servers = SERVERS if servers is None else servers
        self.timeout = timeout or DEFAULT_TOOL_TIMEOUT

    def _iter_tool_configs(self):
        for server_name, server_cfg in self.servers.items():
            if not isinstance(server_cfg, dict) or not server_cfg.get("enabled", True):
                continue
            for tool_name, tool_cfg in (server_cfg.get("tools") or {}).items():
                if not isinstance(tool_cfg, dict) or not tool_cfg.get("command"):
                    continue
                yield server_name, server_cfg, tool_name, tool_cfg

    def list_tools(self) -> List[LiveTool]:
        tools = []
        for server_name, _, tool_name, tool_cfg in self._iter_tool_configs():
            tools.append(
                LiveTool(
                    name=f"{server_name}{TOOL_NAME_SEPARATOR}{tool_name}",
                    description=tool_cfg.get("description", ""),
                    input_schema=_input_schema(tool_cfg),
                    output_schema=tool_cfg.get("output_schema"),
                    server=server_name,
                )
            )
        return tools

    def _find_config(self, name: str):
        for server_name, server_cfg, tool_name, tool_cfg in self._iter_tool_configs():
            if f"{server_name}{TOOL_NAME_SEPARATOR}{tool_name}" == name:
                return server_cfg, tool_cfg
        return None, None

    def build_command(self, tool_cfg: Dict[str, Any], args: Dict[str, Any]) -> str:
        """Render the shell command for ``tool_cfg`` with quoted arguments."""
        cmd_base = expand_env_placeholders(tool_cfg.get("command", ""))
        props = (tool_cfg.get("parameters") or {}).get("properties", {})

        processed_args = {}
        for k, p in props.items():
            val = args.get(k)
            if val is None:
                val = p.get("default")
            if val is not None:
                processed_args[k] = shlex.quote(expand_env_placeholders(str(val)))

        # Check if the command uses placeholders
        if "{" in cmd_base and "}" in cmd_base:
            try:
                return cmd_base.format(**processed_args)
            except KeyError as e:
                raise ToolExecutionError(
                    tool_cfg.get("name", "?"),
                    f"Missing parameter required by command template: {e}",
                ) from e

        # Append arguments in order of appearance in properties mapping
        arg_list = [processed_args[k] for k in props.keys() if k in processed_args]
        return f"{cmd_base} {' '.join(arg_list)}".strip()

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        server_cfg, tool_cfg = self._find_config(name)
        if tool_cfg is None:
            raise ToolNotFoundError(name, kind="name")

        cmd_str = self.build_command(tool_cfg, arguments or {})
        env = dict(os.environ)
        for key, value in (server_cfg.get("env") or {}).items():
            env[str(key)] = expand_env_placeholders(str(value))

        logger.info("Executing command tool %s: %s", name, cmd_str)
        try:
            result = subprocess.run(
                cmd_str,
                shell=True,
                capture_output=True,
                text=True,
                timeout=tool_cfg.get("timeout", self.timeout),
                env=env,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise ToolExecutionError(name, str(e)) from e

        return {
            "stdout": result.stdout.strip(),
            "stderr": result.stderr.strip(),
            "exit_code": result.returncode,
        }

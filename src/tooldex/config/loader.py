"""Configuration loading and hydration logic."""

import os
import re
import shutil
import tomllib
from importlib import resources
from pathlib import Path
from typing import Any, Dict

CONFIG_FILES = [
    "general.toml",
    "embedding.toml",
    "index.toml",
    "servers.toml",
]

_ENV_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([^}]*))?\}")


def _get_config_dir() -> Path:
    """Return the configuration directory path."""
    return Path.home() / ".config" / "tooldex"


def expand_env_placeholders(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:default}`` with environment values.

    Unset variables without a default expand to an empty string.
    """
    if not isinstance(value, str) or "${" not in value:
        return value

    def _replace(match: "re.Match[str]") -> str:
        name, default = match.group(1), match.group(2)
        return os.environ.get(name, default if default is not None else "")

    return _ENV_PLACEHOLDER.sub(_replace, value)


def _hydrate_servers(config: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in server and tool names, and normalise group membership lists."""
    servers = config.get("servers", {})
    for server_name, server_data in servers.items():
        if not isinstance(server_data, dict):
            continue
        server_data["name"] = server_name
        server_data.setdefault("enabled", True)
        server_data.setdefault("description", "")
        tools = server_data.setdefault("tools", {})
        for tool_name, tool_data in tools.items():
            if isinstance(tool_data, dict):
                tool_data["name"] = tool_name

    groups = config.get("groups", {})
    for group_name, group_data in groups.items():
        if not isinstance(group_data, dict):
            continue
        group_data["name"] = group_name
        members = group_data.get("servers", [])
        if isinstance(members, str):
            members = [members]
        group_data["servers"] = [str(member) for member in members]
    return config


def load_config() -> Dict[str, Any]:
    """Load configuration from TOML files, falling back to defaults."""
    config_dir = _get_config_dir()

    # Ensure config directory exists
    config_dir.mkdir(parents=True, exist_ok=True)

    final_config: Dict[str, Any] = {
        "general": {},
        "embedding": {},
        "index": {},
        "servers": {},
        "groups": {},
    }

    def merge(base, update):
        for k, v in update.items():
            if k in base and isinstance(base[k], dict) and isinstance(v, dict):
                merge(base[k], v)
            else:
                base[k] = v

    # 1. Load defaults from package resource files and copy to user config if missing
    for filename in CONFIG_FILES:
        try:
            resource_path = resources.files("tooldex.data.config").joinpath(filename)
            user_file_path = config_dir / filename

            with resource_path.open("rb") as f:
                file_config = tomllib.load(f)
                merge(final_config, file_config)

            if not user_file_path.exists():
                try:
                    with resources.as_file(resource_path) as source_path:
                        shutil.copy(source_path, user_file_path)
                    print(
                        f"Created default configuration {filename} at {user_file_path}"
                    )
                except Exception as e:
                    print(f"Warning: Failed to create default config {filename}: {e}")

        except Exception as e:
            print(f"Warning: Failed to load bundled config {filename}: {e}")

    # 2. Load user config files
    for filename in CONFIG_FILES:
        user_file_path = config_dir / filename
        if user_file_path.exists():
            try:
                with open(user_file_path, "rb") as f:
                    file_config = tomllib.load(f)
                    merge(final_config, file_config)
            except tomllib.TOMLDecodeError as e:
                import sys

                print(
                    f"Error: Invalid configuration file at {user_file_path}",
                    file=sys.stderr,
                )
                print(f"Details: {e}", file=sys.stderr)
                sys.exit(1)
            except Exception as e:
                print(f"Warning: Failed to load config from {user_file_path}: {e}")

    return _hydrate_servers(final_config)

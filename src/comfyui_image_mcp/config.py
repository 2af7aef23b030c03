"""
Server Configuration

Settings come from COMFYUI_* environment variables; CLI flags in
server.main() override them.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

SERVER_NAME = "comfyui-image-mcp"
SERVER_VERSION = "0.1.0"

DEFAULT_COMFYUI_URL = "http://127.0.0.1:8188"
DEFAULT_WORKFLOW = "workflow.json"
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class Config:
    comfyui_url: str = DEFAULT_COMFYUI_URL
    workspace_dir: str = "."
    default_workflow: str = DEFAULT_WORKFLOW
    timeout: float = DEFAULT_TIMEOUT
    log_level: str = "INFO"
    name: str = SERVER_NAME
    version: str = SERVER_VERSION

    def with_overrides(
        self,
        comfyui_url: Optional[str] = None,
        workspace_dir: Optional[str] = None,
        default_workflow: Optional[str] = None,
        log_level: Optional[str] = None,
    ) -> "Config":
        """Copy with non-None values replaced."""
        changes = {}
        if comfyui_url:
            changes["comfyui_url"] = comfyui_url.rstrip("/")
        if workspace_dir:
            changes["workspace_dir"] = str(Path(workspace_dir).expanduser())
        if default_workflow:
            changes["default_workflow"] = default_workflow
        if log_level:
            changes["log_level"] = log_level.upper()
        return replace(self, **changes)


def load_config() -> Config:
    """Build configuration from the environment."""
    timeout_raw = os.environ.get("COMFYUI_TIMEOUT", str(DEFAULT_TIMEOUT))
    try:
        timeout = float(timeout_raw)
    except ValueError:
        timeout = DEFAULT_TIMEOUT

    return Config(
        comfyui_url=os.environ.get("COMFYUI_URL", DEFAULT_COMFYUI_URL).rstrip("/"),
        workspace_dir=str(Path(os.environ.get("COMFYUI_WORKSPACE_DIR", os.getcwd())).expanduser()),
        default_workflow=os.environ.get("COMFYUI_DEFAULT_WORKFLOW", DEFAULT_WORKFLOW),
        timeout=timeout,
        log_level=os.environ.get("COMFYUI_MCP_LOG_LEVEL", "INFO").upper(),
    )

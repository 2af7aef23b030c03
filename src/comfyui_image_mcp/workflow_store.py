"""
Workflow Store

Loads ComfyUI API-format workflows from a workspace directory, validates
their structure and caches the parsed result by name. Cached workflows are
shared masters: callers must copy before modifying (param_inject does).
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

from .errors import GraphMalformed, GraphNotFound, InvalidParameters, WorkspaceUnavailable
from .graph import iter_connections
from .mcp_utils import log_structured
from .types import Workflow

WORKFLOW_EXTENSION = ".json"


def validate_workflow(workflow, name: Optional[str] = None) -> None:
    """
    Check workflow structure, raising GraphMalformed on the first problem.

    Checks:
    - Top level is a non-empty object
    - Every node is an object with a string class_type and an inputs object
    - Every connection points at a node that exists
    """
    if not isinstance(workflow, dict):
        raise GraphMalformed("Workflow must be a JSON object", name=name)

    # UI exports have top-level "nodes"/"links" arrays instead of node ids
    if isinstance(workflow.get("nodes"), list) and "links" in workflow:
        raise GraphMalformed(
            "Workflow is in ComfyUI UI format, API format is required",
            name=name,
        )

    if len(workflow) == 0:
        raise GraphMalformed("Workflow must contain at least one node", name=name)

    for node_id, node in workflow.items():
        if not isinstance(node, dict):
            raise GraphMalformed(f"Node {node_id} must be an object", name=name, node_id=node_id)
        if not isinstance(node.get("class_type"), str) or not node["class_type"]:
            raise GraphMalformed(f"Node {node_id} missing class_type", name=name, node_id=node_id)
        if not isinstance(node.get("inputs"), dict):
            raise GraphMalformed(f"Node {node_id} missing inputs", name=name, node_id=node_id)

    for node_id, input_name, source in iter_connections(workflow):
        if source not in workflow:
            raise GraphMalformed(
                f"Node {node_id} input '{input_name}' references missing node {source}",
                name=name,
                node_id=node_id,
            )


class WorkflowStore:
    """Named workflow definitions backed by a workspace directory."""

    def __init__(self, workspace_dir: str, default_workflow: str = "workflow.json"):
        self.workspace_dir = Path(workspace_dir)
        self.default_workflow = default_workflow
        self._cache: Dict[str, Workflow] = {}

    def resolve_name(self, name: Optional[str] = None) -> str:
        """Normalize a workflow name: default when empty, .json appended when missing."""
        resolved = name or self.default_workflow
        if "/" in resolved or "\\" in resolved or ".." in resolved:
            raise InvalidParameters(
                f"Workflow name must be a file name inside the workspace: {resolved}",
                field="workflow_name",
            )
        if not resolved.endswith(WORKFLOW_EXTENSION):
            resolved += WORKFLOW_EXTENSION
        return resolved

    def list_workflows(self) -> List[str]:
        """Sorted workflow file names in the workspace."""
        try:
            entries = list(self.workspace_dir.iterdir())
        except FileNotFoundError:
            raise WorkspaceUnavailable(str(self.workspace_dir), "directory does not exist")
        except NotADirectoryError:
            raise WorkspaceUnavailable(str(self.workspace_dir), "not a directory")
        except PermissionError:
            raise WorkspaceUnavailable(str(self.workspace_dir), "permission denied")
        except OSError as e:
            raise WorkspaceUnavailable(str(self.workspace_dir), e.strerror or str(e))

        return sorted(
            p.name
            for p in entries
            if p.suffix == WORKFLOW_EXTENSION and not p.name.startswith(".") and p.is_file()
        )

    def load(self, name: Optional[str] = None) -> Workflow:
        """
        Load a workflow by name, from cache when already loaded.

        Args:
            name: Workflow file name (extension optional). Default workflow if None.

        Returns:
            Cached workflow dict. Do not mutate.

        Raises:
            GraphNotFound: No file under that name.
            GraphMalformed: Invalid JSON or failed validation.
        """
        resolved = self.resolve_name(name)
        cached = self._cache.get(resolved)
        if cached is not None:
            return cached

        path = self.workspace_dir / resolved
        try:
            raw = path.read_bytes()
        except (FileNotFoundError, IsADirectoryError):
            raise GraphNotFound(resolved, str(path))
        except OSError as e:
            raise GraphMalformed(f"Failed to read workflow {resolved}: {e}", name=resolved)

        try:
            workflow = json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise GraphMalformed(f"Workflow {resolved} is not valid UTF-8: {e}", name=resolved)
        except (ValueError, RecursionError) as e:
            raise GraphMalformed(f"Workflow {resolved} has invalid JSON: {e}", name=resolved)

        validate_workflow(workflow, name=resolved)

        self._cache[resolved] = workflow
        log_structured("info", "workflow_loaded", workflow_name=resolved, node_count=len(workflow))
        return workflow

    def invalidate(self, name: Optional[str] = None) -> List[str]:
        """
        Drop cached workflows so the next load re-reads the file.

        Args:
            name: Single workflow to drop. All workflows if None.

        Returns:
            Names that were dropped.
        """
        if name is None:
            dropped = list(self._cache)
            self._cache.clear()
        else:
            resolved = self.resolve_name(name)
            dropped = [resolved] if self._cache.pop(resolved, None) is not None else []
        if dropped:
            log_structured("info", "workflow_cache_invalidated", workflows=dropped)
        return dropped

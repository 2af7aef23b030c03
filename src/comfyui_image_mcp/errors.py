"""
Error Handling

Exception classes for workflow loading, parameter injection and ComfyUI
communication. Every domain error knows how to render itself as an
MCP-compliant error dict:

- Include "isError": true
- Include "code" for error categorization
- Include "suggestion" for actionable guidance
- Include "details" for additional context
"""

from typing import Dict, Any, Optional


class ImageMCPError(Exception):
    """Base class for errors that surface as tagged tool results."""

    code = "TOOL_ERROR"
    suggestion = ""

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if suggestion is not None:
            self.suggestion = suggestion
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to MCP-compliant error dict."""
        result: Dict[str, Any] = {
            "isError": True,
            "code": self.code,
            "error": self.message,
        }
        if self.suggestion:
            result["suggestion"] = self.suggestion
        if self.details:
            result["details"] = self.details
        return result


class GraphNotFound(ImageMCPError):
    """No workflow definition exists under the requested name."""

    code = "NOT_FOUND"
    suggestion = "Run list_workflows() to see the workflow files in the workspace."

    def __init__(self, name: str, path: Optional[str] = None):
        details = {"workflow_name": name}
        if path:
            details["path"] = path
        super().__init__(f"Workflow file not found: {name}", details=details)
        self.name = name


class GraphMalformed(ImageMCPError):
    """Workflow could not be parsed or failed structural validation."""

    code = "WORKFLOW_VALIDATION"
    suggestion = "Re-export the workflow from ComfyUI using 'Save (API Format)'."

    def __init__(self, message: str, name: Optional[str] = None, node_id: Optional[str] = None):
        details = {}
        if name:
            details["workflow_name"] = name
        if node_id is not None:
            details["node_id"] = node_id
        super().__init__(message, details=details)
        self.name = name
        self.node_id = node_id


class WorkspaceUnavailable(ImageMCPError):
    """Workflow workspace directory cannot be read."""

    code = "WORKSPACE_UNAVAILABLE"
    suggestion = "Set COMFYUI_WORKSPACE_DIR to a readable directory containing workflow JSON files."

    def __init__(self, path: str, reason: str = ""):
        message = f"Workflow workspace unavailable: {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, details={"workspace_dir": path})
        self.path = path


class InjectionTargetMismatch(ImageMCPError):
    """
    A traced connection does not lead to a node that can take the value.

    Non-fatal: the injector logs it and carries on with the other parameters.
    """

    code = "INJECTION_TARGET_MISMATCH"

    def __init__(self, parameter: str, node_id: str, class_type: str, expected: str):
        super().__init__(
            f"Cannot inject '{parameter}': node {node_id} is {class_type}, expected {expected}",
            details={
                "parameter": parameter,
                "node_id": node_id,
                "class_type": class_type,
                "expected": expected,
            },
        )


class UpstreamUnreachable(ImageMCPError):
    """ComfyUI could not be reached."""

    code = "CONNECTION_ERROR"
    suggestion = "Is ComfyUI running? Check COMFYUI_URL and that the server answers /system_stats."

    def __init__(self, base_url: str, reason: str):
        super().__init__(
            f"Failed to connect to ComfyUI at {base_url}: {reason}",
            details={"url": base_url},
        )


class UpstreamRejected(ImageMCPError):
    """ComfyUI answered with an error (HTTP status, node_errors, bad payload)."""

    code = "COMFYUI_ERROR"
    suggestion = "Check that every node and model referenced by the workflow is installed in ComfyUI."


class RequestTimeout(ImageMCPError):
    """A tracked request did not finish inside the ledger's time limit."""

    code = "TIMEOUT"

    def __init__(self, elapsed_minutes: int, limit_minutes: int):
        super().__init__(
            f"Request timed out after {elapsed_minutes} minutes (max: {limit_minutes} minutes)",
            details={"elapsed_minutes": elapsed_minutes, "limit_minutes": limit_minutes},
        )


class InvalidParameters(ImageMCPError):
    """Tool arguments failed validation."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, details={"field": field} if field else None)
        self.field = field


class DuplicateJobError(RuntimeError):
    """A prompt_id was recorded twice. Programming error, never a tool result."""

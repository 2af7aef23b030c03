"""
ComfyUI Image MCP Server

A Model Context Protocol server that turns image requests ("generate an
image of a cat") into ComfyUI workflow submissions. Workflows are loaded
from a workspace directory, parameters are injected by tracing the
sampler's connections, and submitted jobs are tracked until ComfyUI
reports them finished.
"""

__version__ = "0.1.0"

from .server import mcp, main
from .param_inject import inject_parameters
from .workflow_store import WorkflowStore, validate_workflow
from .request_ledger import RequestLedger, RequestRecord, reconcile_records
from .client import ComfyUIClient

__all__ = [
    "mcp",
    "main",
    "__version__",
    "inject_parameters",
    "WorkflowStore",
    "validate_workflow",
    "RequestLedger",
    "RequestRecord",
    "reconcile_records",
    "ComfyUIClient",
]

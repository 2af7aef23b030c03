"""
Type Definitions for ComfyUI Image MCP

TypedDict definitions for workflow graphs, injection parameters and
tool return values.

Usage:
    from comfyui_image_mcp.types import Workflow, WorkflowParameters

    def my_function(workflow: Workflow) -> Workflow:
        ...
"""

from typing import (
    TypedDict,
    NotRequired,
    Literal,
    List,
    Dict,
    Any,
    Union,
)


# =============================================================================
# Workflow Graph Types
# =============================================================================

# [source_node_id, output_slot]
Connection = List[Union[str, int]]

InputValue = Union[str, int, float, bool, Connection]


class WorkflowNode(TypedDict):
    """Single node in a ComfyUI API-format workflow."""

    class_type: str
    inputs: Dict[str, InputValue]
    _meta: NotRequired[Dict[str, Any]]


# Node id -> node, insertion ordered
Workflow = Dict[str, WorkflowNode]


class WorkflowParameters(TypedDict, total=False):
    """Semantic parameters for injection. Missing or None means untouched."""

    prompt: str
    negative_prompt: str
    width: int
    height: int
    input_image: str
    denoise_strength: float


# =============================================================================
# Execution Types
# =============================================================================

RequestStatus = Literal["queued", "executing", "completed", "failed"]


class QueuedPrompt(TypedDict):
    """Response from POST /prompt."""

    prompt_id: str
    number: int
    node_errors: NotRequired[Dict[str, Any]]


class JobStatus(TypedDict):
    """Normalized view of a single /history/{prompt_id} lookup."""

    found: bool
    completed: bool
    errored: bool
    messages: List[str]


class QueueState(TypedDict):
    """Prompt ids currently running and waiting in the ComfyUI queue."""

    running: List[str]
    pending: List[str]


class UploadedImage(TypedDict):
    """Response from POST /upload/image."""

    name: str
    subfolder: str
    type: str


class ImageData(TypedDict):
    """Output image reference returned by get_image."""

    filename: str
    subfolder: str
    type: str
    url: str


# =============================================================================
# Tool Result Types
# =============================================================================


class SubmitResult(TypedDict):
    """Result from the submitting tools."""

    prompt_id: str
    number: int
    status: Literal["queued"]


class ImageResult(TypedDict):
    """Result from get_image."""

    status: Literal["completed", "executing", "pending", "not_found"]
    images: NotRequired[List[ImageData]]
    queue_position: NotRequired[int]
    queue_size: NotRequired[int]
    error: NotRequired[str]


class RequestHistoryResult(TypedDict):
    """Result from get_request_history."""

    history: List[Dict[str, Any]]
    total_requests: int

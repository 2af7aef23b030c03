"""
Execution Tools

Tool implementations: load a workflow, inject parameters, queue it on
ComfyUI and track it in the request ledger.
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .client import ComfyUIClient
from .config import Config, load_config
from .graph import IMAGE_INPUT_NODE_KINDS, LATENT_NODE_KINDS, RESIZE_NODE_KINDS
from .mcp_utils import log_structured, get_correlation_id
from .param_inject import inject_parameters
from .request_ledger import RequestLedger, RequestRecord
from .types import ImageResult, RequestHistoryResult, SubmitResult, WorkflowParameters
from .workflow_store import WorkflowStore
from . import validation

IMG2IMG_WORKFLOW = "img2img_workflow.json"
RESIZE_WORKFLOW = "resize_workflow.json"
UPSCALE_WORKFLOW = "upscale_workflow.json"
REMOVE_BACKGROUND_WORKFLOW = "remove_background_workflow.json"

DEFAULT_DENOISE = 0.75


@dataclass
class AppState:
    """Everything the tools share for the lifetime of the server."""

    config: Config
    client: ComfyUIClient
    store: WorkflowStore
    ledger: RequestLedger = field(default_factory=RequestLedger)


_state: Optional[AppState] = None


def create_state(config: Config) -> AppState:
    """Build the shared client, store and ledger from configuration."""
    return AppState(
        config=config,
        client=ComfyUIClient(config.comfyui_url, timeout=config.timeout),
        store=WorkflowStore(config.workspace_dir, config.default_workflow),
    )


def set_state(state: Optional[AppState]):
    """Install the global state (server startup, tests)."""
    global _state
    _state = state


def get_state() -> AppState:
    """Get or create global state from the environment."""
    global _state
    if _state is None:
        _state = create_state(load_config())
    return _state


def _new_client_id() -> str:
    return uuid.uuid4().hex


async def _submit(
    state: AppState,
    workflow_name: Optional[str],
    params: WorkflowParameters,
    record_prompt: str,
    width: int = 0,
    height: int = 0,
    negative_prompt: Optional[str] = None,
    image_path: Optional[str] = None,
    dimension_node_kinds: Sequence[str] = LATENT_NODE_KINDS,
) -> SubmitResult:
    """
    Shared load -> (upload) -> inject -> queue -> record path.

    When image_path is given the image is uploaded after the workflow has
    loaded, and its ComfyUI name becomes the input_image parameter.
    """
    resolved_name = state.store.resolve_name(workflow_name)
    base_workflow = state.store.load(resolved_name)

    if image_path is not None:
        params = {**params, "input_image": await _upload(state, image_path)}

    workflow = inject_parameters(
        base_workflow,
        params,
        image_node_kinds=IMAGE_INPUT_NODE_KINDS,
        dimension_node_kinds=dimension_node_kinds,
    )

    client_id = _new_client_id()
    queued = await state.client.queue_prompt(workflow, client_id)

    state.ledger.record(
        RequestRecord(
            prompt_id=queued["prompt_id"],
            prompt=record_prompt,
            negative_prompt=negative_prompt,
            width=width,
            height=height,
            workflow_name=resolved_name,
            queue_position=queued["number"],
            image_path=image_path,
        )
    )

    log_structured(
        "info",
        "workflow_queued",
        prompt_id=queued["prompt_id"],
        workflow_name=resolved_name,
        client_id=client_id,
        node_count=len(workflow),
        queue_position=queued["number"],
        correlation_id=get_correlation_id(),
    )

    return {
        "prompt_id": queued["prompt_id"],
        "number": queued["number"],
        "status": "queued",
    }


async def _upload(state: AppState, image_path: str) -> str:
    log_structured("info", "image_uploading", image_path=image_path)
    uploaded = await state.client.upload_image(image_path)
    log_structured("info", "image_uploaded", image_path=image_path, name=uploaded["name"])
    return uploaded["name"]


# =============================================================================
# Generation Tools
# =============================================================================


async def generate_image(
    prompt: str,
    negative_prompt: Optional[str] = None,
    width: int = 512,
    height: int = 512,
    workflow_name: Optional[str] = None,
    state: Optional[AppState] = None,
) -> SubmitResult:
    """
    Generate an image from a text prompt.

    Args:
        prompt: What to generate.
        negative_prompt: What to steer away from.
        width: Image width in pixels.
        height: Image height in pixels.
        workflow_name: Workflow file in the workspace (default workflow if None).

    Returns:
        prompt_id and queue number for polling with get_image.
    """
    state = state or get_state()
    prompt = validation.validate_prompt(prompt)
    negative_prompt = validation.validate_prompt(negative_prompt, "negative_prompt", required=False)
    width = validation.validate_dimension(width, "width", required=True)
    height = validation.validate_dimension(height, "height", required=True)

    return await _submit(
        state,
        workflow_name,
        {"prompt": prompt, "negative_prompt": negative_prompt, "width": width, "height": height},
        record_prompt=prompt,
        width=width,
        height=height,
        negative_prompt=negative_prompt,
    )


async def modify_image(
    image_path: str,
    prompt: str,
    negative_prompt: Optional[str] = None,
    denoise_strength: float = DEFAULT_DENOISE,
    width: Optional[int] = None,
    height: Optional[int] = None,
    workflow_name: str = IMG2IMG_WORKFLOW,
    state: Optional[AppState] = None,
) -> SubmitResult:
    """Image-to-image: upload image_path and re-render it guided by prompt."""
    state = state or get_state()
    image_path = validation.validate_image_path(image_path)
    prompt = validation.validate_prompt(prompt)
    negative_prompt = validation.validate_prompt(negative_prompt, "negative_prompt", required=False)
    if denoise_strength is None:
        denoise_strength = DEFAULT_DENOISE
    denoise_strength = validation.validate_range(denoise_strength, "denoise_strength", 0.0, 1.0)
    width = validation.validate_dimension(width, "width")
    height = validation.validate_dimension(height, "height")

    return await _submit(
        state,
        workflow_name or IMG2IMG_WORKFLOW,
        {
            "prompt": prompt,
            "negative_prompt": negative_prompt,
            "width": width,
            "height": height,
            "denoise_strength": denoise_strength,
        },
        record_prompt=prompt,
        width=width or 0,
        height=height or 0,
        negative_prompt=negative_prompt,
        image_path=image_path,
    )


async def resize_image(
    image_path: str,
    width: int,
    height: int,
    method: str = "resize",
    workflow_name: Optional[str] = None,
    state: Optional[AppState] = None,
) -> SubmitResult:
    """
    Resize or upscale an image to width x height.

    method picks the default workflow (resize_workflow.json or
    upscale_workflow.json) when workflow_name is not given.
    """
    state = state or get_state()
    image_path = validation.validate_image_path(image_path)
    width = validation.validate_dimension(width, "width", required=True)
    height = validation.validate_dimension(height, "height", required=True)
    method = validation.validate_resize_method(method)

    if not workflow_name:
        workflow_name = UPSCALE_WORKFLOW if method == "upscale" else RESIZE_WORKFLOW

    return await _submit(
        state,
        workflow_name,
        {"width": width, "height": height},
        record_prompt=f"Resize ({method})",
        width=width,
        height=height,
        image_path=image_path,
        dimension_node_kinds=RESIZE_NODE_KINDS + LATENT_NODE_KINDS,
    )


async def remove_background(
    image_path: str,
    workflow_name: str = REMOVE_BACKGROUND_WORKFLOW,
    state: Optional[AppState] = None,
) -> SubmitResult:
    """Upload an image and run the background removal workflow on it."""
    state = state or get_state()
    image_path = validation.validate_image_path(image_path)

    return await _submit(
        state,
        workflow_name or REMOVE_BACKGROUND_WORKFLOW,
        {},
        record_prompt="Remove background",
        image_path=image_path,
    )


# =============================================================================
# Status Tools
# =============================================================================


async def get_image(prompt_id: str, state: Optional[AppState] = None) -> ImageResult:
    """
    Look up the outputs of a queued prompt.

    Returns:
        completed with image URLs, executing, pending (with queue position
        when ComfyUI still has it queued), or not_found.
    """
    state = state or get_state()
    prompt_id = validation.validate_prompt_id(prompt_id)
    client = state.client

    history = await client.get_history(prompt_id)
    entry = history.get(prompt_id) if isinstance(history, dict) else None

    if not entry:
        try:
            queue = await client.get_queue_state()
        except Exception as e:
            queue = None
            log_structured("warning", "queue_lookup_failed", prompt_id=prompt_id, error=str(e))

        if queue is not None:
            if prompt_id in queue["pending"]:
                return {
                    "status": "pending",
                    "queue_position": queue["pending"].index(prompt_id) + 1,
                    "queue_size": len(queue["pending"]),
                }
            if prompt_id in queue["running"]:
                return {"status": "executing"}

        if prompt_id in state.ledger:
            return {"status": "pending"}

        return {"status": "not_found", "error": f"Prompt ID {prompt_id} not found"}

    status = entry.get("status") or {}
    if not status.get("completed"):
        return {"status": "executing"}

    images = []
    for output in (entry.get("outputs") or {}).values():
        for image in output.get("images") or []:
            filename = image.get("filename", "")
            if not validation.validate_filename(filename):
                log_structured("warning", "invalid_output_filename", prompt_id=prompt_id, filename=filename)
                continue
            subfolder = image.get("subfolder", "")
            folder_type = image.get("type", "output")
            images.append(
                {
                    "filename": filename,
                    "subfolder": subfolder,
                    "type": folder_type,
                    "url": client.build_view_url(filename, subfolder, folder_type),
                }
            )

    if not images:
        return {"status": "completed", "error": "No images found in output"}

    return {"status": "completed", "images": images}


async def get_request_history(state: Optional[AppState] = None) -> RequestHistoryResult:
    """Reconcile every tracked request against ComfyUI and return them."""
    state = state or get_state()
    records = await state.ledger.reconcile(state.client.get_job_status)
    return {
        "history": [record.to_dict() for record in records],
        "total_requests": len(records),
    }


# =============================================================================
# Workflow Tools
# =============================================================================


async def list_workflows(state: Optional[AppState] = None) -> dict:
    """Workflow files available in the workspace."""
    state = state or get_state()
    workflows = state.store.list_workflows()
    return {
        "workflows": workflows,
        "default_workflow": state.store.resolve_name(None),
        "workspace_dir": str(state.store.workspace_dir),
        "count": len(workflows),
    }


async def reload_workflows(workflow_name: Optional[str] = None, state: Optional[AppState] = None) -> dict:
    """Drop cached workflows so edited files are re-read on next use."""
    state = state or get_state()
    dropped = state.store.invalidate(workflow_name)
    return {"invalidated": dropped, "count": len(dropped)}

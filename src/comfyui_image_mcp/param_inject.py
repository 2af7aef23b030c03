"""
Parameter Injection

Writes prompt, negative prompt, dimensions, input image and denoise
strength into a workflow by locating anchor nodes and tracing their
connections:

- Prompts: find the KSampler, follow its "positive"/"negative" inputs to
  the CLIPTextEncode nodes feeding them. Workflows often contain extra
  text encoders for unrelated conditioning paths; only the ones wired into
  the sampler are the real prompt targets.
- Dimensions: first EmptyLatentImage, then EmptySD3LatentImage.
- Input image: first LoadImage (or kinds chosen by the calling tool).
- Denoise: the KSampler's denoise input.

The input workflow is never modified; a deep copy is returned.
"""

from typing import Any, Dict, Optional, Sequence

from .errors import GraphMalformed, InjectionTargetMismatch
from .graph import (
    IMAGE_INPUT_NODE_KINDS,
    LATENT_NODE_KINDS,
    SAMPLER_NODE,
    TEXT_ENCODER_NODE,
    connection_source,
    copy_workflow,
    find_node_by_type,
    find_node_by_types,
)
from .mcp_utils import log_structured
from .types import Workflow, WorkflowParameters


def _report_mismatch(mismatch: InjectionTargetMismatch):
    log_structured("warning", "injection_target_mismatch", **mismatch.details)


def _trace_encoder(workflow: Workflow, sampler_id: str, input_name: str, parameter: str) -> Optional[str]:
    """
    Follow a sampler conditioning input to its text encoder.

    Returns the encoder node id, or None when the input is missing, is a
    literal, or leads somewhere other than a CLIPTextEncode.
    """
    source = connection_source(workflow[sampler_id]["inputs"].get(input_name))
    if source is None:
        return None

    target = workflow.get(source)
    if target is None:
        raise GraphMalformed(
            f"Node {sampler_id} input '{input_name}' references missing node {source}",
            node_id=sampler_id,
        )

    if target.get("class_type") != TEXT_ENCODER_NODE:
        _report_mismatch(InjectionTargetMismatch(parameter, source, target.get("class_type"), TEXT_ENCODER_NODE))
        return None
    return source


def _inject_prompts(workflow: Workflow, prompt: Optional[str], negative_prompt: Optional[str]):
    if prompt is None and negative_prompt is None:
        return

    sampler_id = find_node_by_type(workflow, SAMPLER_NODE)

    if sampler_id is None:
        # No sampler to trace from: first text encoder gets the prompt,
        # negative prompt has no reliable target
        if prompt is not None:
            encoder_id = find_node_by_type(workflow, TEXT_ENCODER_NODE)
            if encoder_id is not None:
                workflow[encoder_id]["inputs"]["text"] = prompt
        return

    if prompt is not None:
        encoder_id = _trace_encoder(workflow, sampler_id, "positive", "prompt")
        if encoder_id is not None:
            workflow[encoder_id]["inputs"]["text"] = prompt

    if negative_prompt is not None:
        encoder_id = _trace_encoder(workflow, sampler_id, "negative", "negative_prompt")
        if encoder_id is not None:
            workflow[encoder_id]["inputs"]["text"] = negative_prompt


def _inject_dimensions(
    workflow: Workflow,
    width: Optional[int],
    height: Optional[int],
    node_kinds: Sequence[str],
):
    if width is None and height is None:
        return

    node_id = find_node_by_types(workflow, node_kinds)
    if node_id is None:
        return

    inputs = workflow[node_id]["inputs"]
    if width is not None:
        inputs["width"] = width
    if height is not None:
        inputs["height"] = height


def _inject_input_image(workflow: Workflow, image: Optional[str], node_kinds: Sequence[str]):
    if image is None:
        return

    node_id = find_node_by_types(workflow, node_kinds)
    if node_id is None:
        log_structured("warning", "image_input_node_missing", expected=list(node_kinds))
        return
    workflow[node_id]["inputs"]["image"] = image


def _inject_denoise(workflow: Workflow, denoise: Optional[float]):
    if denoise is None:
        return

    sampler_id = find_node_by_type(workflow, SAMPLER_NODE)
    if sampler_id is None:
        log_structured("warning", "denoise_target_missing", expected=SAMPLER_NODE)
        return
    workflow[sampler_id]["inputs"]["denoise"] = denoise


def inject_parameters(
    workflow: Workflow,
    params: Optional[WorkflowParameters] = None,
    *,
    image_node_kinds: Sequence[str] = IMAGE_INPUT_NODE_KINDS,
    dimension_node_kinds: Sequence[str] = LATENT_NODE_KINDS,
) -> Workflow:
    """
    Inject semantic parameters into a copy of a workflow.

    Args:
        workflow: Validated workflow (left untouched).
        params: prompt, negative_prompt, width, height, input_image,
            denoise_strength. Missing or None values are not injected.
        image_node_kinds: class types that can receive input_image, in
            priority order.
        dimension_node_kinds: class types that receive width/height, in
            priority order.

    Returns:
        New workflow dict with parameters written in.

    Raises:
        GraphMalformed: A traced connection points at a missing node.

    Example:
        >>> wf = inject_parameters(base, {"prompt": "a cat", "width": 768})
    """
    params: Dict[str, Any] = dict(params or {})
    result = copy_workflow(workflow)

    _inject_prompts(result, params.get("prompt"), params.get("negative_prompt"))
    _inject_dimensions(result, params.get("width"), params.get("height"), dimension_node_kinds)
    _inject_input_image(result, params.get("input_image"), image_node_kinds)
    _inject_denoise(result, params.get("denoise_strength"))

    return result

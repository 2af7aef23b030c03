"""
Workflow Graph Helpers

A workflow is a dict of node id -> {"class_type": ..., "inputs": {...}}.
Inputs hold either literals or connections ([source_node_id, output_slot]).
Connections are plain ids, never references to node objects.
"""

import copy
from typing import Any, Iterator, Optional, Sequence, Tuple

from .types import Workflow

# Node kinds used as anchors
SAMPLER_NODE = "KSampler"
TEXT_ENCODER_NODE = "CLIPTextEncode"
LATENT_NODE_KINDS = ("EmptyLatentImage", "EmptySD3LatentImage")
IMAGE_INPUT_NODE_KINDS = ("LoadImage",)
RESIZE_NODE_KINDS = ("ImageScale", "ImageScaleBy", "ImageResize+")


def is_connection(value: Any) -> bool:
    """True if an input value is a [node_id, slot] connection."""
    return (
        isinstance(value, (list, tuple))
        and len(value) == 2
        and isinstance(value[0], (str, int))
        and not isinstance(value[0], bool)
        and isinstance(value[1], int)
        and not isinstance(value[1], bool)
    )


def connection_source(value: Any) -> Optional[str]:
    """Source node id of a connection, or None for literals."""
    if is_connection(value):
        return str(value[0])
    return None


def iter_connections(workflow: Workflow) -> Iterator[Tuple[str, str, str]]:
    """Yield (node_id, input_name, source_node_id) for every connection."""
    for node_id, node in workflow.items():
        for input_name, value in node.get("inputs", {}).items():
            source = connection_source(value)
            if source is not None:
                yield node_id, input_name, source


def find_node_by_type(workflow: Workflow, class_type: str) -> Optional[str]:
    """First node id (insertion order) with the given class_type."""
    for node_id, node in workflow.items():
        if node.get("class_type") == class_type:
            return node_id
    return None


def find_node_by_types(workflow: Workflow, class_types: Sequence[str]) -> Optional[str]:
    """
    First match across a priority list of class types.

    Earlier kinds win even if a later kind appears first in the workflow.
    """
    for class_type in class_types:
        node_id = find_node_by_type(workflow, class_type)
        if node_id is not None:
            return node_id
    return None


def copy_workflow(workflow: Workflow) -> Workflow:
    """Independent deep copy, preserving node order."""
    return copy.deepcopy(workflow)

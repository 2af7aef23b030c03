"""ComfyUI Image MCP Server - Main entry point."""

import argparse
import asyncio
from typing import Optional

from mcp.server.fastmcp import FastMCP

from . import execution
from .config import SERVER_NAME, load_config
from .errors import ImageMCPError
from .mcp_utils import configure_logging, log_structured, mcp_tool_wrapper

# Initialize MCP server
mcp = FastMCP(
    SERVER_NAME,
    instructions="Generate and edit images with ComfyUI workflows from the configured workspace",
)


# =============================================================================
# Generation Tools (4)
# =============================================================================


@mcp.tool()
@mcp_tool_wrapper
async def generate_image(
    prompt: str,
    negative_prompt: Optional[str] = None,
    width: int = 512,
    height: int = 512,
    workflow_name: Optional[str] = None,
) -> dict:
    """Generate an image with ComfyUI. Loads a workflow JSON, injects prompt and size, queues it. Returns prompt_id."""
    return await execution.generate_image(prompt, negative_prompt, width, height, workflow_name)


@mcp.tool()
@mcp_tool_wrapper
async def modify_image(
    image_path: str,
    prompt: str,
    negative_prompt: Optional[str] = None,
    denoise_strength: float = execution.DEFAULT_DENOISE,
    width: Optional[int] = None,
    height: Optional[int] = None,
    workflow_name: str = execution.IMG2IMG_WORKFLOW,
) -> dict:
    """Modify an existing image (img2img). image_path must be absolute. denoise_strength 0-1: higher changes more."""
    return await execution.modify_image(
        image_path, prompt, negative_prompt, denoise_strength, width, height, workflow_name
    )


@mcp.tool()
@mcp_tool_wrapper
async def resize_image(
    image_path: str,
    width: int,
    height: int,
    method: str = "resize",
    workflow_name: Optional[str] = None,
) -> dict:
    """Resize or upscale an image. method: resize|upscale. image_path must be absolute."""
    return await execution.resize_image(image_path, width, height, method, workflow_name)


@mcp.tool()
@mcp_tool_wrapper
async def remove_background(
    image_path: str,
    workflow_name: str = execution.REMOVE_BACKGROUND_WORKFLOW,
) -> dict:
    """Remove the background from an image. image_path must be absolute."""
    return await execution.remove_background(image_path, workflow_name)


# =============================================================================
# Status Tools (2)
# =============================================================================


@mcp.tool()
@mcp_tool_wrapper
async def get_image(prompt_id: str) -> dict:
    """Get generated image URLs by prompt_id, or its queue/execution status."""
    return await execution.get_image(prompt_id)


@mcp.tool()
@mcp_tool_wrapper
async def get_request_history() -> dict:
    """List requests made through this server with prompts, sizes, timestamps and current status."""
    return await execution.get_request_history()


# =============================================================================
# Workflow Tools (2)
# =============================================================================


@mcp.tool()
@mcp_tool_wrapper
async def list_workflows() -> dict:
    """List workflow JSON files in the workspace and the default workflow."""
    return await execution.list_workflows()


@mcp.tool()
@mcp_tool_wrapper
async def reload_workflows(workflow_name: Optional[str] = None) -> dict:
    """Clear cached workflows so edited files are re-read. All workflows if workflow_name is omitted."""
    return await execution.reload_workflows(workflow_name)


# =============================================================================
# Startup
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="comfyui-image-mcp", description="ComfyUI image MCP server (stdio)")
    parser.add_argument("--url", help="ComfyUI base URL (env: COMFYUI_URL)")
    parser.add_argument("--workspace", help="Directory with workflow JSON files (env: COMFYUI_WORKSPACE_DIR)")
    parser.add_argument("--workflow", help="Default workflow file name (env: COMFYUI_DEFAULT_WORKFLOW)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR (env: COMFYUI_MCP_LOG_LEVEL)")
    return parser


async def _preflight(state: execution.AppState):
    """Best-effort checks; problems are logged and surface again at tool call time."""
    if not await state.client.health_check():
        log_structured("warning", "comfyui_unreachable", url=state.config.comfyui_url)

    try:
        state.store.load()
    except ImageMCPError as e:
        log_structured("warning", "default_workflow_unavailable", error=e.message, **e.details)
    finally:
        await state.client.aclose()


def main(argv=None):
    """Entry point for the MCP server."""
    args = build_parser().parse_args(argv)
    config = load_config().with_overrides(
        comfyui_url=args.url,
        workspace_dir=args.workspace,
        default_workflow=args.workflow,
        log_level=args.log_level,
    )
    configure_logging(config.log_level)

    state = execution.create_state(config)
    execution.set_state(state)

    asyncio.run(_preflight(state))
    log_structured(
        "info",
        "server_starting",
        name=config.name,
        version=config.version,
        comfyui_url=config.comfyui_url,
        workspace_dir=config.workspace_dir,
    )
    mcp.run()


if __name__ == "__main__":
    main()

"""
Pytest fixtures and utilities
"""

import copy
import json
import logging
import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from comfyui_image_mcp.config import Config
from comfyui_image_mcp.execution import AppState
from comfyui_image_mcp.mcp_utils import JSONFormatter
from comfyui_image_mcp.request_ledger import RequestLedger
from comfyui_image_mcp.workflow_store import WorkflowStore


TXT2IMG_WORKFLOW = {
    "3": {
        "class_type": "KSampler",
        "inputs": {
            "seed": 42,
            "steps": 20,
            "cfg": 7.0,
            "sampler_name": "euler",
            "scheduler": "normal",
            "denoise": 1.0,
            "model": ["4", 0],
            "positive": ["6", 0],
            "negative": ["7", 0],
            "latent_image": ["5", 0],
        },
    },
    "4": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "sd_xl_base_1.0.safetensors"}},
    "5": {"class_type": "EmptyLatentImage", "inputs": {"width": 512, "height": 512, "batch_size": 1}},
    "6": {"class_type": "CLIPTextEncode", "inputs": {"text": "a photo", "clip": ["4", 1]}},
    "7": {"class_type": "CLIPTextEncode", "inputs": {"text": "bad quality", "clip": ["4", 1]}},
    "8": {"class_type": "VAEDecode", "inputs": {"samples": ["3", 0], "vae": ["4", 2]}},
    "9": {"class_type": "SaveImage", "inputs": {"filename_prefix": "ComfyUI", "images": ["8", 0]}},
}

IMG2IMG_WORKFLOW = {
    "3": {
        "class_type": "KSampler",
        "inputs": {
            "seed": 7,
            "steps": 20,
            "cfg": 7.0,
            "sampler_name": "euler",
            "scheduler": "normal",
            "denoise": 1.0,
            "model": ["4", 0],
            "positive": ["6", 0],
            "negative": ["7", 0],
            "latent_image": ["11", 0],
        },
    },
    "4": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "sd_xl_base_1.0.safetensors"}},
    "6": {"class_type": "CLIPTextEncode", "inputs": {"text": "", "clip": ["4", 1]}},
    "7": {"class_type": "CLIPTextEncode", "inputs": {"text": "", "clip": ["4", 1]}},
    "10": {"class_type": "LoadImage", "inputs": {"image": "example.png"}},
    "11": {"class_type": "VAEEncode", "inputs": {"pixels": ["10", 0], "vae": ["4", 2]}},
    "8": {"class_type": "VAEDecode", "inputs": {"samples": ["3", 0], "vae": ["4", 2]}},
    "9": {"class_type": "SaveImage", "inputs": {"filename_prefix": "img2img", "images": ["8", 0]}},
}

RESIZE_WORKFLOW = {
    "1": {"class_type": "LoadImage", "inputs": {"image": "example.png"}},
    "2": {
        "class_type": "ImageScale",
        "inputs": {"upscale_method": "lanczos", "width": 512, "height": 512, "crop": "disabled", "image": ["1", 0]},
    },
    "3": {"class_type": "SaveImage", "inputs": {"filename_prefix": "resized", "images": ["2", 0]}},
}

REMOVE_BACKGROUND_WORKFLOW = {
    "1": {"class_type": "LoadImage", "inputs": {"image": "example.png"}},
    "2": {"class_type": "Image Rembg (Remove Background)", "inputs": {"images": ["1", 0], "model": "u2net"}},
    "3": {"class_type": "SaveImage", "inputs": {"filename_prefix": "nobg", "images": ["2", 0]}},
}


@pytest.fixture
def txt2img_workflow():
    """Standard text-to-image workflow (KSampler wired to two encoders)"""
    return copy.deepcopy(TXT2IMG_WORKFLOW)


@pytest.fixture
def img2img_workflow():
    """Image-to-image workflow with a LoadImage node"""
    return copy.deepcopy(IMG2IMG_WORKFLOW)


@pytest.fixture
def workspace(tmp_path):
    """Workspace directory with the standard workflows plus broken ones"""
    files = {
        "workflow.json": TXT2IMG_WORKFLOW,
        "img2img_workflow.json": IMG2IMG_WORKFLOW,
        "resize_workflow.json": RESIZE_WORKFLOW,
        "upscale_workflow.json": RESIZE_WORKFLOW,
        "remove_background_workflow.json": REMOVE_BACKGROUND_WORKFLOW,
        "dangling.json": {
            "1": {"class_type": "KSampler", "inputs": {"positive": ["99", 0]}},
        },
    }
    for name, workflow in files.items():
        (tmp_path / name).write_text(json.dumps(workflow))
    (tmp_path / "not_json.json").write_text("{not json")
    (tmp_path / "notes.txt").write_text("not a workflow")
    return tmp_path


@pytest.fixture
def image_file(tmp_path):
    """Small PNG on disk for upload tests"""
    path = tmp_path / "input.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 16)
    return path


# =============================================================================
# Fake ComfyUI client
# =============================================================================


class FakeComfyUIClient:
    """In-memory stand-in for ComfyUIClient that records calls"""

    base_url = "http://comfy.test:8188"

    def __init__(self):
        self.queued = []
        self.uploaded = []
        self.history = {}
        self.queue = {"running": [], "pending": []}
        self.queue_error = None
        self.queue_error_on_submit = None
        self._counter = 0

    async def queue_prompt(self, workflow, client_id):
        if self.queue_error_on_submit is not None:
            raise self.queue_error_on_submit
        self._counter += 1
        prompt_id = f"prompt-{self._counter}"
        self.queued.append({"prompt_id": prompt_id, "workflow": workflow, "client_id": client_id})
        return {"prompt_id": prompt_id, "number": self._counter - 1}

    async def upload_image(self, image_path):
        self.uploaded.append(image_path)
        return {"name": Path(image_path).name, "subfolder": "", "type": "input"}

    async def get_history(self, prompt_id):
        if prompt_id in self.history:
            return {prompt_id: self.history[prompt_id]}
        return {}

    async def get_job_status(self, prompt_id):
        entry = self.history.get(prompt_id)
        if entry is None:
            return {"found": False, "completed": False, "errored": False, "messages": []}
        status = entry.get("status", {})
        return {
            "found": True,
            "completed": bool(status.get("completed")),
            "errored": status.get("status_str") == "error",
            "messages": [str(m) for m in status.get("messages", [])],
        }

    async def get_queue_state(self):
        if self.queue_error is not None:
            raise self.queue_error
        return self.queue

    async def health_check(self):
        return True

    async def aclose(self):
        pass

    def build_view_url(self, filename, subfolder="", folder_type="output"):
        return f"{self.base_url}/view?filename={filename}&subfolder={subfolder}&type={folder_type}"


@pytest.fixture
def fake_client():
    return FakeComfyUIClient()


@pytest.fixture
def app_state(workspace, fake_client):
    """AppState wired to the fake client and the temp workspace"""
    config = Config(comfyui_url=fake_client.base_url, workspace_dir=str(workspace))
    return AppState(
        config=config,
        client=fake_client,
        store=WorkflowStore(str(workspace), "workflow.json"),
        ledger=RequestLedger(),
    )


# =============================================================================
# Structured Logging Fixtures
# =============================================================================


class CapturingLogHandler(logging.Handler):
    """Handler that captures log records for testing."""

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)

    def get_json_logs(self):
        """Return list of parsed JSON log entries."""
        formatter = JSONFormatter()
        return [json.loads(formatter.format(record)) for record in self.records]

    def events(self):
        """Event names (log messages) in emission order."""
        return [record.getMessage() for record in self.records]

    def clear(self):
        self.records = []


@pytest.fixture
def capturing_logger():
    """Fixture providing a capturing log handler."""
    logger = logging.getLogger("comfyui-image-mcp")

    handler = CapturingLogHandler()
    handler.setLevel(logging.DEBUG)
    logger.addHandler(handler)

    original_level = logger.level
    logger.setLevel(logging.DEBUG)

    yield handler

    logger.removeHandler(handler)
    logger.setLevel(original_level)
    handler.clear()


@pytest.fixture
def correlation_context():
    """Fixture providing correlation ID context management."""
    from comfyui_image_mcp.mcp_utils import set_correlation_id, clear_correlation_id

    def _set_cid(cid):
        set_correlation_id(cid)
        return cid

    yield _set_cid

    clear_correlation_id()

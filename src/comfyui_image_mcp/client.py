"""
ComfyUI API Client

Async HTTP client for ComfyUI API interactions.
"""

import json
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from .errors import InvalidParameters, UpstreamRejected, UpstreamUnreachable
from .types import JobStatus, QueuedPrompt, QueueState, UploadedImage, Workflow

IMAGE_EXTENSIONS = [".png", ".jpg", ".jpeg", ".webp", ".gif", ".bmp"]

UPLOAD_TIMEOUT = 60.0


def _format_message(message: Any) -> str:
    """Flatten a ComfyUI status message (string, list or dict) to text."""
    if isinstance(message, str):
        return message
    if message is None:
        return ""
    return json.dumps(message)


def _queue_prompt_ids(items: List[Any]) -> List[str]:
    """Extract prompt ids from /queue entries ([number, prompt_id, ...] or dicts)."""
    ids = []
    for item in items:
        if isinstance(item, dict) and item.get("prompt_id"):
            ids.append(str(item["prompt_id"]))
        elif isinstance(item, (list, tuple)) and len(item) > 1:
            ids.append(str(item[1]))
    return ids


class ComfyUIClient:
    """Async HTTP client for the ComfyUI API."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8188",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    def _client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http

    async def aclose(self):
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None

    async def _request(self, method: str, endpoint: str, what: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client().request(method, endpoint, **kwargs)
        except httpx.TimeoutException:
            raise UpstreamUnreachable(self.base_url, f"request to {endpoint} timed out")
        except httpx.HTTPError as e:
            raise UpstreamUnreachable(self.base_url, str(e) or type(e).__name__)

        if response.status_code >= 400:
            details = f"{response.status_code} {response.reason_phrase}"
            body = response.text
            if body:
                details += f": {body[:500]}"
            raise UpstreamRejected(f"Failed to {what}: {details}", details={"status_code": response.status_code})
        return response

    async def _request_json(self, method: str, endpoint: str, what: str, **kwargs) -> Any:
        response = await self._request(method, endpoint, what, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamRejected(f"Invalid JSON response from ComfyUI {endpoint}: {e}")

    # =========================================================================
    # Execution
    # =========================================================================

    async def queue_prompt(self, workflow: Workflow, client_id: str) -> QueuedPrompt:
        """
        Queue a workflow for execution.

        Raises:
            UpstreamUnreachable: ComfyUI not reachable.
            UpstreamRejected: HTTP error, node_errors, or no prompt_id returned.
        """
        data = await self._request_json(
            "POST",
            "/prompt",
            "queue prompt",
            json={"prompt": workflow, "client_id": client_id},
        )

        node_errors = data.get("node_errors") or {}
        if data.get("error") or node_errors:
            parts = []
            if data.get("error"):
                parts.append(f"Error: {json.dumps(data['error'])}")
            if node_errors:
                parts.append(f"Node errors ({len(node_errors)}):")
                for node_id, node_error in node_errors.items():
                    parts.append(f"  Node {node_id}: {json.dumps(node_error)}")
            raise UpstreamRejected(
                "ComfyUI workflow error:\n" + "\n".join(parts),
                details={"node_errors": node_errors} if node_errors else None,
            )

        if not data.get("prompt_id"):
            raise UpstreamRejected(f"Invalid response from ComfyUI - missing prompt_id. Response: {json.dumps(data)}")

        return {"prompt_id": data["prompt_id"], "number": data.get("number", 0)}

    async def get_history(self, prompt_id: str) -> Dict[str, Any]:
        """Raw execution history for a prompt ({prompt_id: entry} or {})."""
        return await self._request_json("GET", f"/history/{prompt_id}", f"get history for prompt {prompt_id}")

    async def get_job_status(self, prompt_id: str) -> JobStatus:
        """Normalized history lookup used by the request ledger."""
        history = await self.get_history(prompt_id)
        entry = history.get(prompt_id) if isinstance(history, dict) else None
        if not entry:
            return {"found": False, "completed": False, "errored": False, "messages": []}

        status = entry.get("status") or {}
        messages = [_format_message(m) for m in status.get("messages") or []]
        return {
            "found": True,
            "completed": bool(status.get("completed")),
            "errored": status.get("status_str") == "error",
            "messages": [m for m in messages if m],
        }

    async def get_queue(self) -> Dict[str, Any]:
        """Raw /queue response."""
        return await self._request_json("GET", "/queue", "get queue status")

    async def get_queue_state(self) -> QueueState:
        """Prompt ids running and pending, in queue order."""
        queue = await self.get_queue()
        return {
            "running": _queue_prompt_ids(queue.get("queue_running", [])),
            "pending": _queue_prompt_ids(queue.get("queue_pending", [])),
        }

    async def health_check(self) -> bool:
        """Check if ComfyUI is reachable."""
        try:
            await self._request("GET", "/system_stats", "get system stats")
        except (UpstreamUnreachable, UpstreamRejected):
            return False
        return True

    # =========================================================================
    # Images
    # =========================================================================

    async def upload_image(self, image_path: str) -> UploadedImage:
        """
        Upload an image to the ComfyUI input folder.

        Args:
            image_path: Local path to the image file.

        Returns:
            {"name": "filename.png", "subfolder": "", "type": "input"}
        """
        path = Path(image_path)
        ext = path.suffix.lower()
        if ext not in IMAGE_EXTENSIONS:
            raise InvalidParameters(
                f"Invalid image file extension: {ext or '(none)'}. Supported formats: {', '.join(IMAGE_EXTENSIONS)}",
                field="image_path",
            )

        try:
            content = path.read_bytes()
        except OSError:
            raise InvalidParameters(
                f"Cannot read file at path: {image_path}. Make sure the file exists and is readable.",
                field="image_path",
            )

        content_type, _ = mimetypes.guess_type(str(path))
        files = {"image": (path.name, content, content_type or "application/octet-stream")}

        data = await self._request_json(
            "POST",
            "/upload/image",
            "upload image",
            files=files,
            data={"overwrite": "true"},
            timeout=UPLOAD_TIMEOUT,
        )
        return {
            "name": data.get("name", path.name),
            "subfolder": data.get("subfolder", ""),
            "type": data.get("type", "input"),
        }

    def build_view_url(self, filename: str, subfolder: str = "", folder_type: str = "output") -> str:
        """URL for fetching an output file from ComfyUI's /view endpoint."""
        query = urlencode({"filename": filename, "subfolder": subfolder, "type": folder_type})
        return f"{self.base_url}/view?{query}"

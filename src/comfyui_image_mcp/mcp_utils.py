"""
MCP Utilities

Utilities for MCP-compliant responses, error handling and logging.
"""

import time
import uuid
import json
import logging
import functools
from datetime import datetime
from typing import Any, Dict, Optional
from dataclasses import dataclass, field
from contextvars import ContextVar

from .errors import DuplicateJobError, ImageMCPError

# =============================================================================
# Structured Logging
# =============================================================================

logger = logging.getLogger("comfyui-image-mcp")
logger.setLevel(logging.INFO)


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for machine parseability."""

    def format(self, record):
        # ISO 8601 timestamp with milliseconds
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

        log_entry = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "correlation_id"):
            log_entry["correlation_id"] = record.correlation_id
        if hasattr(record, "custom_fields"):
            log_entry.update(record.custom_fields)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, separators=(",", ":"), default=str)


# StreamHandler writes to stderr, stdout belongs to the stdio transport
if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(JSONFormatter())
    logger.addHandler(_handler)


def configure_logging(level: str = "INFO"):
    """Set the server log level by name (DEBUG, INFO, ...)."""
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))


# Correlation ID context variable
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def set_correlation_id(cid: str):
    """Set correlation ID for current context."""
    correlation_id_var.set(cid)


def get_correlation_id() -> str:
    """Get current correlation ID or generate new one."""
    cid = correlation_id_var.get()
    if cid is None:
        cid = str(uuid.uuid4())[:8]
        correlation_id_var.set(cid)
    return cid


def clear_correlation_id():
    """Clear correlation ID from context."""
    correlation_id_var.set(None)


def log_structured(level: str, message: str, **kwargs):
    """Emit structured JSON log with correlation ID and custom fields."""
    extra = {"correlation_id": get_correlation_id()}
    if kwargs:
        extra["custom_fields"] = kwargs
    getattr(logger, level)(message, extra=extra)


@dataclass
class ToolInvocation:
    """Track a tool invocation for logging with correlation support."""

    tool_name: str
    invocation_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    correlation_id: str = field(default_factory=get_correlation_id)
    start_time: float = field(default_factory=time.time)

    def complete(self, status: str = "success", error: str = None) -> Dict[str, Any]:
        """Log completion with structured JSON format."""
        latency_ms = (time.time() - self.start_time) * 1000
        log_entry = {
            "tool": self.tool_name,
            "invocation_id": self.invocation_id,
            "latency_ms": round(latency_ms, 2),
            "status": status,
        }
        if error:
            log_entry["error"] = error

        if status == "success":
            log_structured("info", "tool_completed", **log_entry)
        else:
            log_structured("error", "tool_failed", **log_entry)

        return log_entry


# =============================================================================
# MCP-Compliant Error Responses
# =============================================================================


def mcp_error(
    message: str,
    code: str = "TOOL_ERROR",
    details: Dict[str, Any] = None,
) -> Dict[str, Any]:
    """
    Create an MCP-compliant error response.

    Args:
        message: Human-readable error message
        code: Error code (e.g., "NOT_FOUND", "VALIDATION_ERROR", "TIMEOUT")
        details: Additional error context

    Returns:
        Dict with error, code, isError=True

    Example:
        return mcp_error("Workflow not found", "NOT_FOUND", {"workflow_name": "x.json"})
    """
    result = {
        "error": message,
        "code": code,
        "isError": True,
    }
    if details:
        result["details"] = details
    return result


# =============================================================================
# Tool Decorator with Logging
# =============================================================================


def mcp_tool_wrapper(func):
    """
    Decorator that adds structured logging and error tagging to async tools.

    Domain errors (ImageMCPError) become tagged error dicts, unexpected
    exceptions become INTERNAL_ERROR results. DuplicateJobError is a broken
    invariant and propagates.

    Example:
        @mcp.tool()
        @mcp_tool_wrapper
        async def my_tool(param: str) -> dict:
            ...
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        clear_correlation_id()
        invocation = ToolInvocation(func.__name__)

        try:
            result = await func(*args, **kwargs)
        except DuplicateJobError:
            invocation.complete("error", "duplicate prompt_id")
            raise
        except ImageMCPError as e:
            invocation.complete("error", e.message)
            return e.to_dict()
        except Exception as e:
            logger.exception("Unhandled error in tool %s", func.__name__)
            invocation.complete("error", str(e))
            return mcp_error(str(e), "INTERNAL_ERROR")

        if isinstance(result, dict) and result.get("isError"):
            invocation.complete("error", result.get("error"))
        else:
            invocation.complete("success")
        return result

    return wrapper

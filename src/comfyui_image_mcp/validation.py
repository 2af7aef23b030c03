"""
Input Validation

Argument checks for the MCP tools. Each check raises InvalidParameters,
which the tool wrapper turns into a VALIDATION_ERROR result.
"""

import re
from typing import Optional, Union

from .errors import InvalidParameters

MAX_PROMPT_LENGTH = 10000

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]")
_SAFE_FILENAME = re.compile(r"^[a-zA-Z0-9._-]+$")
_ABSOLUTE_PATH = re.compile(r"^([a-zA-Z]:\\|\\\\|/)")

RESIZE_METHODS = ("resize", "upscale")


def sanitize_prompt(prompt: str) -> str:
    """Remove control characters except newlines and tabs, then trim."""
    return _CONTROL_CHARS.sub("", prompt).strip()


def validate_filename(filename: str) -> bool:
    """True for plain file names (no path separators or odd characters)."""
    return bool(filename) and _SAFE_FILENAME.match(filename) is not None


def is_absolute_path(file_path: str) -> bool:
    """POSIX (/path), Windows drive (C:\\path) or UNC (\\\\host) absolute path."""
    return _ABSOLUTE_PATH.match(file_path) is not None


def validate_prompt(prompt, param_name: str = "prompt", required: bool = True) -> Optional[str]:
    """Check length and return the sanitized prompt (None if optional and absent)."""
    if prompt is None:
        if required:
            raise InvalidParameters(f"Missing required parameter: {param_name}", field=param_name)
        return None
    if not isinstance(prompt, str):
        raise InvalidParameters(f"Parameter '{param_name}' must be str, got {type(prompt).__name__}", field=param_name)
    if required and not prompt:
        raise InvalidParameters(f"Parameter '{param_name}' cannot be empty", field=param_name)
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise InvalidParameters(f"Parameter '{param_name}' too long (max {MAX_PROMPT_LENGTH} characters)", field=param_name)

    cleaned = sanitize_prompt(prompt)
    if required and not cleaned:
        raise InvalidParameters(f"Parameter '{param_name}' cannot be empty", field=param_name)
    return cleaned or None


def validate_dimension(value, param_name: str, required: bool = False) -> Optional[int]:
    """Positive integer pixel size."""
    if value is None:
        if required:
            raise InvalidParameters(f"Missing required parameter: {param_name}", field=param_name)
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise InvalidParameters(f"Parameter '{param_name}' must be an integer, got {value!r}", field=param_name)
    if value <= 0:
        raise InvalidParameters(f"Parameter '{param_name}' must be > 0, got {value}", field=param_name)
    return int(value)


def validate_range(
    value: Union[int, float],
    param_name: str,
    min_val: Union[int, float] = None,
    max_val: Union[int, float] = None,
) -> Union[int, float]:
    """Numeric parameter within [min_val, max_val]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParameters(f"Parameter '{param_name}' must be a number, got {value!r}", field=param_name)
    if min_val is not None and value < min_val:
        raise InvalidParameters(f"Parameter '{param_name}' must be >= {min_val}, got {value}", field=param_name)
    if max_val is not None and value > max_val:
        raise InvalidParameters(f"Parameter '{param_name}' must be <= {max_val}, got {value}", field=param_name)
    return value


def validate_image_path(image_path) -> str:
    """Non-empty absolute path to a local image."""
    if not isinstance(image_path, str) or not image_path:
        raise InvalidParameters("Image path cannot be empty", field="image_path")
    if not is_absolute_path(image_path):
        raise InvalidParameters(f"Image path must be absolute. Received: {image_path}", field="image_path")
    return image_path


def validate_prompt_id(prompt_id) -> str:
    if not isinstance(prompt_id, str) or not prompt_id.strip():
        raise InvalidParameters("Prompt ID cannot be empty", field="prompt_id")
    return prompt_id.strip()


def validate_resize_method(method: str) -> str:
    if method not in RESIZE_METHODS:
        raise InvalidParameters(
            f"Unknown resize method: {method}. Use: {'|'.join(RESIZE_METHODS)}",
            field="method",
        )
    return method

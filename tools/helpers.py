"""Shared helper functions for tool implementations"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional, Union

from image_processor import load_reference
from models.failure import Failure, FailureKind, is_failure
from models.images import ReferenceImage
from models.requests import MAX_REFERENCES

logger = logging.getLogger("MCP_Server")


def build_response(result: Any) -> Dict[str, Any]:
    """Convert an orchestrator outcome into a tool response dict.

    Failures become ``{"error": {"kind": ..., "message": ...}}`` so agents can
    branch on the stable kind instead of parsing messages.
    """
    if is_failure(result):
        return {"error": result.to_dict()}
    if hasattr(result, "to_dict"):
        return result.to_dict()
    return dict(result)


def error_response(kind: FailureKind, message: str) -> Dict[str, Any]:
    return {"error": Failure(kind, message).to_dict()}


def current_user_id(settings) -> int:
    """The acting user for permission checks and buffer ownership"""
    try:
        return int(settings.get("server.user_id", 1) or 0)
    except (TypeError, ValueError):
        return 0


def _decode_base64_image(value: str) -> bytes:
    """Accept raw base64 or a ``data:image/...;base64,`` URI"""
    payload = value.strip()
    if payload.startswith("data:"):
        header, _, payload = payload.partition(",")
        if ";base64" not in header:
            raise ValueError("Reference data URIs must be base64 encoded")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Reference image is not valid base64")


def decode_references(references: Optional[List[Any]]) -> Union[List[ReferenceImage], Failure]:
    """Decode tool-supplied reference images.

    Each item is either a base64 string or a dict with ``data`` and an
    optional ``filename``.
    """
    if not references:
        return []
    if len(references) > MAX_REFERENCES:
        return Failure(FailureKind.INVALID_INPUT, f"At most {MAX_REFERENCES} reference images are allowed.")

    decoded: List[ReferenceImage] = []
    for index, item in enumerate(references):
        filename = ""
        if isinstance(item, dict):
            filename = str(item.get("filename") or "")
            item = item.get("data")
        if not isinstance(item, str) or not item.strip():
            return Failure(FailureKind.INVALID_INPUT, f"Reference image {index + 1} has no data.")
        try:
            decoded.append(load_reference(_decode_base64_image(item), filename or f"reference-{index + 1}"))
        except ValueError as e:
            logger.warning(f"Rejected reference image {index + 1}: {e}")
            return Failure(FailureKind.INVALID_INPUT, f"Reference image {index + 1}: {e}")
    return decoded

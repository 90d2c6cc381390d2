"""HTTP transport used by provider adapters.

Wraps a requests session, maps upstream status codes onto failure kinds and
extracts a safe, short message from error payloads.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from models.failure import FailureKind, ProviderError

logger = logging.getLogger("HttpClient")

DEFAULT_TIMEOUT = 60
MAX_MESSAGE_LENGTH = 300

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]+")


class TransportError(ProviderError):
    """Raised when the request never produced an HTTP response"""


@dataclass
class HttpResponse:
    status: int
    content: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.content.decode("utf-8"))


class HttpTransport:
    """Thin requests wrapper returning HttpResponse or raising TransportError"""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        data: Any = None,
        files: Any = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> HttpResponse:
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                json=json,
                data=data,
                files=files,
                timeout=timeout,
            )
        except requests.Timeout:
            logger.warning("%s %s timed out after %ss", method, _redact(url), timeout)
            raise TransportError("The provider timed out.", FailureKind.PROVIDER_TIMEOUT)
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, _redact(url), e)
            raise TransportError(
                sanitize_message(f"Network error: {e}"),
                FailureKind.PROVIDER_ERROR,
            )
        return HttpResponse(
            status=response.status_code,
            content=response.content,
            headers=dict(response.headers),
        )

    def get(self, url: str, headers: Optional[Dict[str, str]] = None, timeout: float = DEFAULT_TIMEOUT) -> HttpResponse:
        return self.request("GET", url, headers=headers, timeout=timeout)


def kind_for_status(status: int) -> FailureKind:
    """Map a non-2xx HTTP status onto a failure kind"""
    if status == 400:
        return FailureKind.INVALID_INPUT
    if status in (401, 403):
        return FailureKind.NOT_CONNECTED
    if status == 404:
        return FailureKind.MODEL_UNSUPPORTED
    if status in (408, 504):
        return FailureKind.PROVIDER_TIMEOUT
    if status == 429:
        return FailureKind.RATE_LIMITED
    return FailureKind.PROVIDER_ERROR


def sanitize_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Strip markup and control characters, collapse whitespace, truncate"""
    text = _TAG_RE.sub("", str(text))
    text = _CONTROL_RE.sub(" ", text)
    text = " ".join(text.split())
    if len(text) > limit:
        text = text[: limit - 3].rstrip() + "..."
    return text


def extract_error_message(payload: Any) -> Optional[str]:
    """Look for conventional message/error/detail fields in a decoded body"""
    if not isinstance(payload, dict):
        return None
    for key in ("message", "error", "detail"):
        value = payload.get(key)
        if isinstance(value, dict):
            value = value.get("message") or value.get("detail")
        if isinstance(value, list) and value and isinstance(value[0], dict):
            # FastAPI-style validation errors
            value = value[0].get("msg")
        if isinstance(value, str) and value.strip():
            return value
    return None


def message_for_response(response: HttpResponse) -> str:
    """Build 'HTTP <status>' optionally followed by a safe upstream message"""
    message = f"HTTP {response.status}"
    try:
        payload = response.json()
    except (ValueError, UnicodeDecodeError):
        return message
    detail = extract_error_message(payload)
    if detail:
        message = f"{message}: {detail}"
    return sanitize_message(message)


def error_for_response(response: HttpResponse) -> ProviderError:
    return ProviderError(message_for_response(response), kind_for_status(response.status))


def _redact(url: str) -> str:
    return url.split("?", 1)[0]

"""Failure taxonomy shared by adapters, stores and orchestrators"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class FailureKind(str, Enum):
    """Stable failure kind strings returned at every boundary"""
    INVALID_INPUT = "invalid-input"
    NOT_CONNECTED = "not-connected"
    PROVIDER_TIMEOUT = "provider-timeout"
    RATE_LIMITED = "rate-limited"
    MODEL_UNSUPPORTED = "model-unsupported"
    PROVIDER_ERROR = "provider-error"
    MALFORMED_RESPONSE = "malformed-response"
    STORAGE_ERROR = "storage-error"
    NOT_FOUND = "not-found"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Failure:
    """Typed failure value: a machine kind plus a sanitized human message"""
    kind: FailureKind
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


class StudioError(Exception):
    """Base exception carrying a failure kind.

    Raised inside components and converted to a Failure at their boundary.
    """

    kind = FailureKind.PROVIDER_ERROR

    def __init__(self, message: str, kind: Optional[FailureKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def to_failure(self) -> Failure:
        return Failure(self.kind, self.message)


class ProviderError(StudioError):
    """Raised by provider adapters for request, transport and response problems"""


class StorageError(StudioError):
    """Raised when bytes or records cannot be persisted"""

    kind = FailureKind.STORAGE_ERROR


def is_failure(value: Any) -> bool:
    return isinstance(value, Failure)

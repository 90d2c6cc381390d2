"""Data models for the Image Studio MCP Server"""

from models.buffer import EditBufferEntry
from models.failure import (
    Failure,
    FailureKind,
    ProviderError,
    StorageError,
    StudioError,
    is_failure,
)
from models.images import BinaryImage, ReferenceImage
from models.provenance import AiMetadata, ProvenanceEvent
from models.requests import (
    MAX_REFERENCES,
    EditRequest,
    GenerationRequest,
    OutputFormat,
    Provider,
    Purpose,
    SaveMode,
)
from models.results import BufferResult, EditResult, GenerationResult, SavedAttachment

__all__ = [
    "AiMetadata",
    "BinaryImage",
    "BufferResult",
    "EditBufferEntry",
    "EditRequest",
    "EditResult",
    "Failure",
    "FailureKind",
    "GenerationRequest",
    "GenerationResult",
    "MAX_REFERENCES",
    "OutputFormat",
    "Provider",
    "ProviderError",
    "ProvenanceEvent",
    "Purpose",
    "ReferenceImage",
    "SaveMode",
    "SavedAttachment",
    "StorageError",
    "StudioError",
    "is_failure",
]

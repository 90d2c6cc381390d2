"""Edit buffer data models"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict


@dataclass
class EditBufferEntry:
    """Record of a buffered edit result awaiting commit or discard"""
    key: str
    path: Path
    owner_id: int
    attachment_id: int
    width: int
    height: int
    mime: str
    created_at: datetime
    expires_at: datetime
    context: Dict[str, Any] = field(default_factory=dict)

"""Result payloads returned by the orchestrators"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class SavedAttachment:
    id: int
    url: str
    filename: str


@dataclass
class GenerationResult:
    attachment_id: int
    url: str
    filename: str
    title: str
    provider: str
    model: str
    width: int
    height: int
    mime: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attachment_id": self.attachment_id,
            "url": self.url,
            "filename": self.filename,
            "title": self.title,
            "provider": self.provider,
            "model": self.model,
            "width": self.width,
            "height": self.height,
            "mime": self.mime,
        }


@dataclass
class EditResult:
    attachment_id: int
    url: str
    filename: str
    provider: str
    model: str
    width: int
    height: int
    mime: str
    derived_from_id: Optional[int] = None
    mode: str = "save_as"

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "attachment_id": self.attachment_id,
            "url": self.url,
            "filename": self.filename,
            "provider": self.provider,
            "model": self.model,
            "width": self.width,
            "height": self.height,
            "mime": self.mime,
            "mode": self.mode,
        }
        if self.derived_from_id:
            payload["derived_from_id"] = self.derived_from_id
        return payload


@dataclass
class BufferResult:
    buffer_key: str
    width: int
    height: int
    mime: str
    attachment_id: int
    provider: str
    model: str
    prompt: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "buffer_key": self.buffer_key,
            "width": self.width,
            "height": self.height,
            "mime": self.mime,
            "attachment_id": self.attachment_id,
            "provider": self.provider,
            "model": self.model,
            "prompt": self.prompt,
        }

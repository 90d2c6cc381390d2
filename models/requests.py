"""Request models for generation and edit operations"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from models.images import ReferenceImage

MAX_REFERENCES = 4
MAX_PROMPT_LENGTH = 4000

ASPECT_RATIOS = ("1:1", "16:9", "21:9", "3:2", "2:3", "4:5", "5:4", "3:4", "4:3", "9:16", "9:21")
DEFAULT_ASPECT_RATIO = "1:1"
RESOLUTIONS = ("1K", "2K", "4K")
DEFAULT_RESOLUTION = "1K"


class Provider(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    REPLICATE = "replicate"

    @classmethod
    def coerce(cls, value) -> "Provider":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown provider: {value}")


class Purpose(str, Enum):
    GENERATE = "generate"
    EDIT = "edit"


class OutputFormat(str, Enum):
    PNG = "png"
    WEBP = "webp"
    JPEG = "jpeg"

    @property
    def mime(self) -> str:
        return f"image/{self.value}"

    @property
    def extension(self) -> str:
        return "jpg" if self is OutputFormat.JPEG else self.value

    @property
    def supports_alpha(self) -> bool:
        return self is not OutputFormat.JPEG

    @classmethod
    def coerce(cls, value) -> "OutputFormat":
        """Accept an enum, a format name ('jpg' included) or a mime type"""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text.startswith("image/"):
            text = text[len("image/"):]
        if text == "jpg":
            text = "jpeg"
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Unsupported output format: {value}")


class SaveMode(str, Enum):
    NEW_COPY = "new"
    REPLACE_ORIGINAL = "replace"
    BUFFER_ONLY = "buffer"

    @classmethod
    def coerce(cls, value) -> "SaveMode":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        aliases = {
            "new-copy": cls.NEW_COPY,
            "save_as": cls.NEW_COPY,
            "replace-original": cls.REPLACE_ORIGINAL,
            "buffer-only": cls.BUFFER_ONLY,
        }
        if text in aliases:
            return aliases[text]
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Invalid save mode: {value}. Must be 'new', 'replace' or 'buffer'")

    @property
    def provenance_mode(self) -> str:
        """Mode string recorded in provenance events"""
        return {
            SaveMode.NEW_COPY: "save_as",
            SaveMode.REPLACE_ORIGINAL: "replace",
            SaveMode.BUFFER_ONLY: "buffer",
        }[self]


@dataclass
class GenerationRequest:
    """Normalized request for a new image"""
    prompt: str
    provider: Provider
    model: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    output_format: OutputFormat = OutputFormat.PNG
    references: List[ReferenceImage] = field(default_factory=list)

    @property
    def has_pixel_dimensions(self) -> bool:
        return bool(self.width and self.height)


@dataclass
class EditRequest:
    """Normalized request for editing a stored attachment or a buffered result"""
    attachment_id: int
    prompt: str
    provider: Provider
    model: str = ""
    output_format: Optional[OutputFormat] = None
    save_mode: SaveMode = SaveMode.NEW_COPY
    base_buffer_key: Optional[str] = None
    references: List[ReferenceImage] = field(default_factory=list)
    filename: Optional[str] = None
    title: Optional[str] = None

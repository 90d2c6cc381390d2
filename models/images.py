"""Binary image value types"""

import base64
from dataclasses import dataclass


@dataclass(frozen=True)
class BinaryImage:
    """Raw image bytes with their mime type and pixel dimensions"""
    data: bytes
    mime: str
    width: int
    height: int

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_uri(self) -> str:
        return f"data:{self.mime};base64,{self.b64()}"


@dataclass(frozen=True)
class ReferenceImage:
    """Caller-supplied image that steers a generation or edit"""
    data: bytes
    mime: str
    width: int
    height: int
    filename: str = ""

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_uri(self) -> str:
        return f"data:{self.mime};base64,{self.b64()}"

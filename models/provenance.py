"""Provenance models: ledger events and per-attachment AI metadata"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ProvenanceEvent:
    """One immutable generate/edit record appended to an attachment ledger"""
    type: str
    provider: str
    model: str
    mode: str
    prompt: str
    timestamp: int
    user_id: int
    derived_from: int = 0
    attachment_id: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProvenanceEvent":
        return cls(
            type=str(data.get("type", "")),
            provider=str(data.get("provider", "")),
            model=str(data.get("model", "")),
            mode=str(data.get("mode", "")),
            prompt=str(data.get("prompt", "")),
            timestamp=int(data.get("timestamp") or 0),
            user_id=int(data.get("user_id") or 0),
            derived_from=int(data.get("derived_from") or 0),
            attachment_id=int(data.get("attachment_id") or 0),
        )

    @classmethod
    def from_context(cls, context: Dict[str, Any], attachment_id: int = 0, derived_from: Optional[int] = None) -> "ProvenanceEvent":
        return cls(
            type=str(context.get("action", "")),
            provider=str(context.get("provider", "")),
            model=str(context.get("model", "")),
            mode=str(context.get("mode", "")),
            prompt=str(context.get("prompt", "")),
            timestamp=int(context.get("timestamp") or 0),
            user_id=int(context.get("user_id") or 0),
            derived_from=int(derived_from or 0),
            attachment_id=int(attachment_id or 0),
        )


@dataclass
class AiMetadata:
    """Structured AI metadata stored on a persisted image"""
    generated: bool = False
    last: Dict[str, Any] = field(default_factory=dict)
    derived_from: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated": self.generated,
            "last": dict(self.last),
            "derived_from": self.derived_from,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AiMetadata":
        last = data.get("last")
        return cls(
            generated=bool(data.get("generated")),
            last=dict(last) if isinstance(last, dict) else {},
            derived_from=int(data.get("derived_from") or 0),
        )

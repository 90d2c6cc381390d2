"""Structured AI metadata stored on persisted attachments"""

import logging
import re
import time
from typing import Any, Dict, Optional

from models.provenance import AiMetadata

logger = logging.getLogger("ImageStudio")

META_KEY = "ai_meta"

# Discrete keys written by earlier releases, folded into META_KEY on access
LEGACY_KEYS = (
    "ai_generated",
    "ai_last_action",
    "ai_last_provider",
    "ai_last_model",
    "ai_last_timestamp",
    "ai_last_user",
    "ai_derived_from",
)

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_KEY_RE = re.compile(r"[^a-z0-9_\-]")


def sanitize_key(value: Any) -> str:
    """Lowercase and keep only [a-z0-9_-]"""
    return _KEY_RE.sub("", str(value or "").lower())


def sanitize_text(value: Any, limit: Optional[int] = None, multiline: bool = False) -> str:
    """Strip markup and control characters; optionally truncate"""
    text = _TAG_RE.sub("", str(value or ""))
    text = _CONTROL_RE.sub("", text)
    if multiline:
        text = "\n".join(" ".join(line.split()) for line in text.splitlines()).strip()
    else:
        text = " ".join(text.split())
    if limit is not None and len(text) > limit:
        text = text[:limit]
    return text


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def build_last_event(context: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "action": sanitize_key(context.get("action") or "generate"),
        "provider": sanitize_key(context.get("provider")),
        "model": sanitize_text(context.get("model")),
        "timestamp": _to_int(context.get("timestamp")) or int(time.time()),
        "user_id": _to_int(context.get("user_id")),
        "mode": sanitize_key(context.get("mode")),
        "prompt": sanitize_text(context.get("prompt"), multiline=True),
    }


def build_ai_meta(context: Dict[str, Any], derived_from: Optional[int] = None, existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return the ai_meta record after a successful generate or commit.

    `derived_from=None` keeps any existing link; 0 clears it.
    """
    meta = AiMetadata.from_dict(existing or {})
    meta.generated = True
    meta.last = build_last_event(context)
    if derived_from is not None:
        meta.derived_from = max(_to_int(derived_from), 0)
    return meta.to_dict()


def has_legacy_keys(meta: Dict[str, Any]) -> bool:
    return any(key in meta for key in LEGACY_KEYS)


def fold_legacy_keys(meta: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of the metadata map with legacy keys folded into META_KEY.

    An existing structured record wins over the legacy keys.
    """
    if isinstance(meta.get(META_KEY), dict):
        record = meta[META_KEY]
    else:
        generated = str(meta.get("ai_generated", "")) in ("1", "True", "true")
        last = {
            "action": sanitize_key(meta.get("ai_last_action")),
            "provider": sanitize_key(meta.get("ai_last_provider")),
            "model": sanitize_text(meta.get("ai_last_model")),
            "timestamp": _to_int(meta.get("ai_last_timestamp")),
            "user_id": _to_int(meta.get("ai_last_user")),
            "mode": "",
            "prompt": "",
        }
        derived = _to_int(meta.get("ai_derived_from"))
        record = {
            "generated": generated,
            "last": last,
            "derived_from": derived if derived > 0 else 0,
        }
    migrated = {k: v for k, v in meta.items() if k not in LEGACY_KEYS}
    migrated[META_KEY] = record
    return migrated


class AttachmentMetadata:
    """Reads AI metadata through an attachment store.

    Legacy discrete keys are migrated into the structured record the first
    time an attachment is accessed, then deleted.
    """

    def __init__(self, store):
        self.store = store

    def get(self, attachment_id: int) -> Optional[AiMetadata]:
        meta = self.store.get_meta(attachment_id)
        if meta is None:
            return None
        if has_legacy_keys(meta):
            meta = self._migrate(attachment_id)
        record = meta.get(META_KEY)
        if not isinstance(record, dict):
            return AiMetadata()
        return AiMetadata.from_dict(record)

    def _migrate(self, attachment_id: int) -> Dict[str, Any]:
        """Fold legacy keys into the structured record and delete them"""
        def migrate(meta):
            if not has_legacy_keys(meta):
                return {}
            migrated = fold_legacy_keys(meta)
            updates = {key: None for key in LEGACY_KEYS if key in meta}
            updates[META_KEY] = migrated[META_KEY]
            return updates

        meta = self.store.mutate_meta(attachment_id, migrate)
        logger.info(f"Migrated legacy AI metadata for attachment {attachment_id}")
        return meta

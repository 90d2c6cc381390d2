"""Per-attachment provenance ledger"""

import logging
from typing import Any, Dict, List

from managers.attachment_metadata import sanitize_key, sanitize_text
from models.failure import StorageError
from models.provenance import ProvenanceEvent

logger = logging.getLogger("ImageStudio")

HISTORY_KEY = "ai_history"
HISTORY_LIMIT = 50
PROMPT_LIMIT = 1000


def sanitize_event(event: ProvenanceEvent) -> ProvenanceEvent:
    return ProvenanceEvent(
        type=sanitize_key(event.type),
        provider=sanitize_key(event.provider),
        model=sanitize_text(event.model, limit=200),
        mode=sanitize_key(event.mode),
        prompt=sanitize_text(event.prompt, limit=PROMPT_LIMIT, multiline=True),
        timestamp=max(int(event.timestamp), 0),
        user_id=max(int(event.user_id), 0),
        derived_from=max(int(event.derived_from), 0),
        attachment_id=max(int(event.attachment_id), 0),
    )


class HistoryLedger:
    """Append-only, capped event log stored in attachment metadata.

    Recording is off unless `privacy.store_history` is enabled.
    """

    def __init__(self, store, settings, limit: int = HISTORY_LIMIT):
        self.store = store
        self.settings = settings
        self.limit = limit

    @property
    def enabled(self) -> bool:
        return bool(self.settings.get("privacy.store_history", False))

    def append(self, attachment_id: int, event: ProvenanceEvent) -> bool:
        """Append an event; returns False when history is disabled"""
        if not self.enabled:
            return False
        if not event.attachment_id:
            event = ProvenanceEvent(**{**event.to_dict(), "attachment_id": attachment_id})
        entry = sanitize_event(event).to_dict()

        def add_entry(meta):
            history = _entries(meta)
            history.append(entry)
            # FIFO eviction keeps only the most recent entries
            return {HISTORY_KEY: history[-self.limit:]}

        self.store.mutate_meta(attachment_id, add_entry)
        return True

    def list(self, attachment_id: int) -> List[ProvenanceEvent]:
        """Events oldest first"""
        meta = self.store.get_meta(attachment_id)
        if meta is None:
            raise StorageError(f"Attachment {attachment_id} not found")
        return [ProvenanceEvent.from_dict(entry) for entry in _entries(meta)]


def _entries(meta: Dict[str, Any]) -> List[Dict[str, Any]]:
    history = meta.get(HISTORY_KEY)
    if not isinstance(history, list):
        return []
    return [entry for entry in history if isinstance(entry, dict)]

"""JSONL log of provider operations"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from managers.attachment_metadata import sanitize_text

logger = logging.getLogger("ImageStudio")

LOG_FILENAME = "request_log.jsonl"
EXCERPT_LIMIT = 500
MESSAGE_LIMIT = 2000
STATUSES = ("success", "error")


class RequestLog:
    """Appends one JSON line per generate/edit call when `logging.enabled` is set.

    Write failures are logged as warnings and never fail the operation.
    """

    def __init__(self, log_path: Path, settings):
        self.log_path = Path(log_path)
        self.settings = settings
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.get("logging.enabled", False))

    def record(
        self,
        operation: str,
        provider: str,
        model: str,
        status: str,
        response_time_ms: int = 0,
        user_id: int = 0,
        attachment_id: int = 0,
        prompt: str = "",
        error_code: str = "",
        error_message: str = "",
        reference_count: int = 0,
        save_mode: str = "",
    ) -> bool:
        if not self.enabled:
            return False

        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "operation": sanitize_text(operation),
            "provider": sanitize_text(provider),
            "model": sanitize_text(model),
            "status": status if status in STATUSES else "error",
            "response_time_ms": max(int(response_time_ms), 0),
            "user_id": int(user_id or 0),
            "attachment_id": int(attachment_id or 0),
            "prompt_excerpt": sanitize_text(prompt, limit=EXCERPT_LIMIT),
            "error_code": sanitize_text(error_code),
            "error_message": sanitize_text(error_message, limit=MESSAGE_LIMIT),
            "reference_count": max(int(reference_count), 0),
            "save_mode": sanitize_text(save_mode),
        }

        try:
            with self._lock:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(log_entry) + "\n")
        except OSError as e:
            logger.warning(f"Failed to write to request log: {e}")
            return False
        return True

    def query(
        self,
        provider: Optional[str] = None,
        operation: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        """Most recent entries first, optionally filtered"""
        if not self.log_path.exists():
            return []
        entries: List[Dict[str, Any]] = []
        try:
            with open(self.log_path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if provider and entry.get("provider") != provider:
                        continue
                    if operation and entry.get("operation") != operation:
                        continue
                    if status and entry.get("status") != status:
                        continue
                    entries.append(entry)
        except OSError as e:
            logger.warning(f"Failed to read request log: {e}")
            return []
        entries.reverse()
        return entries[: max(int(limit), 0)]

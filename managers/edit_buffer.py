"""Edit buffer for AI edit results awaiting commit"""

import logging
import re
import secrets
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from managers.attachment_metadata import sanitize_key, sanitize_text
from models.buffer import EditBufferEntry
from models.failure import StorageError
from models.images import BinaryImage
from models.requests import OutputFormat

logger = logging.getLogger("ImageStudio")

DEFAULT_TTL_SECONDS = 60 * 60
KEY_REGEX = re.compile(r"^[a-f0-9]{32}$")


def _sanitize_context(context: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "provider": sanitize_key(context.get("provider")),
        "model": sanitize_text(context.get("model")),
        "prompt": sanitize_text(context.get("prompt"), multiline=True),
        "action": sanitize_key(context.get("action") or "edit"),
        "mode": sanitize_key(context.get("mode") or "buffer"),
        "user_id": int(context.get("user_id") or 0),
        "timestamp": int(context.get("timestamp") or 0),
    }


class EditBuffer:
    """Owner-scoped store of buffered edit results.

    Each entry lives for `ttl_seconds` after its last owner read. Bytes are
    kept on disk under `cache_dir`; the index lives in memory. Commit and
    discard are terminal: a claimed or discarded key is never valid again.
    """

    def __init__(
        self,
        cache_dir: Path,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.cache_dir = Path(cache_dir)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, EditBufferEntry] = {}
        # Claimed by an in-flight commit; files kept until release or restore
        self._claimed: Dict[str, EditBufferEntry] = {}
        self._lock = threading.Lock()
        logger.info(f"Initialized EditBuffer in {self.cache_dir} with TTL: {ttl_seconds} seconds")

    def store(self, image: BinaryImage, owner_id: int, attachment_id: int, context: Dict[str, Any]) -> EditBufferEntry:
        """Write bytes to the cache dir and register a new entry.

        Raises:
            StorageError: If the bytes cannot be written
        """
        key = secrets.token_hex(16)
        try:
            extension = OutputFormat.coerce(image.mime).extension
        except ValueError:
            extension = "bin"
        path = self.cache_dir / f"ai-edit-{int(attachment_id)}-{key}.{extension}"

        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "wb") as f:
                f.write(image.data)
            temp_path.replace(path)
        except OSError as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise StorageError(f"Failed to write edit buffer: {e}")

        now = self._clock()
        entry = EditBufferEntry(
            key=key,
            path=path,
            owner_id=int(owner_id),
            attachment_id=int(attachment_id),
            width=image.width,
            height=image.height,
            mime=image.mime,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
            context=_sanitize_context(context),
        )
        with self._lock:
            self._entries[key] = entry
        logger.debug(f"Buffered edit {key} for attachment {attachment_id}")
        return entry

    def _live_entry(self, key: str, owner_id: int) -> Optional[EditBufferEntry]:
        """Validate ownership, expiry and backing bytes. Caller holds the lock."""
        if not key or not KEY_REGEX.match(key):
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            logger.debug(f"Edit buffer {key} has expired")
            self._drop(entry)
            return None
        if entry.owner_id != int(owner_id):
            return None
        if not entry.path.exists():
            logger.warning(f"Edit buffer {key} lost its backing file")
            del self._entries[key]
            return None
        return entry

    def _drop(self, entry: EditBufferEntry):
        self._entries.pop(entry.key, None)
        try:
            entry.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete edit buffer file {entry.path}: {e}")

    def get(self, key: str, owner_id: int) -> Optional[EditBufferEntry]:
        """Return the owner's live entry and refresh its TTL"""
        with self._lock:
            entry = self._live_entry(key, owner_id)
            if entry is not None:
                entry.expires_at = self._clock() + timedelta(seconds=self.ttl_seconds)
            return entry

    def load(self, key: str, owner_id: int) -> Optional[Tuple[EditBufferEntry, BinaryImage]]:
        """Return the live entry with its bytes, refreshing the TTL"""
        with self._lock:
            entry = self._live_entry(key, owner_id)
            if entry is None:
                return None
            try:
                data = entry.path.read_bytes()
            except OSError as e:
                logger.warning(f"Edit buffer {key} unreadable: {e}")
                del self._entries[key]
                return None
            entry.expires_at = self._clock() + timedelta(seconds=self.ttl_seconds)
        return entry, BinaryImage(data=data, mime=entry.mime, width=entry.width, height=entry.height)

    def claim(self, key: str, owner_id: int) -> Optional[Tuple[EditBufferEntry, BinaryImage]]:
        """Atomically remove the owner's entry from the index and return it.

        The backing file stays on disk until `release` or `restore` is called,
        so a failed save can put the entry back.
        """
        with self._lock:
            entry = self._live_entry(key, owner_id)
            if entry is None:
                return None
            try:
                data = entry.path.read_bytes()
            except OSError as e:
                logger.warning(f"Edit buffer {key} unreadable: {e}")
                del self._entries[key]
                return None
            del self._entries[key]
            self._claimed[key] = entry
        return entry, BinaryImage(data=data, mime=entry.mime, width=entry.width, height=entry.height)

    def restore(self, entry: EditBufferEntry):
        """Put a claimed entry back, e.g. after the commit's save failed"""
        with self._lock:
            self._claimed.pop(entry.key, None)
            entry.expires_at = self._clock() + timedelta(seconds=self.ttl_seconds)
            self._entries[entry.key] = entry

    def release(self, entry: EditBufferEntry):
        """Delete a claimed entry's backing file"""
        with self._lock:
            self._claimed.pop(entry.key, None)
        try:
            entry.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete edit buffer file {entry.path}: {e}")

    def discard(self, key: str, owner_id: int) -> bool:
        """Delete the owner's entry and its bytes. Returns False when not found."""
        with self._lock:
            entry = self._live_entry(key, owner_id)
            if entry is None:
                return False
            self._drop(entry)
        logger.debug(f"Discarded edit buffer {key}")
        return True

    def cleanup_expired(self) -> int:
        """Remove expired entries and their files"""
        now = self._clock()
        with self._lock:
            expired = [entry for entry in self._entries.values() if now > entry.expires_at]
            for entry in expired:
                self._drop(entry)
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired edit buffers")
        return len(expired)

    def remove_orphans(self) -> int:
        """Delete buffer files no live or claimed entry points at, e.g. files
        left by an earlier process. Run before serving requests.
        """
        if not self.cache_dir.exists():
            return 0
        removed = 0
        with self._lock:
            known = {entry.path.name for entry in list(self._entries.values()) + list(self._claimed.values())}
            for path in self.cache_dir.glob("ai-edit-*"):
                if path.name in known or not path.is_file():
                    continue
                try:
                    path.unlink()
                    removed += 1
                except OSError as e:
                    logger.warning(f"Failed to delete orphaned edit buffer file {path}: {e}")
        if removed:
            logger.info(f"Removed {removed} orphaned edit buffer files")
        return removed

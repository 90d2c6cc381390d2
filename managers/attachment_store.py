"""Persistent attachment storage"""

import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from managers.attachment_metadata import META_KEY, build_ai_meta, fold_legacy_keys, has_legacy_keys
from models.failure import StorageError
from models.images import BinaryImage
from models.requests import OutputFormat
from models.results import SavedAttachment

logger = logging.getLogger("ImageStudio")

INDEX_FILENAME = "attachments.json"
FILES_DIRNAME = "files"

_SAFE_NAME_RE = re.compile(r"[^a-z0-9._-]+")


class AttachmentStore(ABC):
    """Collaborator interface for persisting images and their metadata.

    Persistence is all-or-nothing: after `save` or `overwrite` either both the
    bytes and the record exist, or neither changed.
    """

    @abstractmethod
    def save(
        self,
        image: BinaryImage,
        filename_base: str,
        title: str,
        context: Dict[str, Any],
        derived_from: Optional[int] = None,
    ) -> SavedAttachment:
        ...

    @abstractmethod
    def load_bytes(self, attachment_id: int) -> Optional[bytes]:
        ...

    @abstractmethod
    def overwrite(self, attachment_id: int, image: BinaryImage, context: Dict[str, Any]) -> SavedAttachment:
        ...

    @abstractmethod
    def exists(self, attachment_id: int) -> bool:
        ...

    @abstractmethod
    def get_mime(self, attachment_id: int) -> Optional[str]:
        ...

    @abstractmethod
    def get_meta(self, attachment_id: int) -> Optional[Dict[str, Any]]:
        """Metadata map for an attachment, or None when it does not exist"""

    @abstractmethod
    def update_meta(self, attachment_id: int, updates: Dict[str, Any]):
        """Merge `updates` into the metadata map; a None value deletes the key"""

    @abstractmethod
    def mutate_meta(
        self,
        attachment_id: int,
        mutate: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Atomically read the metadata map, apply the updates `mutate` returns
        for it, and return the resulting map
        """


def _safe_filename_base(value: str) -> str:
    base = _SAFE_NAME_RE.sub("-", (value or "").lower()).strip("-.")
    return base[:64] or "image"


class LocalAttachmentStore(AttachmentStore):
    """Filesystem-backed store: image files plus a JSON index written atomically"""

    def __init__(self, root: Path, base_url: str = ""):
        self.root = Path(root)
        self.files_dir = self.root / FILES_DIRNAME
        self.index_path = self.root / INDEX_FILENAME
        self.base_url = base_url.rstrip("/")
        self._lock = threading.Lock()
        self.files_dir.mkdir(parents=True, exist_ok=True)

    def _read_index(self) -> Dict[str, Dict[str, Any]]:
        if not self.index_path.exists():
            return {}
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                index = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise StorageError(f"Failed to read attachment index: {e}")
        return index if isinstance(index, dict) else {}

    def _write_index(self, index: Dict[str, Dict[str, Any]]):
        # Atomic write: write to temp file then rename
        temp_path = self.index_path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(index, f, indent=2)
            temp_path.replace(self.index_path)
        except (OSError, TypeError) as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise StorageError(f"Failed to write attachment index: {e}")

    def _write_file(self, target_path: Path, data: bytes):
        temp_path = target_path.with_suffix(target_path.suffix + ".tmp")
        try:
            with open(temp_path, "wb") as f:
                f.write(data)
            temp_path.replace(target_path)
        except OSError as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise StorageError(f"Failed to write image file: {e}")

    def _unique_path(self, base: str, extension: str) -> Path:
        candidate = self.files_dir / f"{base}.{extension}"
        counter = 1
        while candidate.exists():
            candidate = self.files_dir / f"{base}-{counter}.{extension}"
            counter += 1
        return candidate

    def _url_for(self, filename: str) -> str:
        if self.base_url:
            return f"{self.base_url}/{filename}"
        return (self.files_dir / filename).resolve().as_uri()

    @staticmethod
    def _extension_for(mime: str) -> str:
        try:
            return OutputFormat.coerce(mime).extension
        except ValueError:
            return "bin"

    def save(
        self,
        image: BinaryImage,
        filename_base: str,
        title: str,
        context: Dict[str, Any],
        derived_from: Optional[int] = None,
    ) -> SavedAttachment:
        with self._lock:
            index = self._read_index()
            attachment_id = max((int(k) for k in index), default=0) + 1
            target_path = self._unique_path(_safe_filename_base(filename_base), self._extension_for(image.mime))
            self._write_file(target_path, image.data)

            meta: Dict[str, Any] = {META_KEY: build_ai_meta(context, derived_from or 0)}
            index[str(attachment_id)] = {
                "file": target_path.name,
                "title": title,
                "mime": image.mime,
                "width": image.width,
                "height": image.height,
                "bytes_size": len(image.data),
                "created_at": datetime.now().isoformat(),
                "meta": meta,
            }
            try:
                self._write_index(index)
            except StorageError:
                # Keep bytes and record together: drop the orphaned file
                target_path.unlink(missing_ok=True)
                raise

        logger.info(f"Saved attachment {attachment_id}: {target_path.name} ({len(image.data)} bytes)")
        return SavedAttachment(id=attachment_id, url=self._url_for(target_path.name), filename=target_path.name)

    def overwrite(self, attachment_id: int, image: BinaryImage, context: Dict[str, Any]) -> SavedAttachment:
        with self._lock:
            index = self._read_index()
            record = index.get(str(attachment_id))
            if record is None:
                raise StorageError(f"Attachment {attachment_id} not found")

            old_path = self.files_dir / record["file"]
            extension = self._extension_for(image.mime)
            if old_path.suffix.lstrip(".") == extension:
                target_path = old_path
            else:
                target_path = self._unique_path(old_path.stem, extension)

            # Keep the previous bytes until the index points at the new ones
            backup_path = old_path.with_suffix(old_path.suffix + ".bak")
            had_original = old_path.exists()
            if had_original and target_path == old_path:
                try:
                    old_path.replace(backup_path)
                except OSError as e:
                    raise StorageError(f"Failed to stage overwrite: {e}")

            try:
                self._write_file(target_path, image.data)
                updated = dict(record)
                updated.update({
                    "file": target_path.name,
                    "mime": image.mime,
                    "width": image.width,
                    "height": image.height,
                    "bytes_size": len(image.data),
                    "modified_at": datetime.now().isoformat(),
                })
                meta = dict(record.get("meta") or {})
                if has_legacy_keys(meta):
                    meta = fold_legacy_keys(meta)
                meta[META_KEY] = build_ai_meta(context, context.get("derived_from"), meta.get(META_KEY))
                updated["meta"] = meta
                index[str(attachment_id)] = updated
                self._write_index(index)
            except StorageError:
                if target_path != old_path:
                    target_path.unlink(missing_ok=True)
                elif had_original:
                    backup_path.replace(old_path)
                raise

            if target_path == old_path:
                backup_path.unlink(missing_ok=True)
            elif had_original:
                old_path.unlink(missing_ok=True)

        logger.info(f"Overwrote attachment {attachment_id} with {target_path.name}")
        return SavedAttachment(id=attachment_id, url=self._url_for(target_path.name), filename=target_path.name)

    def load_bytes(self, attachment_id: int) -> Optional[bytes]:
        record = self._read_index().get(str(attachment_id))
        if record is None:
            return None
        path = self.files_dir / record["file"]
        try:
            return path.read_bytes()
        except OSError as e:
            logger.warning(f"Attachment {attachment_id} file unreadable: {e}")
            return None

    def exists(self, attachment_id: int) -> bool:
        return str(attachment_id) in self._read_index()

    def get_mime(self, attachment_id: int) -> Optional[str]:
        record = self._read_index().get(str(attachment_id))
        return record.get("mime") if record else None

    def get_record(self, attachment_id: int) -> Optional[Dict[str, Any]]:
        record = self._read_index().get(str(attachment_id))
        return dict(record) if record else None

    def get_meta(self, attachment_id: int) -> Optional[Dict[str, Any]]:
        record = self._read_index().get(str(attachment_id))
        if record is None:
            return None
        return dict(record.get("meta") or {})

    def update_meta(self, attachment_id: int, updates: Dict[str, Any]):
        self.mutate_meta(attachment_id, lambda meta: updates)

    def mutate_meta(
        self,
        attachment_id: int,
        mutate: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> Dict[str, Any]:
        with self._lock:
            index = self._read_index()
            record = index.get(str(attachment_id))
            if record is None:
                raise StorageError(f"Attachment {attachment_id} not found")
            meta = dict(record.get("meta") or {})
            updates = mutate(dict(meta))
            if not updates:
                return meta
            for key, value in updates.items():
                if value is None:
                    meta.pop(key, None)
                else:
                    meta[key] = value
            record["meta"] = meta
            self._write_index(index)
            return dict(meta)

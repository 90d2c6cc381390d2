"""Edit orchestrator and edit-buffer commit flow"""

import logging
import time
from dataclasses import replace
from typing import Callable, Dict, Optional, Tuple, Union

import image_processor
from managers.attachment_store import AttachmentStore
from managers.edit_buffer import EditBuffer
from managers.history_ledger import HistoryLedger
from managers.permission_gate import PermissionGate
from managers.request_log import RequestLog
from models.buffer import EditBufferEntry
from models.failure import Failure, FailureKind, StorageError, StudioError, is_failure
from models.images import BinaryImage
from models.provenance import ProvenanceEvent
from models.requests import EditRequest, OutputFormat, Provider, Purpose, SaveMode
from models.results import BufferResult, EditResult
from orchestrators.generation import validate_prompt
from orchestrators.naming import EDIT_TITLE_FALLBACK, filename_from_prompt, slugify, title_from_prompt
from providers.base import ProviderAdapter

logger = logging.getLogger("ImageStudio")

BUFFER_NOT_FOUND = "Edit buffer not found or expired."


def _buffer_result(entry: EditBufferEntry) -> BufferResult:
    return BufferResult(
        buffer_key=entry.key,
        width=entry.width,
        height=entry.height,
        mime=entry.mime,
        attachment_id=entry.attachment_id,
        provider=entry.context.get("provider", ""),
        model=entry.context.get("model", ""),
        prompt=entry.context.get("prompt", ""),
    )


class EditOrchestrator:
    """Edits a stored attachment, or chains onto a buffered result, then
    saves a new copy, replaces the original, or buffers the candidate.

    Buffer entries move created -> (refreshed)* -> committed | discarded |
    expired. Commit claims the entry atomically, so a duplicate commit sees
    not-found.
    """

    def __init__(
        self,
        providers: Dict[Provider, ProviderAdapter],
        store: AttachmentStore,
        buffer: EditBuffer,
        ledger: HistoryLedger,
        permissions: PermissionGate,
        settings,
        request_log: Optional[RequestLog] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.providers = providers
        self.store = store
        self.buffer = buffer
        self.ledger = ledger
        self.permissions = permissions
        self.settings = settings
        self.request_log = request_log
        self._clock = clock

    # Edit

    def edit(self, request: EditRequest, user_id: int) -> Union[EditResult, BufferResult, Failure]:
        started = time.monotonic()
        result = self._edit(request, user_id)
        self._log(
            "edit",
            request.provider,
            getattr(result, "model", request.model),
            request.save_mode,
            user_id,
            request.attachment_id,
            request.prompt,
            result,
            started,
            reference_count=len(request.references),
        )
        return result

    def _edit(self, request: EditRequest, user_id: int) -> Union[EditResult, BufferResult, Failure]:
        if not self.permissions.can_edit(user_id):
            return Failure(FailureKind.FORBIDDEN, "You are not allowed to edit images.")

        prompt = (request.prompt or "").strip()
        failure = validate_prompt(prompt)
        if failure:
            return failure

        if request.save_mode is SaveMode.REPLACE_ORIGINAL and not self.permissions.can_replace_original(user_id, request.attachment_id):
            return Failure(FailureKind.FORBIDDEN, "You are not allowed to replace the original image.")

        adapter = self.providers.get(request.provider)
        if adapter is None:
            return Failure(FailureKind.INVALID_INPUT, f"Unsupported provider: {request.provider}")
        if not self.settings.is_connected(request.provider):
            return Failure(FailureKind.NOT_CONNECTED, f"{adapter.label} is not connected. Add an API key in settings.")

        model = adapter.resolve_model(request.model, Purpose.EDIT)
        try:
            adapter.validate(Purpose.EDIT, prompt, model, request.references, extra_images=1)
        except StudioError as e:
            return e.to_failure()

        loaded = self._load_source(request, user_id)
        if is_failure(loaded):
            return loaded
        source, source_format = loaded

        if request.save_mode is SaveMode.REPLACE_ORIGINAL:
            output_format = source_format
        else:
            try:
                output_format = OutputFormat.coerce(request.output_format) if request.output_format else source_format
            except ValueError as e:
                return Failure(FailureKind.INVALID_INPUT, str(e))

        binary = adapter.edit(replace(request, prompt=prompt, model=model), source)
        if is_failure(binary):
            return binary

        normalized = self._normalize(binary.data, output_format, source.width, source.height)
        if is_failure(normalized):
            return normalized

        context = {
            "action": "edit",
            "provider": request.provider.value,
            "model": model,
            "mode": request.save_mode.provenance_mode,
            "prompt": prompt,
            "timestamp": int(self._clock()),
            "user_id": int(user_id),
        }

        if request.save_mode is SaveMode.BUFFER_ONLY:
            return self._buffer(normalized, request.attachment_id, context, user_id)
        if request.save_mode is SaveMode.REPLACE_ORIGINAL:
            return self._replace(request.attachment_id, normalized, context)
        return self._save_copy(request.attachment_id, normalized, context, request.filename, request.title)

    def _load_source(self, request: EditRequest, user_id: int) -> Union[Tuple[BinaryImage, OutputFormat], Failure]:
        """Source bytes from the buffer chain or the stored attachment, plus
        the stored attachment's format
        """
        try:
            if not self.store.exists(request.attachment_id):
                return Failure(FailureKind.NOT_FOUND, f"Attachment {request.attachment_id} not found.")
            original_mime = self.store.get_mime(request.attachment_id)
        except StorageError as e:
            return e.to_failure()

        try:
            source_format = OutputFormat.coerce(original_mime)
        except ValueError:
            source_format = OutputFormat.PNG

        if request.base_buffer_key:
            loaded = self.buffer.load(request.base_buffer_key, user_id)
            if loaded is None:
                return Failure(FailureKind.NOT_FOUND, BUFFER_NOT_FOUND)
            entry, source = loaded
            if entry.attachment_id != int(request.attachment_id):
                return Failure(FailureKind.NOT_FOUND, BUFFER_NOT_FOUND)
            return source, source_format

        try:
            data = self.store.load_bytes(request.attachment_id)
        except StorageError as e:
            return e.to_failure()
        if not data:
            return Failure(FailureKind.NOT_FOUND, f"Attachment {request.attachment_id} has no image data.")
        try:
            info = image_processor.get_image_metadata(data)
        except ValueError:
            return Failure(FailureKind.INVALID_INPUT, f"Attachment {request.attachment_id} is not an image.")
        source = BinaryImage(data=data, mime=info["mime"], width=info["width"], height=info["height"])
        return source, source_format

    def _normalize(self, data: bytes, output_format: OutputFormat, width: int, height: int):
        return image_processor.normalize(
            data,
            output_format,
            width,
            height,
            background=self.settings.get("normalizer.background", image_processor.DEFAULT_BACKGROUND),
        )

    def _buffer(self, image: BinaryImage, attachment_id: int, context: Dict, user_id: int) -> Union[BufferResult, Failure]:
        # Provenance stays with the entry until commit; the parent is untouched
        try:
            entry = self.buffer.store(image, user_id, attachment_id, context)
        except StorageError as e:
            return e.to_failure()
        return _buffer_result(entry)

    def _replace(self, attachment_id: int, image: BinaryImage, context: Dict) -> Union[EditResult, Failure]:
        try:
            saved = self.store.overwrite(attachment_id, image, context)
        except StorageError as e:
            logger.error(f"Failed to overwrite attachment {attachment_id}: {e.message}")
            return e.to_failure()
        self._record_history(attachment_id, context, derived_from=attachment_id)
        return EditResult(
            attachment_id=saved.id,
            url=saved.url,
            filename=saved.filename,
            provider=context["provider"],
            model=context["model"],
            width=image.width,
            height=image.height,
            mime=image.mime,
            mode="replace",
        )

    def _save_copy(
        self,
        attachment_id: int,
        image: BinaryImage,
        context: Dict,
        filename: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Union[EditResult, Failure]:
        fallback = f"ai-edit-{attachment_id}"
        filename_base = slugify(filename or "") or filename_from_prompt(context["prompt"], fallback)
        title = (title or "").strip() or title_from_prompt(context["prompt"], EDIT_TITLE_FALLBACK)
        try:
            saved = self.store.save(image, filename_base, title, context, derived_from=attachment_id)
        except StorageError as e:
            logger.error(f"Failed to persist edited copy of {attachment_id}: {e.message}")
            return e.to_failure()
        self._record_history(saved.id, context, derived_from=attachment_id)
        return EditResult(
            attachment_id=saved.id,
            url=saved.url,
            filename=saved.filename,
            provider=context["provider"],
            model=context["model"],
            width=image.width,
            height=image.height,
            mime=image.mime,
            derived_from_id=attachment_id,
            mode="save_as",
        )

    # Buffer operations

    def commit(
        self,
        buffer_key: str,
        user_id: int,
        save_mode: SaveMode = SaveMode.NEW_COPY,
        filename: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Union[EditResult, Failure]:
        """Turn a buffered result into a permanent artifact.

        The entry is claimed before saving; if the save fails it is restored
        so the caller can retry without another provider call.
        """
        started = time.monotonic()
        entry = self.buffer.get(buffer_key, user_id)
        if entry is None:
            return Failure(FailureKind.NOT_FOUND, BUFFER_NOT_FOUND)
        result = self._commit(entry, buffer_key, user_id, save_mode, filename, title)
        self._log(
            "commit",
            entry.context.get("provider", ""),
            entry.context.get("model", ""),
            save_mode,
            user_id,
            entry.attachment_id,
            entry.context.get("prompt", ""),
            result,
            started,
        )
        return result

    def _commit(self, entry, buffer_key, user_id, save_mode, filename, title) -> Union[EditResult, Failure]:
        if save_mode is SaveMode.BUFFER_ONLY:
            return Failure(FailureKind.INVALID_INPUT, "Commit requires save mode 'new' or 'replace'.")
        if not self.permissions.can_edit(user_id):
            return Failure(FailureKind.FORBIDDEN, "You are not allowed to edit images.")
        if save_mode is SaveMode.REPLACE_ORIGINAL and not self.permissions.can_replace_original(user_id, entry.attachment_id):
            return Failure(FailureKind.FORBIDDEN, "You are not allowed to replace the original image.")

        claimed = self.buffer.claim(buffer_key, user_id)
        if claimed is None:
            return Failure(FailureKind.NOT_FOUND, BUFFER_NOT_FOUND)
        entry, image = claimed

        context = dict(entry.context)
        context.update({
            "action": "edit",
            "mode": save_mode.provenance_mode,
            "timestamp": int(self._clock()),
            "user_id": int(user_id),
        })

        if save_mode is SaveMode.REPLACE_ORIGINAL:
            prepared = self._prepare_replacement(entry, image)
            if is_failure(prepared):
                self.buffer.restore(entry)
                return prepared
            result = self._replace(entry.attachment_id, prepared, context)
        else:
            result = self._save_copy(entry.attachment_id, image, context, filename, title)

        if is_failure(result):
            self.buffer.restore(entry)
            return result
        self.buffer.release(entry)
        return result

    def _prepare_replacement(self, entry: EditBufferEntry, image: BinaryImage) -> Union[BinaryImage, Failure]:
        """Re-encode a buffered image in the original attachment's format"""
        try:
            if not self.store.exists(entry.attachment_id):
                return Failure(FailureKind.NOT_FOUND, f"Attachment {entry.attachment_id} not found.")
            original_mime = self.store.get_mime(entry.attachment_id)
        except StorageError as e:
            return e.to_failure()
        if original_mime == image.mime:
            return image
        try:
            output_format = OutputFormat.coerce(original_mime or "png")
        except ValueError as e:
            return Failure(FailureKind.INVALID_INPUT, f"Cannot replace attachment {entry.attachment_id}: {e}")
        return self._normalize(image.data, output_format, image.width, image.height)

    def discard(self, buffer_key: str, user_id: int) -> Union[bool, Failure]:
        if not self.buffer.discard(buffer_key, user_id):
            return Failure(FailureKind.NOT_FOUND, BUFFER_NOT_FOUND)
        return True

    def read_buffer(self, buffer_key: str, user_id: int) -> Union[Tuple[BufferResult, BinaryImage], Failure]:
        """Buffered result with its bytes; refreshes the entry's TTL"""
        loaded = self.buffer.load(buffer_key, user_id)
        if loaded is None:
            return Failure(FailureKind.NOT_FOUND, BUFFER_NOT_FOUND)
        entry, image = loaded
        return _buffer_result(entry), image

    def _record_history(self, attachment_id: int, context: Dict, derived_from: int = 0):
        event = ProvenanceEvent.from_context(context, attachment_id=attachment_id, derived_from=derived_from)
        try:
            self.ledger.append(attachment_id, event)
        except StorageError as e:
            logger.warning(f"Failed to record history for attachment {attachment_id}: {e.message}")

    def _log(self, operation, provider, model, save_mode, user_id, attachment_id, prompt, result, started, reference_count=0):
        if self.request_log is None:
            return
        failure = result if is_failure(result) else None
        if failure is None:
            attachment_id = getattr(result, "attachment_id", attachment_id)
        self.request_log.record(
            operation=operation,
            provider=getattr(provider, "value", str(provider)),
            model=model or "",
            status="error" if failure else "success",
            response_time_ms=int((time.monotonic() - started) * 1000),
            user_id=user_id,
            attachment_id=attachment_id,
            prompt=prompt,
            error_code=failure.kind.value if failure else "",
            error_message=failure.message if failure else "",
            reference_count=reference_count,
            save_mode=getattr(save_mode, "value", str(save_mode)),
        )

"""Tests for the edit orchestrator and edit-buffer commits

Run with pytest from project root:
    pytest tests/test_edit.py -v
"""

from io import BytesIO
from unittest.mock import patch

import pytest
from PIL import Image

from managers.attachment_metadata import META_KEY
from models.failure import Failure, FailureKind, StorageError
from models.images import BinaryImage
from models.requests import EditRequest, OutputFormat, Provider, SaveMode
from models.results import BufferResult, EditResult


@pytest.fixture
def original(store, make_png):
    """Attachment 1: a 40x40 PNG"""
    image = BinaryImage(data=make_png(40, 40, color=(10, 200, 10)), mime="image/png", width=40, height=40)
    saved = store.save(image, "original", "Original", {
        "action": "generate",
        "provider": "gemini",
        "model": "gemini-2.5-flash-image-preview",
        "prompt": "a green square",
        "timestamp": 1_699_999_000,
        "user_id": 1,
    })
    return saved.id, image


def _edit(attachment_id, save_mode=SaveMode.NEW_COPY, **kwargs):
    return EditRequest(attachment_id=attachment_id, prompt=kwargs.pop("prompt", "add a hat"),
                       provider=kwargs.pop("provider", Provider.GEMINI), save_mode=save_mode, **kwargs)


def _size(data):
    return Image.open(BytesIO(data)).size


class TestEditSaveModes:
    """Tests for new-copy, replace and buffer edits"""

    def test_new_copy_leaves_original_untouched(self, editing, transport, respond, make_png, store, ledger, original):
        original_id, original_image = original
        transport.queue(respond.gemini(make_png(64, 64)))

        result = editing.edit(_edit(original_id), user_id=1)

        assert isinstance(result, EditResult)
        assert result.attachment_id == 2
        assert result.derived_from_id == original_id
        assert result.mode == "save_as"
        assert (result.width, result.height) == (40, 40)
        assert result.filename.startswith("add-a-hat-")
        assert store.load_bytes(original_id) == original_image.data
        assert store.get_meta(2)[META_KEY]["derived_from"] == original_id
        assert [event.mode for event in ledger.list(2)] == ["save_as"]

    def test_new_copy_output_format(self, editing, transport, respond, make_png, original):
        transport.queue(respond.gemini(make_png(64, 64)))
        result = editing.edit(_edit(original[0], output_format=OutputFormat.WEBP), user_id=1)
        assert result.mime == "image/webp"

    def test_new_copy_uses_given_filename_and_title(self, editing, transport, respond, make_png, store, original):
        transport.queue(respond.gemini(make_png()))
        result = editing.edit(_edit(original[0], filename="Hat Version", title="With hat"), user_id=1)
        assert result.filename == "hat-version.png"
        assert store.get_record(2)["title"] == "With hat"

    def test_replace_keeps_format_and_id(self, editing, transport, respond, make_png, store, ledger, original):
        original_id, original_image = original
        transport.queue(respond.gemini(make_png(64, 64, fmt="WEBP")))

        result = editing.edit(_edit(original_id, SaveMode.REPLACE_ORIGINAL, output_format=OutputFormat.JPEG), user_id=1)

        assert result.attachment_id == original_id
        assert result.mode == "replace"
        assert result.mime == "image/png"
        assert store.load_bytes(original_id) != original_image.data
        assert _size(store.load_bytes(original_id)) == (40, 40)
        assert store.get_meta(original_id)[META_KEY]["last"]["mode"] == "replace"
        assert ledger.list(original_id)[-1].mode == "replace"

    def test_replace_forbidden_before_provider_call(self, editing, settings, transport, original):
        settings.set("permissions.allow_replace_original", False)
        result = editing.edit(_edit(original[0], SaveMode.REPLACE_ORIGINAL), user_id=1)
        assert result.kind is FailureKind.FORBIDDEN
        assert transport.calls == []

    def test_buffer_persists_nothing(self, editing, transport, respond, make_png, store, ledger, original):
        original_id, original_image = original
        record_before = store.get_record(original_id)
        transport.queue(respond.gemini(make_png(64, 64)))

        result = editing.edit(_edit(original_id, SaveMode.BUFFER_ONLY), user_id=1)

        assert isinstance(result, BufferResult)
        assert len(result.buffer_key) == 32
        assert (result.width, result.height) == (40, 40)
        assert result.prompt == "add a hat"
        assert not store.exists(2)
        assert store.get_record(original_id) == record_before
        assert store.load_bytes(original_id) == original_image.data
        assert ledger.list(original_id) == []

    def test_buffer_twice_gives_independent_entries(self, editing, transport, respond, make_png, original):
        transport.queue(respond.gemini(make_png(64, 64)), respond.gemini(make_png(64, 64)))

        first = editing.edit(_edit(original[0], SaveMode.BUFFER_ONLY), user_id=1)
        second = editing.edit(_edit(original[0], SaveMode.BUFFER_ONLY), user_id=1)

        assert first.buffer_key != second.buffer_key
        assert (first.width, first.height, first.mime) == (second.width, second.height, second.mime)
        assert not isinstance(editing.read_buffer(first.buffer_key, 1), Failure)
        assert not isinstance(editing.read_buffer(second.buffer_key, 1), Failure)

    def test_chained_edit_uses_buffered_bytes(self, editing, transport, respond, make_png, original):
        transport.queue(respond.gemini(make_png(64, 64, color=(1, 2, 3))))
        buffered = editing.edit(_edit(original[0], SaveMode.BUFFER_ONLY), user_id=1)
        _, buffered_image = editing.read_buffer(buffered.buffer_key, 1)

        transport.queue(respond.gemini(make_png(64, 64)))
        editing.edit(_edit(original[0], SaveMode.BUFFER_ONLY, base_buffer_key=buffered.buffer_key, prompt="now a scarf"), user_id=1)

        parts = transport.calls[1]["json"]["contents"][0]["parts"]
        assert parts[-1]["inline_data"]["data"] == buffered_image.b64()

    def test_buffer_key_for_other_attachment(self, editing, transport, respond, make_png, store, original):
        transport.queue(respond.gemini(make_png()))
        buffered = editing.edit(_edit(original[0], SaveMode.BUFFER_ONLY), user_id=1)
        other = store.save(BinaryImage(make_png(), "image/png", 64, 64), "other", "Other", {"action": "generate"})

        result = editing.edit(_edit(other.id, base_buffer_key=buffered.buffer_key), user_id=1)

        assert result.kind is FailureKind.NOT_FOUND
        assert len(transport.calls) == 1


class TestEditFailures:
    """Tests for edit preconditions"""

    def test_missing_attachment(self, editing, transport):
        result = editing.edit(_edit(99), user_id=1)
        assert result.kind is FailureKind.NOT_FOUND
        assert transport.calls == []

    def test_edit_forbidden(self, editing, settings, transport, original):
        settings.set("permissions.allow_edit", False)
        assert editing.edit(_edit(original[0]), user_id=1).kind is FailureKind.FORBIDDEN

    def test_model_not_edit_capable(self, editing, transport, original):
        result = editing.edit(_edit(original[0], provider=Provider.REPLICATE, model="black-forest-labs/flux-1.1-pro"), user_id=1)
        assert result.kind is FailureKind.MODEL_UNSUPPORTED
        assert transport.calls == []

    def test_provider_failure_persists_nothing(self, editing, transport, respond, store, original):
        transport.queue(respond.json({"error": {"message": "upstream"}}, status=500))
        result = editing.edit(_edit(original[0]), user_id=1)
        assert result.kind is FailureKind.PROVIDER_ERROR
        assert not store.exists(2)


class TestBufferCommit:
    """Tests for commit, discard and read of buffered edits"""

    def _buffer(self, editing, transport, respond, make_png, attachment_id):
        transport.queue(respond.gemini(make_png(64, 64)))
        return editing.edit(_edit(attachment_id, SaveMode.BUFFER_ONLY), user_id=1)

    def test_commit_new_copy_once(self, editing, transport, respond, make_png, store, ledger, edit_buffer, original):
        buffered = self._buffer(editing, transport, respond, make_png, original[0])

        result = editing.commit(buffered.buffer_key, user_id=1, save_mode=SaveMode.NEW_COPY)

        assert isinstance(result, EditResult)
        assert result.attachment_id == 2
        assert result.derived_from_id == original[0]
        assert store.get_meta(2)[META_KEY]["last"]["mode"] == "save_as"
        events = ledger.list(2)
        assert [(event.mode, event.prompt, event.derived_from) for event in events] == [("save_as", "add a hat", original[0])]
        assert ledger.list(original[0]) == []
        assert list(edit_buffer.cache_dir.iterdir()) == []

        again = editing.commit(buffered.buffer_key, user_id=1, save_mode=SaveMode.NEW_COPY)
        assert again.kind is FailureKind.NOT_FOUND
        assert not store.exists(3)

    def test_commit_replace(self, editing, transport, respond, make_png, store, original):
        buffered = self._buffer(editing, transport, respond, make_png, original[0])
        result = editing.commit(buffered.buffer_key, user_id=1, save_mode=SaveMode.REPLACE_ORIGINAL)
        assert result.attachment_id == original[0]
        assert result.mode == "replace"
        assert not store.exists(2)

    def test_commit_by_other_user(self, editing, transport, respond, make_png, original):
        buffered = self._buffer(editing, transport, respond, make_png, original[0])
        result = editing.commit(buffered.buffer_key, user_id=2)
        assert result.kind is FailureKind.NOT_FOUND

    def test_commit_failure_keeps_buffer(self, editing, transport, respond, make_png, store, original):
        buffered = self._buffer(editing, transport, respond, make_png, original[0])

        with patch.object(store, "save", side_effect=StorageError("disk full")):
            failed = editing.commit(buffered.buffer_key, user_id=1)
        assert failed.kind is FailureKind.STORAGE_ERROR

        retried = editing.commit(buffered.buffer_key, user_id=1)
        assert isinstance(retried, EditResult)

    def test_replace_commit_with_unsupported_original_format(self, editing, transport, respond, make_png, store, original):
        original_id, original_image = original
        buffered = self._buffer(editing, transport, respond, make_png, original_id)

        with patch.object(store, "get_mime", return_value="image/gif"):
            result = editing.commit(buffered.buffer_key, user_id=1, save_mode=SaveMode.REPLACE_ORIGINAL)

        assert result.kind is FailureKind.INVALID_INPUT
        assert store.load_bytes(original_id) == original_image.data
        assert not isinstance(editing.read_buffer(buffered.buffer_key, 1), Failure)

    def test_commit_rejects_buffer_mode(self, editing, transport, respond, make_png, original):
        buffered = self._buffer(editing, transport, respond, make_png, original[0])
        result = editing.commit(buffered.buffer_key, user_id=1, save_mode=SaveMode.BUFFER_ONLY)
        assert result.kind is FailureKind.INVALID_INPUT
        assert not isinstance(editing.read_buffer(buffered.buffer_key, 1), Failure)

    def test_discard_twice(self, editing, transport, respond, make_png, original):
        buffered = self._buffer(editing, transport, respond, make_png, original[0])
        assert editing.discard(buffered.buffer_key, 1) is True
        assert editing.discard(buffered.buffer_key, 1).kind is FailureKind.NOT_FOUND
        assert editing.commit(buffered.buffer_key, 1).kind is FailureKind.NOT_FOUND

    def test_read_buffer(self, editing, transport, respond, make_png, original):
        buffered = self._buffer(editing, transport, respond, make_png, original[0])
        info, image = editing.read_buffer(buffered.buffer_key, 1)
        assert info == buffered
        assert _size(image.data) == (40, 40)

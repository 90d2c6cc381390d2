"""Tests for the edit buffer lifecycle

Run with pytest from project root:
    pytest tests/test_edit_buffer.py -v
"""

from datetime import datetime, timedelta

from managers.edit_buffer import KEY_REGEX, EditBuffer
from models.images import BinaryImage


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def _image(make_png):
    return BinaryImage(data=make_png(30, 20), mime="image/png", width=30, height=20)


def _context():
    return {"provider": "openai", "model": "gpt-image-1", "prompt": "add a hat", "action": "edit", "mode": "buffer", "user_id": 1}


class TestEditBuffer:
    """Tests for store, read, claim, discard and expiry"""

    def test_store_writes_file(self, tmp_path, make_png):
        buffer = EditBuffer(tmp_path / "buf")
        entry = buffer.store(_image(make_png), owner_id=1, attachment_id=7, context=_context())

        assert KEY_REGEX.match(entry.key)
        assert entry.path.name == f"ai-edit-7-{entry.key}.png"
        assert entry.path.read_bytes() == _image(make_png).data
        assert entry.context["provider"] == "openai"

    def test_load_returns_bytes(self, tmp_path, make_png):
        buffer = EditBuffer(tmp_path / "buf")
        entry = buffer.store(_image(make_png), 1, 7, _context())

        loaded_entry, image = buffer.load(entry.key, 1)
        assert loaded_entry is entry
        assert (image.width, image.height, image.mime) == (30, 20, "image/png")

    def test_repeated_reads_are_identical(self, tmp_path, make_png):
        buffer = EditBuffer(tmp_path / "buf")
        entry = buffer.store(_image(make_png), 1, 7, _context())

        _, first = buffer.load(entry.key, 1)
        _, second = buffer.load(entry.key, 1)

        assert first == second
        assert first.data == _image(make_png).data
        assert (second.width, second.height, second.mime) == (30, 20, "image/png")

    def test_other_owner_sees_nothing(self, tmp_path, make_png):
        buffer = EditBuffer(tmp_path / "buf")
        entry = buffer.store(_image(make_png), 1, 7, _context())

        assert buffer.get(entry.key, 2) is None
        assert buffer.discard(entry.key, 2) is False
        assert buffer.get(entry.key, 1) is not None

    def test_malformed_key(self, tmp_path):
        buffer = EditBuffer(tmp_path / "buf")
        assert buffer.get("../../etc/passwd", 1) is None

    def test_read_refreshes_ttl(self, tmp_path, make_png):
        clock = FakeClock()
        buffer = EditBuffer(tmp_path / "buf", ttl_seconds=100, clock=clock)
        entry = buffer.store(_image(make_png), 1, 7, _context())

        clock.advance(90)
        assert buffer.get(entry.key, 1) is not None
        clock.advance(90)
        assert buffer.get(entry.key, 1) is not None

    def test_expired_entry_is_gone(self, tmp_path, make_png):
        clock = FakeClock()
        buffer = EditBuffer(tmp_path / "buf", ttl_seconds=100, clock=clock)
        entry = buffer.store(_image(make_png), 1, 7, _context())

        clock.advance(101)
        assert buffer.get(entry.key, 1) is None
        assert not entry.path.exists()

    def test_claim_is_exclusive(self, tmp_path, make_png):
        buffer = EditBuffer(tmp_path / "buf")
        entry = buffer.store(_image(make_png), 1, 7, _context())

        assert buffer.claim(entry.key, 1) is not None
        assert buffer.claim(entry.key, 1) is None
        # Bytes stay until release
        assert entry.path.exists()

    def test_restore_after_claim(self, tmp_path, make_png):
        buffer = EditBuffer(tmp_path / "buf")
        entry = buffer.store(_image(make_png), 1, 7, _context())
        claimed, _ = buffer.claim(entry.key, 1)

        buffer.restore(claimed)
        assert buffer.get(entry.key, 1) is not None

    def test_release_deletes_file(self, tmp_path, make_png):
        buffer = EditBuffer(tmp_path / "buf")
        entry = buffer.store(_image(make_png), 1, 7, _context())
        claimed, _ = buffer.claim(entry.key, 1)

        buffer.release(claimed)
        assert not entry.path.exists()

    def test_discard_twice(self, tmp_path, make_png):
        buffer = EditBuffer(tmp_path / "buf")
        entry = buffer.store(_image(make_png), 1, 7, _context())

        assert buffer.discard(entry.key, 1) is True
        assert buffer.discard(entry.key, 1) is False
        assert not entry.path.exists()

    def test_missing_file_drops_entry(self, tmp_path, make_png):
        buffer = EditBuffer(tmp_path / "buf")
        entry = buffer.store(_image(make_png), 1, 7, _context())
        entry.path.unlink()

        assert buffer.load(entry.key, 1) is None

    def test_cleanup_expired(self, tmp_path, make_png):
        clock = FakeClock()
        buffer = EditBuffer(tmp_path / "buf", ttl_seconds=10, clock=clock)
        old = buffer.store(_image(make_png), 1, 7, _context())
        clock.advance(11)
        fresh = buffer.store(_image(make_png), 1, 8, _context())

        assert buffer.cleanup_expired() == 1
        assert not old.path.exists()
        assert buffer.get(fresh.key, 1) is not None

    def test_remove_orphans_keeps_live_and_claimed(self, tmp_path, make_png):
        earlier = EditBuffer(tmp_path / "buf")
        leftover = earlier.store(_image(make_png), 1, 7, _context())

        buffer = EditBuffer(tmp_path / "buf")
        live = buffer.store(_image(make_png), 1, 8, _context())
        in_commit = buffer.store(_image(make_png), 1, 9, _context())
        buffer.claim(in_commit.key, 1)

        assert buffer.remove_orphans() == 1
        assert not leftover.path.exists()
        assert live.path.exists()
        assert in_commit.path.exists()

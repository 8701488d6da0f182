"""Unit tests for the local attachment store."""

import time
from urllib.parse import parse_qs, urlparse

import pytest

from promptlib.core.attachment_store import LocalAttachmentStore, normalize_key
from promptlib.core.errors import AttachmentIOError


@pytest.fixture
def local_store(temp_dir) -> LocalAttachmentStore:
    return LocalAttachmentStore(temp_dir / "objects", "secret", url_prefix="/attachments/")


class TestNormalizeKey:
    """Tests for object key validation."""

    def test_plain_key(self):
        assert normalize_key("output/a.png") == "output/a.png"

    @pytest.mark.parametrize(
        "key",
        ["", "/etc/passwd", "../escape.png", "output/../../x.png", "output\\a.png", "output//a.png"],
    )
    def test_unsafe_keys_rejected(self, key):
        """Absolute, parent, empty and backslash keys are rejected."""
        with pytest.raises(AttachmentIOError):
            normalize_key(key)


class TestPutAndDelete:
    """Tests for storing and removing objects."""

    def test_put_writes_file(self, local_store):
        path = local_store.put("output/a.png", b"data", "image/png")
        assert path == "output/a.png"
        assert (local_store.root / "output" / "a.png").read_bytes() == b"data"
        assert local_store.exists(path)

    def test_put_refuses_overwrite(self, local_store):
        """An existing object is never overwritten."""
        local_store.put("output/a.png", b"one", "image/png")
        with pytest.raises(AttachmentIOError, match="already exists"):
            local_store.put("output/a.png", b"two", "image/png")
        assert (local_store.root / "output" / "a.png").read_bytes() == b"one"

    def test_put_leaves_no_partial_file(self, local_store):
        """Only the final object remains after a put."""
        local_store.put("reference/b.jpg", b"x", "image/jpeg")
        assert [p.name for p in (local_store.root / "reference").iterdir()] == ["b.jpg"]

    def test_delete_removes_file(self, local_store):
        local_store.put("output/a.png", b"data", "image/png")
        local_store.delete("output/a.png")
        assert not local_store.exists("output/a.png")

    def test_delete_missing_is_success(self, local_store):
        """Deleting an absent object is idempotent."""
        local_store.delete("output/never.png")
        local_store.delete("output/never.png")

    def test_exists_with_unsafe_key(self, local_store):
        assert local_store.exists("../x") is False

    def test_open_missing(self, local_store):
        with pytest.raises(AttachmentIOError, match="not found"):
            local_store.open("output/missing.png")


class TestSignedUrls:
    """Tests for signed read URL issuance and verification."""

    def _parse(self, url: str) -> tuple[str, int, str]:
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        return parsed.path, int(query["expires"][0]), query["signature"][0]

    def test_url_round_trip(self, local_store):
        """An issued URL verifies for its own path."""
        local_store.put("output/a.png", b"data", "image/png")
        url = local_store.signed_read_url("output/a.png", 60)

        path, expires, signature = self._parse(url)
        assert path == "/attachments/output/a.png"
        assert expires >= int(time.time()) + 59
        assert local_store.verify_signature("output/a.png", expires, signature)

    def test_signature_bound_to_path(self, local_store):
        local_store.put("output/a.png", b"data", "image/png")
        _, expires, signature = self._parse(local_store.signed_read_url("output/a.png", 60))
        assert not local_store.verify_signature("output/b.png", expires, signature)

    def test_signature_bound_to_expiry(self, local_store):
        local_store.put("output/a.png", b"data", "image/png")
        _, expires, signature = self._parse(local_store.signed_read_url("output/a.png", 60))
        assert not local_store.verify_signature("output/a.png", expires + 1, signature)

    def test_expired_signature_rejected(self, local_store):
        local_store.put("output/a.png", b"data", "image/png")
        expires = int(time.time()) - 10
        signature = local_store._signature("output/a.png", expires)
        assert not local_store.verify_signature("output/a.png", expires, signature)

    def test_other_secret_rejected(self, local_store, temp_dir):
        """A URL signed with another secret does not verify."""
        other = LocalAttachmentStore(local_store.root, "different")
        local_store.put("output/a.png", b"data", "image/png")
        _, expires, signature = self._parse(other.signed_read_url("output/a.png", 60))
        assert not local_store.verify_signature("output/a.png", expires, signature)

    def test_missing_object_cannot_be_signed(self, local_store):
        with pytest.raises(AttachmentIOError):
            local_store.signed_read_url("output/missing.png", 60)

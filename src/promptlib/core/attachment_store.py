"""Binary storage for card images.

The lifecycle engine depends only on the :class:`AttachmentStore` contract:

- ``put`` stores bytes under a key and returns the stored path
- ``delete`` removes an object; an already-absent object is success
- ``signed_read_url`` issues a time-limited read URL for an existing object

:class:`LocalAttachmentStore` implements the contract on the local file
system.  Read URLs are signed with HMAC-SHA256 over ``path`` and the expiry
timestamp, and are verified by the route that serves ``/attachments/...``.

No retries are attempted here.  Every ``OSError`` is reported as
:class:`~promptlib.core.errors.AttachmentIOError`.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from urllib.parse import quote, urlencode

from .errors import AttachmentIOError

logger = logging.getLogger(__name__)


class AttachmentStore(ABC):
    """Contract for the store that holds card images."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return the stored path.

        Raises:
            AttachmentIOError: If the object cannot be written
        """

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete the object at ``path``.  Missing objects are not an error.

        Raises:
            AttachmentIOError: If the object exists but cannot be removed
        """

    @abstractmethod
    def signed_read_url(self, path: str, ttl_seconds: int) -> str:
        """Return a URL granting read access to ``path`` for ``ttl_seconds``.

        Raises:
            AttachmentIOError: If the object does not exist
        """

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Return whether an object is stored at ``path``."""


def normalize_key(key: str) -> str:
    """Validate an object key and return it in canonical form.

    Keys are relative POSIX paths.  Absolute paths, parent references and
    backslashes are rejected so an object can never escape the store root.

    Raises:
        AttachmentIOError: If the key is unsafe
    """
    if not key or "\\" in key or key.startswith("/"):
        raise AttachmentIOError(f"Invalid attachment key: {key!r}", path=key)

    parts = key.split("/")
    if any(part in ("..", ".", "") for part in parts):
        raise AttachmentIOError(f"Invalid attachment key: {key!r}", path=key)

    return str(PurePosixPath(*parts))


class LocalAttachmentStore(AttachmentStore):
    """Attachment store backed by a directory on the local file system.

    Args:
        root: Directory that holds stored objects
        signing_secret: HMAC key used to sign read URLs
        url_prefix: URL path under which objects are served
    """

    def __init__(self, root: Path, signing_secret: str, url_prefix: str = "/attachments") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._secret = signing_secret.encode("utf-8")
        self.url_prefix = url_prefix.rstrip("/")
        logger.info(f"Initialized attachment store at {self.root}")

    def _resolve(self, path: str) -> Path:
        return self.root / normalize_key(path)

    def put(self, key: str, data: bytes, content_type: str) -> str:
        normalized = normalize_key(key)
        target = self.root / normalized

        # Stored objects are immutable; a key is written at most once.
        if target.exists():
            raise AttachmentIOError(f"Attachment already exists: {normalized}", path=normalized)

        tmp_path = target.with_name(f".{target.name}.part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as handle:
                handle.write(data)
            os.replace(tmp_path, target)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise AttachmentIOError(f"Failed to store {normalized}: {e}", path=normalized) from e

        logger.debug(f"Stored {normalized} ({len(data)} bytes, {content_type})")
        return normalized

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise AttachmentIOError(f"Failed to delete {path}: {e}", path=path) from e
        logger.debug(f"Deleted {path}")

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except AttachmentIOError:
            return False

    def open(self, path: str) -> Path:
        """Return the file system path of a stored object.

        Raises:
            AttachmentIOError: If the object does not exist
        """
        target = self._resolve(path)
        if not target.is_file():
            raise AttachmentIOError(f"Attachment not found: {path}", path=path)
        return target

    def _signature(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def signed_read_url(self, path: str, ttl_seconds: int) -> str:
        normalized = normalize_key(path)
        if not self.exists(normalized):
            raise AttachmentIOError(f"Attachment not found: {normalized}", path=normalized)

        expires = int(time.time()) + ttl_seconds
        query = urlencode({"expires": expires, "signature": self._signature(normalized, expires)})
        return f"{self.url_prefix}/{quote(normalized)}?{query}"

    def verify_signature(self, path: str, expires: int, signature: str) -> bool:
        """Check a read URL's signature and expiry.

        Args:
            path: Object path from the URL
            expires: Expiry timestamp from the URL
            signature: Hex signature from the URL

        Returns:
            True if the signature matches and has not expired
        """
        if expires < int(time.time()):
            return False
        try:
            normalized = normalize_key(path)
        except AttachmentIOError:
            return False
        return hmac.compare_digest(self._signature(normalized, expires), signature)

"""Background deletion of attachments that no record references any more.

Superseded and retired images are removed after the record write that
stopped referencing them.  Those deletions are fire-and-forget: they run on
a small thread pool, never delay the caller, and only log on failure.  An
object whose deletion fails stays behind as an orphan for an out-of-band
sweep to collect.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait

from .attachment_store import AttachmentStore

logger = logging.getLogger(__name__)


def delete_quietly(store: AttachmentStore, path: str, reason: str) -> bool:
    """Delete ``path`` from ``store``, logging instead of raising on failure.

    Args:
        store: Attachment store holding the object
        path: Object to delete
        reason: Short context for the log line (e.g. ``"superseded"``)

    Returns:
        True if the object was deleted (or already absent)
    """
    try:
        store.delete(path)
    except Exception as e:
        logger.error(f"Failed to delete {reason} attachment {path}: {e}")
        return False
    logger.info(f"Deleted {reason} attachment {path}")
    return True


class CleanupQueue:
    """Run attachment deletions in the background.

    Args:
        store: Attachment store to delete from
        max_workers: Number of deletion threads
    """

    def __init__(self, store: AttachmentStore, max_workers: int = 4) -> None:
        self.store = store
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="promptlib-cleanup"
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, paths: Iterable[str], reason: str) -> list[Future]:
        """Queue deletion of ``paths``.  Returns immediately."""
        futures = []
        for path in paths:
            future = self._executor.submit(delete_quietly, self.store, path, reason)
            with self._lock:
                self._pending.add(future)
            future.add_done_callback(self._discard)
            futures.append(future)
        return futures

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def join(self, timeout: float | None = None) -> None:
        """Block until every queued deletion has finished."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        """Finish queued deletions and stop the worker threads."""
        self._executor.shutdown(wait=True)

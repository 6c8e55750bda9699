"""Process-wide registry of in-flight generations, one per thread."""
import threading
from typing import Dict, Optional, List
from uuid import UUID
import logging

from exceptions import CancellationError

logger = logging.getLogger(__name__)


class CancellationHandle:
    """Cooperative cancellation signal for a single generation."""

    def __init__(self, thread_id: UUID):
        self.thread_id = thread_id
        self.reason: Optional[str] = None
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError(self.reason or "cancelled")


class CancellationRegistry:
    """
    Maps thread IDs to the handle of their in-flight generation.

    Starting a generation pre-empts the previous one of the same thread
    instead of rejecting the new request. All mutations happen under a
    lock, so a replace-or-insert never exposes a half-updated entry.
    """

    def __init__(self):
        self._handles: Dict[UUID, CancellationHandle] = {}
        self._lock = threading.Lock()

    def begin_generation(self, thread_id: UUID) -> CancellationHandle:
        """Register a new generation, cancelling and evicting any previous one."""
        handle = CancellationHandle(thread_id)

        with self._lock:
            previous = self._handles.pop(thread_id, None)
            if previous is not None:
                previous.cancel("preempted")
            self._handles[thread_id] = handle

        if previous is not None:
            logger.info(f"Pre-empted in-flight generation for thread {thread_id}")

        return handle

    def cancel(self, thread_id: UUID) -> bool:
        """Signal and remove the thread's current handle. Returns False if none was live."""
        with self._lock:
            handle = self._handles.pop(thread_id, None)

        if handle is None:
            return False

        handle.cancel("stopped")
        logger.info(f"Stopped generation for thread {thread_id}")
        return True

    def end_generation(self, thread_id: UUID, handle: Optional[CancellationHandle] = None) -> None:
        """
        Remove the thread's handle after a generation settles.

        When ``handle`` is given only that exact handle is removed, so a
        finishing generation never evicts the one that pre-empted it.
        """
        with self._lock:
            current = self._handles.get(thread_id)
            if current is not None and (handle is None or current is handle):
                del self._handles[thread_id]

    def get(self, thread_id: UUID) -> Optional[CancellationHandle]:
        with self._lock:
            return self._handles.get(thread_id)

    def is_generating(self, thread_id: UUID) -> bool:
        return self.get(thread_id) is not None

    def active_threads(self) -> List[UUID]:
        with self._lock:
            return list(self._handles)


cancellation_registry = CancellationRegistry()

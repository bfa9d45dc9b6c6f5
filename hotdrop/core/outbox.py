"""Per-client queues of messages waiting for delivery."""

import logging
import threading
from collections import deque
from typing import Deque, Dict, List

logger = logging.getLogger(__name__)


class _Queue:
    """One client's pending messages guarded by its own lock."""

    def __init__(self):
        self.lock = threading.Lock()
        self.messages: Deque[str] = deque()


class Outbox:
    """
    Unbounded FIFO queues of pending text messages, one per identity.

    Queues are created lazily and never removed. Each queue has its own lock,
    so operations on different identities never block each other.
    """

    def __init__(self):
        self._queues: Dict[str, _Queue] = {}

    def _queue_for(self, identity: str) -> _Queue:
        queue = self._queues.get(identity)
        if queue is None:
            queue = self._queues.setdefault(identity, _Queue())
        return queue

    def enqueue(self, identity: str, text: str) -> int:
        """
        Append a message to the identity's queue.

        Args:
            identity: Recipient identity
            text: Message text

        Returns:
            Queue size after the append
        """
        queue = self._queue_for(identity)
        with queue.lock:
            queue.messages.append(text)
            size = len(queue.messages)
        logger.debug(f"queued to {identity}: {text} (queue size now {size})")
        return size

    def drain(self, identity: str) -> List[str]:
        """Return every queued message in FIFO order and empty the queue."""
        queue = self._queues.get(identity)
        if queue is None:
            return []
        with queue.lock:
            pending = list(queue.messages)
            queue.messages.clear()
        return pending

    def size_of(self, identity: str) -> int:
        queue = self._queues.get(identity)
        if queue is None:
            return 0
        with queue.lock:
            return len(queue.messages)

    def sizes(self) -> Dict[str, int]:
        """Queue length for every identity that has ever had a queue."""
        return {identity: self.size_of(identity) for identity in list(self._queues)}

"""Buffer for tile requests that arrive before the first surface."""
from collections import deque
from typing import Callable

from .errors import QueueDrainedError


class PendingTileQueue:
    """FIFO of requests waiting for the source to become ready.

    The queue is drained exactly once. Pushing after the drain is a
    programming error: from then on requests go straight to the
    extractor. :meth:`reset` makes the queue usable again for a new
    source.
    """

    def __init__(self):
        self._items = deque()
        self._drained = False

    def __len__(self):
        return len(self._items)

    @property
    def drained(self) -> bool:
        return self._drained

    def push(self, request) -> None:
        if self._drained:
            raise QueueDrainedError("Queue already drained; handle the request directly")
        self._items.append(request)

    def drain_into(self, handler: Callable) -> int:
        """Hand every buffered request to ``handler`` in arrival order.

        Returns
        -------
        int
            Number of requests handed over.
        """
        if self._drained:
            raise QueueDrainedError("Queue already drained")
        self._drained = True
        count = 0
        while self._items:
            handler(self._items.popleft())
            count += 1
        return count

    def clear(self) -> list:
        """Drop buffered requests without draining, returning them."""
        items = list(self._items)
        self._items.clear()
        return items

    def reset(self) -> list:
        """Empty the queue and mark it un-drained, returning dropped requests."""
        items = self.clear()
        self._drained = False
        return items

"""
Batch Gate.

Decides whether the sequencer may accept a new batch. The gate is shut while
any message is un-included and still inside its window
(height <= deadline). A message that expired without being included no
longer blocks.

That last rule means a sequencer that simply waits out a deadline can proceed
without ever including the message. It is kept as-is; block_on_expired=True
switches to the stricter rule where every un-included message blocks.

The gate keeps an incremental index of blocking messages instead of scanning
the whole registry on every evaluation:
- submit adds the message and pushes (deadline, id) on a min-heap
- inclusion removes it
- evaluation at height h pops heap items with deadline < h and drops the
  message if it is still un-included with that same deadline
Heap items left behind by a resubmission no longer match the entry's
deadline and are skipped when popped.
"""

import heapq
import logging
from typing import Any, Callable, List, Optional, Set, Tuple

from inclusion_enforcer.core.errors import UnprocessedMessages
from inclusion_enforcer.core.message_registry import MessageEntry, MessageRegistry

logger = logging.getLogger(__name__)


class BatchGate:
    """May-proceed predicate over a message registry."""

    def __init__(self, registry: MessageRegistry, block_on_expired: bool = False):
        self.registry = registry
        self.block_on_expired = block_on_expired
        self._blocking: Set[str] = set()
        self._expiry_heap: List[Tuple[int, str]] = []
        self._observed_height: Optional[int] = None
        registry.add_listener(self)
        self.rebuild()

    # ------------------------------------------------------------------
    # Registry listener
    # ------------------------------------------------------------------

    def on_submitted(self, entry: MessageEntry) -> None:
        self._blocking.add(entry.message_id)
        if not self.block_on_expired:
            heapq.heappush(self._expiry_heap, (entry.deadline, entry.message_id))

    def on_included(self, entry: MessageEntry) -> None:
        self._blocking.discard(entry.message_id)

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def rebuild(self, height: Optional[int] = None) -> None:
        """Recompute the index from a full registry scan."""
        self._blocking = set()
        self._expiry_heap = []
        for entry in self.registry.entries():
            if entry.included:
                continue
            if height is not None and not self.block_on_expired and height > entry.deadline:
                continue
            self._blocking.add(entry.message_id)
            if not self.block_on_expired:
                self._expiry_heap.append((entry.deadline, entry.message_id))
        heapq.heapify(self._expiry_heap)
        self._observed_height = height

    def _observe(self, height: int) -> None:
        """Drop messages whose window closed before height."""
        if self.block_on_expired:
            return
        if self._observed_height is not None and height < self._observed_height:
            logger.debug("Height moved back %d -> %d, rebuilding gate index",
                         self._observed_height, height)
            self.rebuild(height)
            return
        self._observed_height = height

        while self._expiry_heap and self._expiry_heap[0][0] < height:
            deadline, message_id = heapq.heappop(self._expiry_heap)
            entry = self.registry.get(message_id)
            if entry is None or entry.included or entry.deadline != deadline:
                continue
            if message_id in self._blocking:
                logger.debug("Message %s expired at deadline %d (height %d)",
                             message_id, deadline, height)
                self._blocking.discard(message_id)

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def may_proceed(self, height: int) -> bool:
        self._observe(height)
        return not self._blocking

    def blocking_messages(self, height: int) -> List[str]:
        """Identifiers currently holding the gate shut, in insertion order."""
        self._observe(height)
        return [e.message_id for e in self.registry.entries() if e.message_id in self._blocking]

    def blocking_count(self, height: int) -> int:
        self._observe(height)
        return len(self._blocking)

    def scan_may_proceed(self, height: int) -> bool:
        """Linear scan over every entry. Same answer as may_proceed."""
        for entry in self.registry.entries():
            if entry.included:
                continue
            if self.block_on_expired or height <= entry.deadline:
                return False
        return True

    def reject_new_batch(self, height: int) -> bool:
        """Negation of may_proceed, for monitoring. Safe to poll."""
        return not self.may_proceed(height)

    def process_new_batch(
        self,
        height: int,
        processor: Optional[Callable[..., Any]] = None,
        *args,
        **kwargs,
    ) -> Any:
        """
        Hand the batch to processor if the gate is open.

        Raises:
            UnprocessedMessages: If any message is blocking
        """
        if not self.may_proceed(height):
            blocking = self.blocking_messages(height)
            logger.warning("Batch rejected at height %d: %d message(s) pending",
                           height, len(blocking))
            raise UnprocessedMessages(height, blocking)
        if processor is None:
            return None
        return processor(*args, **kwargs)

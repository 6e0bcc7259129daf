"""
Pending/active bookkeeping for the executor.

The queue itself never starts anything; ExecutorManager drives it. All
methods are synchronous and are only called from the event loop thread, so
each one is atomic with respect to the others.
"""

import logging
from collections import deque
from typing import Deque, List, Optional, Tuple

from executor.events import EventEmitter
from executor.models import ProcessKind, QueuePolicy, ScheduledProcess

logger = logging.getLogger(__name__)


class ExecutionQueue:
    """
    Ordered pending processes plus the single active slot.

    A process is either pending, active, or neither; never both and never
    twice.
    """

    def __init__(self):
        self._pending: Deque[ScheduledProcess] = deque()
        self._active: Optional[ScheduledProcess] = None
        self.changed = EventEmitter('queue_changed')

    @property
    def pending(self) -> Tuple[ScheduledProcess, ...]:
        """Snapshot of the pending processes, head first."""
        return tuple(self._pending)

    @property
    def active(self) -> Optional[ScheduledProcess]:
        return self._active

    def enqueue(
        self,
        process: ScheduledProcess,
        policy: QueuePolicy = QueuePolicy.APPEND
    ) -> List[ScheduledProcess]:
        """
        Add a process to the pending queue.

        Args:
            process: Process to add
            policy: APPEND (tail), PREPEND (head) or REPLACE (discard all
                pending first). The active process is never touched.

        Returns:
            Processes discarded by REPLACE (empty for other policies)

        Raises:
            ValueError: If the process is already pending or active
        """
        if process in self:
            raise ValueError(f"{process.label} is already queued or running")

        policy = QueuePolicy(policy)
        discarded: List[ScheduledProcess] = []

        if policy is QueuePolicy.APPEND:
            self._pending.append(process)
        elif policy is QueuePolicy.PREPEND:
            self._pending.appendleft(process)
        else:
            discarded = list(self._pending)
            self._pending.clear()
            self._pending.append(process)
            if discarded:
                logger.info(f"{process.label} Replaced {len(discarded)} pending process(es)")

        logger.debug(f"{process.label} Queued ({policy.value}), {len(self._pending)} pending")
        self.changed.fire(self)
        return discarded

    def clear_by_kind(self, kind: ProcessKind) -> List[ScheduledProcess]:
        """Remove every pending process of the given kind. Active is untouched."""
        removed = [p for p in self._pending if p.kind == kind]
        if not removed:
            return removed

        self._pending = deque(p for p in self._pending if p.kind != kind)
        logger.info(f"Removed {len(removed)} pending '{ProcessKind(kind).value}' process(es)")
        self.changed.fire(self)
        return removed

    def clear(self) -> List[ScheduledProcess]:
        """Drop every pending process."""
        removed = list(self._pending)
        self._pending.clear()
        if removed:
            self.changed.fire(self)
        return removed

    def take_next(self) -> Optional[ScheduledProcess]:
        """Pop the head of the queue, but only while nothing is active."""
        if self._active is not None or not self._pending:
            return None
        process = self._pending.popleft()
        self.changed.fire(self)
        return process

    def activate_next(self) -> Optional[ScheduledProcess]:
        """
        Pop the head of the queue and make it the active process.

        Listeners of `changed` already see the new active process, so a
        submission made from one of them only enqueues.

        Returns:
            The activated process, or None if a process is already active
            or nothing is pending
        """
        if self._active is not None or not self._pending:
            return None
        self._active = self._pending.popleft()
        self.changed.fire(self)
        return self._active

    def mark_active(self, process: ScheduledProcess):
        if self._active is not None:
            raise RuntimeError(
                f"Cannot activate {process.label}: {self._active.label} is still active"
            )
        self._active = process
        self.changed.fire(self)

    def clear_active(self):
        self._active = None
        self.changed.fire(self)

    def __contains__(self, process: ScheduledProcess) -> bool:
        if self._active is not None and self._active.process_id == process.process_id:
            return True
        return any(p.process_id == process.process_id for p in self._pending)

    def __len__(self):
        return len(self._pending)

    def __repr__(self):
        active = self._active.label if self._active else None
        return f"ExecutionQueue(active={active}, pending={len(self._pending)})"

"""
Deferred writes for storage failures.

A write that fails with PersistenceError is kept (bounded, oldest dropped
first) and replayed at the start of the next write attempt, never in a retry
loop of its own. The failure is still raised to the caller so it can report it.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from tabq.config import DEFERRED_WRITES_MAX
from tabq.errors import PersistenceError
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter

logger = get_logger(__name__)


@dataclass
class _PendingWrite:
    func: Callable[..., Any]
    args: tuple[Any, ...]
    kwargs: dict[str, Any] = field(default_factory=dict)

    def run(self) -> Any:
        return self.func(*self.args, **self.kwargs)


class DeferredWriteBuffer:
    def __init__(self, max_pending: int = DEFERRED_WRITES_MAX) -> None:
        self._pending: deque[_PendingWrite] = deque(maxlen=max_pending)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._pending)

    def _replay(self) -> None:
        """Run deferred writes in order; stop at the first one that still fails."""
        replayed = 0
        while self._pending:
            try:
                self._pending[0].run()
            except PersistenceError as e:
                logger.debug("Deferred write still failing: %s", e)
                raise
            self._pending.popleft()
            replayed += 1
        if replayed:
            counter("storage.deferred_replayed", replayed)
            logger.info("Replayed %d deferred writes", replayed)

    def write(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run a storage write, replaying earlier failures first.

        Raises:
            PersistenceError: If the write (or the replay before it) failed;
                the write is kept for the next attempt

        Side Effects:
            - Executes pending storage writes
            - Increments storage.deferred telemetry counter on failure
        """
        pending = _PendingWrite(func, args, kwargs)
        with self._lock:
            try:
                self._replay()
                return pending.run()
            except PersistenceError:
                if len(self._pending) == self._pending.maxlen:
                    counter("storage.deferred_dropped")
                self._pending.append(pending)
                counter("storage.deferred")
                raise

    def flush(self) -> int:
        """Replay pending writes now. Returns how many are still pending."""
        with self._lock:
            try:
                self._replay()
            except PersistenceError as e:
                logger.warning("Flush left %d writes pending: %s", len(self._pending), e)
            return len(self._pending)

"""
Circuit breaker for provider replies that cannot be parsed.

Parse outcomes are kept in a sliding window. When the invalid share reaches
the threshold the circuit opens and the remote stage is skipped. After the
cooldown a single probe request is let through: a valid reply closes the
circuit, an invalid one keeps it open for another cooldown.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable

from tabq.config import LLM_CIRCUIT_COOLDOWN, LLM_CIRCUIT_THRESHOLD, LLM_CIRCUIT_WINDOW
from tabq.observability.logging import get_logger
from tabq.observability.telemetry import counter

logger = get_logger(__name__)


class ReplyCircuitBreaker:
    def __init__(
        self,
        window: int = LLM_CIRCUIT_WINDOW,
        threshold: float = LLM_CIRCUIT_THRESHOLD,
        min_samples: int = 5,
        cooldown: float = LLM_CIRCUIT_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.min_samples = min_samples
        self.cooldown = cooldown
        self._clock = clock
        self._outcomes: deque[bool] = deque(maxlen=window)
        self._opened_at: float | None = None
        self._probing = False

    @property
    def is_open(self) -> bool:
        return self._opened_at is not None

    def invalid_rate(self) -> float:
        if not self._outcomes:
            return 0.0
        return self._outcomes.count(False) / len(self._outcomes)

    def record(self, valid: bool) -> None:
        """
        Record one parse outcome.

        Side Effects:
            - May open or close the circuit
            - Increments circuit.* telemetry counters on state changes
        """
        if self._probing:
            self._probing = False
            if valid:
                self.reset()
                counter("circuit.closed")
                logger.info("Reply circuit closed after a valid probe reply")
            else:
                self._opened_at = self._clock()
                counter("circuit.reopened")
            return

        self._outcomes.append(valid)
        if (
            self._opened_at is None
            and len(self._outcomes) >= self.min_samples
            and self.invalid_rate() >= self.threshold
        ):
            self._opened_at = self._clock()
            counter("circuit.opened")
            logger.warning("Reply circuit opened (invalid reply rate %.0f%%)", self.invalid_rate() * 100)

    def allow_request(self) -> bool:
        """
        Whether the remote stage may call the provider now.

        Once the cooldown has passed one probe is allowed; the cooldown restarts
        so a probe that never reports back does not block later probes.
        """
        if self._opened_at is None:
            return True
        if self._clock() - self._opened_at < self.cooldown:
            return False
        self._opened_at = self._clock()
        self._probing = True
        counter("circuit.probe")
        return True

    def reset(self) -> None:
        self._outcomes.clear()
        self._opened_at = None
        self._probing = False

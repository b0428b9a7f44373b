# storechat/ratelimit.py
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    just_blocked: bool = False
    minutes_left: int = 0


ALLOWED = RateDecision(allowed=True)


class RateLimiter:
    """
    Sliding window per customer. Going over `max_messages` inside the window
    blocks the customer for `block_seconds`.
    """

    def __init__(
        self,
        max_messages: int = 10,
        window_seconds: float = 60.0,
        block_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_messages = max_messages
        self.window_seconds = window_seconds
        self.block_seconds = block_seconds
        self._clock = clock
        self._hits: Dict[str, List[float]] = {}
        self._blocked_until: Dict[str, float] = {}

    def check(self, customer_id: str) -> RateDecision:
        now = self._clock()

        until = self._blocked_until.get(customer_id)
        if until is not None:
            if now < until:
                return RateDecision(allowed=False, minutes_left=math.ceil((until - now) / 60))
            del self._blocked_until[customer_id]
            logger.info("Customer unblocked: %s", customer_id)

        recent = [t for t in self._hits.get(customer_id, []) if now - t < self.window_seconds]
        if len(recent) >= self.max_messages:
            self._hits.pop(customer_id, None)
            self._blocked_until[customer_id] = now + self.block_seconds
            logger.warning("Customer blocked for spam: %s", customer_id)
            return RateDecision(
                allowed=False,
                just_blocked=True,
                minutes_left=math.ceil(self.block_seconds / 60),
            )

        recent.append(now)
        self._hits[customer_id] = recent
        return ALLOWED

    def is_blocked(self, customer_id: str) -> bool:
        until = self._blocked_until.get(customer_id)
        return until is not None and self._clock() < until

    def sweep(self) -> None:
        now = self._clock()
        for cid in [c for c, until in self._blocked_until.items() if now >= until]:
            del self._blocked_until[cid]
        for cid in [c for c, hits in self._hits.items() if not hits or now - hits[-1] >= self.window_seconds]:
            del self._hits[cid]

# storechat/ordering/session.py
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    BROWSING = "browsing"
    SELECTING_PRODUCTS = "selecting_products"
    CHOOSING_AMONG_CANDIDATES = "choosing_among_candidates"
    CONFIRMING_CHECKOUT = "confirming_checkout"


@dataclass
class Session:
    customer_id: str
    state: SessionState
    last_activity: float


class SessionStore:
    """
    One conversation record per customer.

    No record means idle. A record whose last activity is at least
    `expiry_seconds` old is treated as absent (and dropped) on read.
    """

    def __init__(
        self,
        expiry_seconds: Callable[[], float] | float = 600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._expiry = expiry_seconds
        self._clock = clock
        self._sessions: Dict[str, Session] = {}

    def expiry_seconds(self) -> float:
        return float(self._expiry() if callable(self._expiry) else self._expiry)

    def _expired(self, s: Session, now: float) -> bool:
        return now - s.last_activity >= self.expiry_seconds()

    def get(self, customer_id: str) -> Optional[Session]:
        s = self._sessions.get(customer_id)
        if s is None:
            return None
        if self._expired(s, self._clock()):
            self._sessions.pop(customer_id, None)
            logger.debug("Session expired for %s", customer_id)
            return None
        return s

    def is_active(self, customer_id: str) -> bool:
        return self.get(customer_id) is not None

    def touch(self, customer_id: str, state: Optional[SessionState] = None) -> Session:
        """Create or refresh. Without a state, an existing record keeps its state."""
        now = self._clock()
        s = self.get(customer_id)
        if s is None:
            s = Session(customer_id=customer_id, state=state or SessionState.BROWSING, last_activity=now)
            self._sessions[customer_id] = s
        else:
            s.last_activity = now
            if state is not None:
                s.state = state
        return s

    def clear(self, customer_id: str) -> None:
        self._sessions.pop(customer_id, None)

    def clear_all(self) -> None:
        self._sessions.clear()

    def sweep(self, skip: Iterable[str] = ()) -> List[str]:
        now = self._clock()
        skip = set(skip)
        dead = [cid for cid, s in self._sessions.items() if cid not in skip and self._expired(s, now)]
        for cid in dead:
            del self._sessions[cid]
        return dead

    def __len__(self) -> int:
        return len(self._sessions)


class CustomerLocks:
    """
    Lazily created asyncio.Lock per customer id.

    `hold()` counts holders and waiters, so prune() never drops a lock that
    somebody is about to acquire.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def for_customer(self, customer_id: str) -> asyncio.Lock:
        lock = self._locks.get(customer_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[customer_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, customer_id: str) -> AsyncIterator[None]:
        lock = self.for_customer(customer_id)
        self._users[customer_id] = self._users.get(customer_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[customer_id] -= 1
            if self._users[customer_id] <= 0:
                del self._users[customer_id]

    def busy(self) -> List[str]:
        return list(self._users)

    def prune(self) -> int:
        idle = [cid for cid in self._locks if cid not in self._users]
        for cid in idle:
            del self._locks[cid]
        return len(idle)

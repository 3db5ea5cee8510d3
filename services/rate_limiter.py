from __future__ import annotations

import heapq
import itertools
import random
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple


@dataclass
class _Lane:
    cond: threading.Condition = field(default_factory=threading.Condition)
    waiting: List[Tuple[int, int]] = field(default_factory=list)
    busy: bool = False
    last_call_at: Optional[float] = None


class AccountRateLimiter:
    """Per-credential call spacing, shared by every worker of the process.

    Calls on one account are serialized in a lane. Priority tickets are served
    before waiting normal tickets but still respect the spacing. The gap to
    the previous successful call is drawn uniformly from [spacing_min, spacing_max]
    for every call.
    """

    def __init__(
        self,
        spacing_min: float = 2.0,
        spacing_max: float = 8.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        if spacing_max < spacing_min:
            raise ValueError("spacing_max must be >= spacing_min")
        self.spacing_min = spacing_min
        self.spacing_max = spacing_max
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._lanes: Dict[str, _Lane] = {}
        self._lanes_lock = threading.Lock()
        self._seq = itertools.count()

    def _lane(self, account_id: str) -> _Lane:
        with self._lanes_lock:
            lane = self._lanes.get(account_id)
            if lane is None:
                lane = _Lane()
                self._lanes[account_id] = lane
            return lane

    @contextmanager
    def slot(self, account_id: str, priority: bool = False) -> Iterator[float]:
        """Hold the account's lane for one call; yields the seconds waited for spacing."""
        lane = self._lane(account_id)
        ticket = (0 if priority else 1, next(self._seq))
        with lane.cond:
            heapq.heappush(lane.waiting, ticket)
            while lane.busy or lane.waiting[0] != ticket:
                lane.cond.wait()
            heapq.heappop(lane.waiting)
            lane.busy = True
            gap = self._rng.uniform(self.spacing_min, self.spacing_max)
            wait = 0.0
            if lane.last_call_at is not None:
                wait = max(0.0, lane.last_call_at + gap - self._clock())
        try:
            if wait > 0:
                self._sleep(wait)
            yield wait
        finally:
            with lane.cond:
                lane.busy = False
                lane.cond.notify_all()

    def record_success(self, account_id: str) -> None:
        lane = self._lane(account_id)
        with lane.cond:
            lane.last_call_at = self._clock()

    def last_call_at(self, account_id: str) -> Optional[float]:
        return self._lane(account_id).last_call_at

    def pick_account(self, candidates: Iterable[str]) -> Optional[str]:
        """Choose the credential idle the longest; never-used and non-busy lanes first."""
        best: Optional[Tuple[bool, float, str]] = None
        for account_id in candidates:
            lane = self._lane(account_id)
            last = lane.last_call_at if lane.last_call_at is not None else float("-inf")
            key = (lane.busy, last, account_id)
            if best is None or key < best:
                best = key
        return best[2] if best else None

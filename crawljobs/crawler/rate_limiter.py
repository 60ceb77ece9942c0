"""
Token bucket rate limiter shared by crawl workers.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque, Optional

from .errors import RateLimitError


class TokenBucket:
    """
    Async token bucket.
    
    Tokens refill continuously at ``rate_per_second`` up to ``capacity``.
    Waiters are served strictly in arrival order through a queue of
    futures; only the head of the queue sleeps for a token. A waiter whose
    ``cancelled`` event fires leaves the queue at once, wherever it stands,
    so a cancelled job never waits behind another job's workers.
    """
    
    def __init__(self, rate_per_second: float, capacity: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        if not rate_per_second or rate_per_second <= 0:
            raise RateLimitError(f"rate_per_second must be positive, got {rate_per_second!r}")
        if capacity < 1:
            raise RateLimitError(f"capacity must be at least 1 token, got {capacity!r}")
        
        self.rate = float(rate_per_second)
        self.capacity = float(capacity)
        self._clock = clock
        self._tokens = self.capacity
        self._last_refill = clock()
        self._waiters: Deque[asyncio.Future] = deque()
        self.logger = logging.getLogger(__name__)
        
        self.stats = {
            'granted': 0,
            'aborted': 0,
            'total_wait_time': 0.0
        }
    
    def _refill(self):
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_refill = now
    
    async def acquire(self, cancelled: Optional[asyncio.Event] = None) -> bool:
        """
        Wait for one token.
        
        Args:
            cancelled: Optional event; if it is set before a token is granted
                the wait is abandoned and no token is consumed.
        
        Returns:
            True when a token was granted, False if ``cancelled`` fired first.
        """
        if cancelled is not None and cancelled.is_set():
            return False
        
        start = self._clock()
        turn = asyncio.get_running_loop().create_future()
        self._waiters.append(turn)
        if self._waiters[0] is turn:
            turn.set_result(None)
        
        try:
            if not await self._wait(turn, cancelled):
                self.stats['aborted'] += 1
                return False
            
            # Head of the queue: sleep until a token has refilled
            while True:
                if cancelled is not None and cancelled.is_set():
                    self.stats['aborted'] += 1
                    return False
                
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    self.stats['granted'] += 1
                    self.stats['total_wait_time'] += self._clock() - start
                    return True
                
                delay = (1 - self._tokens) / self.rate
                if not await self._wait(asyncio.ensure_future(asyncio.sleep(delay)), cancelled):
                    self.stats['aborted'] += 1
                    return False
        finally:
            self._leave(turn)
    
    async def _wait(self, future: asyncio.Future, cancelled: Optional[asyncio.Event]) -> bool:
        """Wait for ``future`` unless ``cancelled`` fires first; False means cancelled."""
        if cancelled is None:
            await future
            return True
        
        cancel_wait = asyncio.ensure_future(cancelled.wait())
        try:
            await asyncio.wait([future, cancel_wait], return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_wait.cancel()
            if not future.done():
                future.cancel()
        return not cancelled.is_set()
    
    def _leave(self, turn: asyncio.Future):
        """Drop ``turn`` from the queue and hand the head to the next waiter."""
        was_head = bool(self._waiters) and self._waiters[0] is turn
        self._waiters.remove(turn)
        if was_head and self._waiters:
            successor = self._waiters[0]
            if not successor.done():
                successor.set_result(None)
    
    @property
    def available_tokens(self) -> float:
        """Current token count, refilled up to now."""
        self._refill()
        return self._tokens
    
    @property
    def queued(self) -> int:
        """Number of callers currently waiting for a token."""
        return len(self._waiters)

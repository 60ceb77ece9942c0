"""
Per-job URL frontier: a FIFO work queue guarded by a dedup set.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Set
from urllib.parse import urlparse, urlunparse


DEFAULT_PORTS = {'http': 80, 'https': 443}


@dataclass(frozen=True)
class FrontierEntry:
    """A normalized URL waiting to be fetched, with its link depth."""
    url: str
    depth: int


def normalize_url(url: str) -> Optional[str]:
    """
    Normalize a URL for deduplication.
    
    Lower-cases scheme and host, drops default ports and the fragment, and
    turns an empty path into ``/``. Returns None for anything that is not an
    absolute http(s) URL.
    """
    try:
        parsed = urlparse(url.strip())
        scheme = parsed.scheme.lower()
        hostname = parsed.hostname
        port = parsed.port
    except (ValueError, AttributeError):
        return None
    
    if scheme not in DEFAULT_PORTS or not hostname:
        return None
    
    netloc = hostname
    if ':' in hostname:
        netloc = f'[{hostname}]'
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f'{netloc}:{port}'
    if parsed.username is not None:
        userinfo = parsed.username
        if parsed.password is not None:
            userinfo = f'{userinfo}:{parsed.password}'
        netloc = f'{userinfo}@{netloc}'
    
    return urlunparse((
        scheme,
        netloc,
        parsed.path or '/',
        parsed.params,
        parsed.query,
        ''  # Remove fragment
    ))


class URLFrontier:
    """
    Breadth-first frontier for one crawl job.
    
    ``add_url`` checks depth, page budget and the visited set and admits the
    URL in the same critical section, so concurrent producers can never admit
    one URL twice. ``get`` distinguishes "nothing right now" (siblings are
    still fetching and may add more) from "nothing ever again".
    """
    
    def __init__(self, max_pages: int, max_depth: int):
        self.max_pages = max_pages
        self.max_depth = max_depth
        self.logger = logging.getLogger(__name__)
        
        self._queue: Deque[FrontierEntry] = deque()
        self._visited: Set[str] = set()
        self._in_flight = 0
        self._closed = False
        self._condition = asyncio.Condition()
    
    async def add_url(self, url: str, depth: int) -> bool:
        """
        Admit a URL at the given depth.
        
        Returns True if the URL was queued; False if it is too deep, already
        seen, not crawlable, or the page budget is spent.
        """
        if depth > self.max_depth:
            return False
        
        normalized = normalize_url(url)
        if normalized is None:
            return False
        
        async with self._condition:
            if self._closed:
                return False
            if normalized in self._visited:
                return False
            if len(self._visited) >= self.max_pages:
                return False
            
            self._visited.add(normalized)
            self._queue.append(FrontierEntry(normalized, depth))
            self._condition.notify()
        
        self.logger.debug(f"Added URL to frontier: {normalized} (depth {depth})")
        return True
    
    async def get(self) -> Optional[FrontierEntry]:
        """
        Take the next entry, waiting while siblings are still in flight.
        
        Every entry returned must be acknowledged with ``task_done()``.
        
        Returns:
            The next entry, or None once the frontier is exhausted or closed
        """
        async with self._condition:
            while True:
                if self._closed:
                    return None
                if self._queue:
                    self._in_flight += 1
                    return self._queue.popleft()
                if self._in_flight == 0:
                    # Nobody can produce more work; release the other waiters
                    self._condition.notify_all()
                    return None
                await self._condition.wait()
    
    async def task_done(self):
        """Acknowledge an entry returned by ``get``."""
        async with self._condition:
            if self._in_flight <= 0:
                raise ValueError("task_done() called more times than get()")
            self._in_flight -= 1
            if self._in_flight == 0 and not self._queue:
                self._condition.notify_all()
    
    async def close(self):
        """Stop handing out work and wake every waiting worker."""
        async with self._condition:
            self._closed = True
            self._condition.notify_all()
    
    def is_exhausted(self) -> bool:
        """True when nothing is queued and nothing is in flight."""
        return not self._queue and self._in_flight == 0
    
    def seen(self, url: str) -> bool:
        """Whether the normalized form of ``url`` was ever admitted."""
        return normalize_url(url) in self._visited
    
    @property
    def admitted(self) -> int:
        return len(self._visited)
    
    def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        return {
            'queued': len(self._queue),
            'in_flight': self._in_flight,
            'admitted': len(self._visited)
        }

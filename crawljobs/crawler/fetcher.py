"""
Rate-limited web page fetcher.
"""

import asyncio
import aiohttp
import logging
import time
from typing import Optional, Dict, Tuple
from dataclasses import dataclass, field
from aiohttp import ClientSession, ClientTimeout, ClientError, TooManyRedirects

from .errors import FetchCancelled, RateLimitError, RequestFailed, StatusError
from .rate_limiter import TokenBucket
from ..utils.config import DEFAULT_USER_AGENT


@dataclass
class FetchResult:
    """Result of a successful fetch operation."""
    url: str
    status_code: int
    body: str = ''
    headers: Dict[str, str] = field(default_factory=dict)
    final_url: str = ''
    content_type: Optional[str] = None
    encoding: Optional[str] = None
    fetch_time: float = 0.0
    body_bytes: int = 0
    
    def __post_init__(self):
        if not self.final_url:
            self.final_url = self.url


def normalize_headers(raw_headers) -> Dict[str, str]:
    """Lower-case header names; for repeated names the last value wins."""
    headers: Dict[str, str] = {}
    for name, value in raw_headers.items():
        headers[name.lower()] = value
    return headers


class WebFetcher:
    """
    Fetches web pages one at a time behind a token bucket.
    
    A fetcher can own its ``aiohttp`` session or borrow one, so several
    fetchers (one per job, each with its own limiter) can share a single
    connection pool.
    """
    
    def __init__(self, limiter: Optional[TokenBucket], user_agent: str = DEFAULT_USER_AGENT,
                 request_timeout: float = 30, max_redirects: int = 10,
                 max_response_bytes: int = 10 * 1024 * 1024,
                 session: Optional[ClientSession] = None):
        self.limiter = limiter
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_redirects = max_redirects
        self.max_response_bytes = max_response_bytes
        
        self.logger = logging.getLogger(__name__)
        
        # Session management
        self.session: Optional[ClientSession] = session
        self._owns_session = session is None
        
        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }
    
    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
    
    async def start(self):
        """Create a private session unless one was supplied."""
        if self.session is None:
            self.session = create_session(self.user_agent)
            self._owns_session = True
            self.logger.info("WebFetcher session started")
    
    async def close(self):
        """Close the session if this fetcher created it."""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")
    
    async def fetch(self, url: str, cancelled: Optional[asyncio.Event] = None) -> FetchResult:
        """
        Fetch a single URL.
        
        Blocks until the rate limiter grants a token, then issues a GET that
        follows at most ``max_redirects`` redirects.
        
        Args:
            url: The URL to fetch
            cancelled: Job cancellation event; abandons the limiter wait
            
        Returns:
            FetchResult for a 2xx response
            
        Raises:
            RateLimitError: No usable rate limiter
            FetchCancelled: ``cancelled`` fired before a token was granted
            RequestFailed: Transport error, timeout, redirect cap or oversized body
            StatusError: Response status outside 200-299
        """
        if self.limiter is None:
            raise RateLimitError("No rate limiter configured for fetcher")
        if self.session is None:
            raise RequestFailed(url, "fetcher session is not started")
        
        if not await self.limiter.acquire(cancelled):
            raise FetchCancelled(url)
        
        start_time = time.monotonic()
        self.stats['total_requests'] += 1
        
        try:
            async with self.session.get(
                url,
                headers={'User-Agent': self.user_agent},
                timeout=ClientTimeout(total=self.request_timeout),
                allow_redirects=True,
                # aiohttp raises once the hop count reaches its limit (0 means unlimited)
                max_redirects=self.max_redirects + 1
            ) as response:
                headers = normalize_headers(response.headers)
                content_type = headers.get('content-type', '').lower()
                
                if self._is_text_content(content_type):
                    body, body_bytes = await self._read_content_safely(url, response)
                else:
                    self.logger.debug(f"Skipping body of non-text content: {url} ({content_type})")
                    body, body_bytes = '', 0
                
                result = FetchResult(
                    url=url,
                    status_code=response.status,
                    body=body,
                    headers=headers,
                    final_url=str(response.url),
                    content_type=content_type or None,
                    encoding=response.charset,
                    fetch_time=time.monotonic() - start_time,
                    body_bytes=body_bytes
                )
        
        except TooManyRedirects:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Too many redirects fetching {url}")
            raise RequestFailed(url, f"more than {self.max_redirects} redirects")
        
        except asyncio.TimeoutError:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Timeout fetching {url}")
            raise RequestFailed(url, f"timed out after {self.request_timeout}s")
        
        except ClientError as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Client error fetching {url}: {e}")
            raise RequestFailed(url, f"client error: {e}")
        
        except RequestFailed:
            self.stats['failed_requests'] += 1
            raise
        
        self.stats['total_bytes_downloaded'] += result.body_bytes
        
        if not 200 <= result.status_code < 300:
            self.stats['failed_requests'] += 1
            self.logger.debug(f"Fetched {url}: HTTP {result.status_code}")
            raise StatusError(url, result.status_code, result)
        
        self.stats['successful_requests'] += 1
        self.logger.debug(f"Fetched {url}: {result.status_code} ({len(result.body)} chars)")
        return result
    
    def _is_text_content(self, content_type: str) -> bool:
        """Check if content type is text-based. A missing type is treated as text."""
        if not content_type:
            return True
        
        text_types = [
            'text/html',
            'text/plain',
            'text/xml',
            'application/xml',
            'application/xhtml+xml',
        ]
        
        return any(text_type in content_type for text_type in text_types)
    
    async def _read_content_safely(self, url: str, response) -> Tuple[str, int]:
        """
        Read the response body, enforcing ``max_response_bytes``.
        
        Returns:
            Decoded text and its size in bytes as received
        
        Raises:
            RequestFailed: The body is larger than the limit
        """
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_response_bytes:
            raise RequestFailed(url, f"content too large ({content_length} bytes)")
        
        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(8192):
            size += len(chunk)
            if size > self.max_response_bytes:
                raise RequestFailed(url, "content exceeded size limit during reading")
            chunks.append(chunk)
        content_bytes = b''.join(chunks)
        
        encoding = response.charset or 'utf-8'
        try:
            return content_bytes.decode(encoding), size
        except (UnicodeDecodeError, LookupError):
            pass
        try:
            return content_bytes.decode('utf-8'), size
        except UnicodeDecodeError:
            return content_bytes.decode('latin-1'), size
    
    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()


def create_session(user_agent: str = DEFAULT_USER_AGENT, connection_limit: int = 100) -> ClientSession:
    """Create the connection-pooling session shared by fetchers."""
    return aiohttp.ClientSession(
        headers={'User-Agent': user_agent},
        connector=aiohttp.TCPConnector(
            limit=connection_limit,
            limit_per_host=10,
            ttl_dns_cache=300,
            use_dns_cache=True
        )
    )

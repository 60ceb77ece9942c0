"""Shared fixtures: an in-memory link graph served by a fake fetcher.

``FakeWeb`` stands in for the network. Each job gets a ``FakeFetcher`` bound
to the rate limiter the JobManager hands it, so limiter behaviour is real
while page content comes from a dict.
"""

from __future__ import annotations

import asyncio
import time
from typing import Dict, List, Optional, Tuple

import pytest

from crawljobs.crawler.errors import FetchCancelled, RequestFailed, StatusError
from crawljobs.crawler.fetcher import FetchResult
from crawljobs.crawler.job_manager import JobManager
from crawljobs.crawler.rate_limiter import TokenBucket
from crawljobs.utils.config import CrawlerConfig
from crawljobs.utils.monitoring import CrawlerMetrics


def html_page(title: str, links: List[str] = (), text: str = "") -> str:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return f"<html><head><title>{title}</title></head><body><p>{text}</p>{anchors}</body></html>"


class FakeFetcher:
    def __init__(self, web: "FakeWeb", limiter: TokenBucket):
        self.web = web
        self.limiter = limiter

    async def fetch(self, url: str, cancelled: Optional[asyncio.Event] = None) -> FetchResult:
        if not await self.limiter.acquire(cancelled):
            raise FetchCancelled(url)
        self.web.fetched.append(url)
        self.web.start_times.append(time.monotonic())
        if self.web.delay:
            await asyncio.sleep(self.web.delay)
        if url not in self.web.pages:
            raise RequestFailed(url, "connection refused")
        status, body = self.web.pages[url]
        result = FetchResult(url=url, status_code=status, body=body, body_bytes=len(body.encode()))
        if not 200 <= status < 300:
            raise StatusError(url, status, result)
        return result


class FakeWeb:
    """A link graph keyed by normalized URL."""

    def __init__(self, pages: Optional[Dict[str, Tuple[int, str]]] = None, delay: float = 0.0):
        self.pages: Dict[str, Tuple[int, str]] = dict(pages or {})
        self.delay = delay
        self.fetched: List[str] = []
        self.start_times: List[float] = []
        self.limiters: List[TokenBucket] = []

    def add(self, url: str, links: List[str] = (), status: int = 200, title: str = "") -> None:
        self.pages[url] = (status, html_page(title or url, links))

    def factory(self, limiter: TokenBucket) -> FakeFetcher:
        self.limiters.append(limiter)
        return FakeFetcher(self, limiter)


@pytest.fixture()
def web() -> FakeWeb:
    return FakeWeb()


@pytest.fixture()
def crawler_config() -> CrawlerConfig:
    return CrawlerConfig(workers_per_job=4)


@pytest.fixture()
async def manager(web, crawler_config):
    """A JobManager wired to the fake web, closed after the test."""
    job_manager = JobManager(
        crawler_config,
        fetcher_factory=web.factory,
        metrics=CrawlerMetrics(enabled=True),
    )
    yield job_manager
    await job_manager.close()

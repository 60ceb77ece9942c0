"""
Data model for crawl jobs: configuration, status, statistics.
"""

import copy
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvalidConfig
from .parser import ParsedPage
from .url_frontier import normalize_url


class JobStatus(Enum):
    """Lifecycle states of a crawl job."""
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'
    
    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# Every legal status change; terminal states have no way out
ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class CrawlConfig:
    """Crawl bounds supplied with a job."""
    seed_urls: List[str]
    max_pages: int
    max_depth: int
    rate_per_second: float
    
    def __post_init__(self):
        self.validate()
    
    def validate(self):
        """Raise InvalidConfig unless every field is usable."""
        if isinstance(self.seed_urls, str) or not isinstance(self.seed_urls, (list, tuple, set, frozenset)):
            raise InvalidConfig("seed_urls must be a list of URLs")
        if not self.seed_urls:
            raise InvalidConfig("seed_urls must not be empty")
        
        seeds = []
        for url in self.seed_urls:
            if not isinstance(url, str) or normalize_url(url) is None:
                raise InvalidConfig(f"seed URL is not an absolute http(s) URL: {url!r}")
            if url not in seeds:
                seeds.append(url)
        self.seed_urls = seeds
        
        if not _is_int(self.max_pages) or self.max_pages <= 0:
            raise InvalidConfig("max_pages must be a positive integer")
        if not _is_int(self.max_depth) or self.max_depth < 0:
            raise InvalidConfig("max_depth must be a non-negative integer")
        if (isinstance(self.rate_per_second, bool)
                or not isinstance(self.rate_per_second, (int, float))
                or not math.isfinite(self.rate_per_second)
                or self.rate_per_second <= 0):
            raise InvalidConfig("rate_per_second must be a positive number")
    
    @classmethod
    def from_dict(cls, data: Any) -> 'CrawlConfig':
        """Build a config from a decoded JSON object."""
        if not isinstance(data, dict):
            raise InvalidConfig("config must be an object")
        missing = [name for name in ('seed_urls', 'max_pages', 'max_depth', 'rate_per_second')
                   if name not in data]
        if missing:
            raise InvalidConfig(f"config is missing fields: {', '.join(missing)}")
        return cls(
            seed_urls=data['seed_urls'],
            max_pages=data['max_pages'],
            max_depth=data['max_depth'],
            rate_per_second=data['rate_per_second']
        )
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            'seed_urls': list(self.seed_urls),
            'max_pages': self.max_pages,
            'max_depth': self.max_depth,
            'rate_per_second': self.rate_per_second
        }


@dataclass
class JobStats:
    """Counters for one crawl job."""
    pages_fetched: int = 0
    links_discovered: int = 0
    urls_admitted: int = 0
    errors: int = 0
    bytes_downloaded: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    
    def to_dict(self) -> Dict[str, Any]:
        data = {
            'pages_fetched': self.pages_fetched,
            'links_discovered': self.links_discovered,
            'urls_admitted': self.urls_admitted,
            'errors': self.errors,
            'bytes_downloaded': self.bytes_downloaded,
            'started_at': self.started_at.isoformat() if self.started_at else None,
        }
        if self.finished_at is not None:
            data['finished_at'] = self.finished_at.isoformat()
        return data


@dataclass
class CrawlJob:
    """A crawl job as owned by the JobManager."""
    id: str
    config: CrawlConfig
    status: JobStatus = JobStatus.PENDING
    stats: JobStats = field(default_factory=JobStats)
    created_at: datetime = field(default_factory=utcnow)
    error: Optional[str] = None
    
    def snapshot(self) -> 'CrawlJob':
        """Independent copy safe to hand to callers."""
        return copy.deepcopy(self)
    
    def to_dict(self, include_stats: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'job_id': self.id,
            'status': self.status.value,
            'created_at': self.created_at.isoformat(),
        }
        if include_stats:
            data['stats'] = self.stats.to_dict()
        if self.error:
            data['error'] = self.error
        return data


@dataclass
class PageArtifact:
    """A fetched and parsed page, as streamed to the page sink."""
    job_id: str
    url: str
    depth: int
    status_code: int
    final_url: str
    page: ParsedPage

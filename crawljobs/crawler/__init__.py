"""
Crawl job core components.
"""

from .errors import (
    FetchError, RequestFailed, StatusError, RateLimitError, FetchCancelled,
    JobError, DuplicateJobId, InvalidConfig, JobNotFound
)
from .rate_limiter import TokenBucket
from .url_frontier import URLFrontier, FrontierEntry, normalize_url
from .fetcher import WebFetcher, FetchResult
from .parser import ContentParser, ParsedPage, resolve_link
from .models import CrawlConfig, CrawlJob, JobStats, JobStatus, PageArtifact
from .job_manager import JobManager

__all__ = [
    'FetchError', 'RequestFailed', 'StatusError', 'RateLimitError', 'FetchCancelled',
    'JobError', 'DuplicateJobId', 'InvalidConfig', 'JobNotFound',
    'TokenBucket',
    'URLFrontier', 'FrontierEntry', 'normalize_url',
    'WebFetcher', 'FetchResult',
    'ContentParser', 'ParsedPage', 'resolve_link',
    'CrawlConfig', 'CrawlJob', 'JobStats', 'JobStatus', 'PageArtifact',
    'JobManager'
]

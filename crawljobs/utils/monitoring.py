"""
Prometheus metrics for the crawl job service.
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class CrawlerMetrics:
    """Holds the service's Prometheus collectors in a private registry."""
    
    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.logger = logging.getLogger(__name__)
        self.registry = CollectorRegistry()
        
        self.jobs_total = Counter(
            'crawler_jobs_total',
            'Crawl jobs that reached a terminal state',
            ['status'],
            registry=self.registry
        )
        self.active_jobs = Gauge(
            'crawler_active_jobs',
            'Crawl jobs currently pending or running',
            registry=self.registry
        )
        self.pages_fetched = Counter(
            'crawler_pages_fetched_total',
            'Pages fetched and parsed across all jobs',
            registry=self.registry
        )
        self.fetch_errors = Counter(
            'crawler_fetch_errors_total',
            'Per-URL fetch or parse failures',
            ['error_type'],
            registry=self.registry
        )
        self.fetch_seconds = Histogram(
            'crawler_fetch_seconds',
            'Time spent on a single HTTP request, excluding the rate limiter wait',
            registry=self.registry
        )
    
    def job_started(self):
        if self.enabled:
            self.active_jobs.inc()
    
    def job_finished(self, status: str):
        """Record a terminal job outcome."""
        if self.enabled:
            self.active_jobs.dec()
            self.jobs_total.labels(status=status).inc()
    
    def record_page(self, fetch_time: float):
        if self.enabled:
            self.pages_fetched.inc()
            self.fetch_seconds.observe(fetch_time)
    
    def record_error(self, error_type: str):
        if self.enabled:
            self.fetch_errors.labels(error_type=error_type).inc()
    
    def render(self) -> bytes:
        """Render all collectors in the Prometheus text exposition format."""
        return generate_latest(self.registry)


# Global metrics instance
_global_metrics: Optional[CrawlerMetrics] = None


def initialize_metrics(enabled: bool = True) -> CrawlerMetrics:
    """Initialize global metrics."""
    global _global_metrics
    _global_metrics = CrawlerMetrics(enabled)
    return _global_metrics


def get_metrics() -> CrawlerMetrics:
    """Get the global metrics instance, creating a disabled one if needed."""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = CrawlerMetrics(enabled=False)
    return _global_metrics

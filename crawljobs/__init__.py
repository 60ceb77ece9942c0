"""
Crawl Jobs Service

An asyncio crawl job orchestrator: accepts crawl jobs, runs them under a
request-rate cap and reports per-job progress, completion and cancellation.
"""

__version__ = "1.0.0"
__description__ = "A rate-limited, cancellable crawl job orchestrator"

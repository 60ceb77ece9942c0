"""
Exception hierarchy for fetch-level and job-level failures.
"""

from typing import Optional


class FetchError(Exception):
    """Base class for per-URL fetch failures. Never fatal to a job."""
    
    error_type = 'fetch_error'


class RequestFailed(FetchError):
    """Network, timeout, oversized body or redirect-cap failure."""
    
    error_type = 'request_failed'
    
    def __init__(self, url: str, reason: str):
        super().__init__(f"Request to {url} failed: {reason}")
        self.url = url
        self.reason = reason


class StatusError(FetchError):
    """The server answered with a status outside the 2xx range."""
    
    error_type = 'status_error'
    
    def __init__(self, url: str, status_code: int, result=None):
        super().__init__(f"{url} returned HTTP {status_code}")
        self.url = url
        self.status_code = status_code
        # The FetchResult, for callers whose policy treats the page as fetched
        self.result = result


class RateLimitError(FetchError):
    """The rate limiter is misconfigured or unusable."""
    
    error_type = 'rate_limit_error'


class FetchCancelled(FetchError):
    """The job was cancelled while waiting for a rate limiter token."""
    
    error_type = 'cancelled'
    
    def __init__(self, url: str):
        super().__init__(f"Fetch of {url} cancelled before it started")
        self.url = url


class JobError(Exception):
    """Base class for job-level errors surfaced to API callers."""
    
    code = 'job_error'
    
    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id


class DuplicateJobId(JobError):
    code = 'duplicate_job_id'
    
    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' already exists", job_id)


class InvalidConfig(JobError):
    code = 'invalid_config'


class JobNotFound(JobError):
    code = 'job_not_found'
    
    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' not found", job_id)


class InvalidTransition(Exception):
    """Raised when code attempts a job status change the state machine forbids."""

"""
Crawl job manager: owns the job registry and drives one worker pool per job.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Union

from aiohttp import ClientSession

from .errors import (
    DuplicateJobId, FetchCancelled, FetchError, InvalidConfig, InvalidTransition,
    JobNotFound, StatusError
)
from .fetcher import WebFetcher, create_session
from .models import (
    ALLOWED_TRANSITIONS, CrawlConfig, CrawlJob, JobStatus, PageArtifact, utcnow
)
from .parser import ContentParser
from .rate_limiter import TokenBucket
from .url_frontier import FrontierEntry, URLFrontier
from ..utils.config import CrawlerConfig
from ..utils.logger import JobLogAdapter, get_job_logger
from ..utils.monitoring import CrawlerMetrics, get_metrics


PageSink = Callable[[PageArtifact], Awaitable[None]]
FetcherFactory = Callable[[TokenBucket], WebFetcher]


class JobRun:
    """Runtime state of one job: frontier, cancellation flag and tasks."""

    def __init__(self, job: CrawlJob, logger: JobLogAdapter):
        self.job = job
        self.logger = logger
        self.frontier = URLFrontier(job.config.max_pages, job.config.max_depth)
        self.cancel_event = asyncio.Event()
        self.finished = asyncio.Event()
        self.fetcher: Optional[WebFetcher] = None
        self.workers: List[asyncio.Task] = []
        self.supervisor: Optional[asyncio.Task] = None


class JobManager:
    """
    Accepts crawl jobs and runs each one to a terminal state.

    All mutation happens on the event loop. A job's stats are only changed
    in synchronous blocks, so a snapshot taken by ``get_status`` never sees
    half of an update.
    """

    def __init__(self, config: Optional[CrawlerConfig] = None,
                 page_sink: Optional[PageSink] = None,
                 fetcher_factory: Optional[FetcherFactory] = None,
                 parser: Optional[ContentParser] = None,
                 metrics: Optional[CrawlerMetrics] = None):
        self.config = config or CrawlerConfig()
        self.page_sink = page_sink
        self.parser = parser or ContentParser()
        self.metrics = metrics or get_metrics()
        self.logger = logging.getLogger(__name__)

        self._fetcher_factory = fetcher_factory
        self._session: Optional[ClientSession] = None
        self._jobs: Dict[str, CrawlJob] = {}
        self._runs: Dict[str, JobRun] = {}
        self._registry_lock = asyncio.Lock()
        self._closed = False

        # One bucket for every job when the limiter is global
        self._global_limiter: Optional[TokenBucket] = None
        if self.config.rate_limit_scope == 'global':
            self._global_limiter = TokenBucket(self.config.global_rate_per_second, self.config.burst)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def create_job(self, job_id: Optional[str],
                         config: Union[CrawlConfig, dict]) -> CrawlJob:
        """
        Register a job and start crawling it in the background.

        Args:
            job_id: Caller-chosen id, or None to generate one
            config: CrawlConfig or its dict form

        Returns:
            Snapshot of the newly registered (pending) job

        Raises:
            DuplicateJobId: ``job_id`` is already registered
            InvalidConfig: The config or job id is unusable
        """
        if self._closed:
            raise RuntimeError("JobManager is closed")

        if not isinstance(config, CrawlConfig):
            config = CrawlConfig.from_dict(config)

        if job_id is None:
            job_id = uuid.uuid4().hex
        if not isinstance(job_id, str) or not job_id.strip():
            raise InvalidConfig("job_id must be a non-empty string")

        async with self._registry_lock:
            if job_id in self._jobs:
                raise DuplicateJobId(job_id)

            job = CrawlJob(id=job_id, config=config)
            run = JobRun(job, get_job_logger(__name__, job_id))
            self._jobs[job_id] = job
            self._runs[job_id] = run
            run.supervisor = asyncio.create_task(self._supervise(run), name=f"crawl-job-{job_id}")
            self.metrics.job_started()

        run.logger.info(f"Job registered: {len(config.seed_urls)} seeds, max_pages={config.max_pages}, "
                        f"max_depth={config.max_depth}, rate={config.rate_per_second}/s")
        return job.snapshot()

    def get_status(self, job_id: str) -> CrawlJob:
        """Point-in-time snapshot of a job's status and stats."""
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job.snapshot()

    def list_jobs(self) -> List[CrawlJob]:
        return [job.snapshot() for job in self._jobs.values()]

    async def cancel(self, job_id: str) -> CrawlJob:
        """
        Request cancellation and return without waiting for it.

        The job becomes CANCELLED once every worker has observed the signal.
        Cancelling a job that is already terminal is a no-op.
        """
        run = self._runs.get(job_id)
        if run is None:
            raise JobNotFound(job_id)

        if run.job.status.is_terminal or run.cancel_event.is_set():
            return run.job.snapshot()

        run.cancel_event.set()
        await run.frontier.close()
        run.logger.info("Cancellation requested")
        return run.job.snapshot()

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> CrawlJob:
        """Wait until a job is terminal and return its final snapshot."""
        run = self._runs.get(job_id)
        if run is None:
            raise JobNotFound(job_id)
        await asyncio.wait_for(run.finished.wait(), timeout=timeout)
        return run.job.snapshot()

    async def close(self):
        """Cancel every active job, wait for it to settle, close the HTTP session."""
        self._closed = True
        active = [run for run in self._runs.values() if not run.job.status.is_terminal]
        for run in active:
            await self.cancel(run.job.id)

        supervisors = [run.supervisor for run in active if run.supervisor]
        if supervisors:
            await asyncio.gather(*supervisors, return_exceptions=True)

        if self._session is not None:
            await self._session.close()
            self._session = None
        self.logger.info(f"JobManager closed ({len(active)} active jobs cancelled)")

    def _transition(self, run: JobRun, new_status: JobStatus):
        job = run.job
        if new_status not in ALLOWED_TRANSITIONS[job.status]:
            raise InvalidTransition(f"{job.id}: {job.status.value} -> {new_status.value}")
        run.logger.info(f"Status {job.status.value} -> {new_status.value}")
        job.status = new_status

    def _finish(self, run: JobRun, status: JobStatus, error: Optional[str] = None):
        """Move a job to a terminal status and release its waiters."""
        self._transition(run, status)
        run.job.stats.finished_at = utcnow()
        run.job.error = error
        self.metrics.job_finished(status.value)
        run.finished.set()

        stats = run.job.stats
        run.logger.info(
            f"Job {status.value}: "
            f"Fetched={stats.pages_fetched}, "
            f"Links={stats.links_discovered}, "
            f"Admitted={stats.urls_admitted}, "
            f"Errors={stats.errors}"
        )

    def _make_fetcher(self, run: JobRun) -> WebFetcher:
        if self._global_limiter is not None:
            limiter = self._global_limiter
            run.logger.info(f"Using global rate limiter at {limiter.rate}/s")
        else:
            limiter = TokenBucket(run.job.config.rate_per_second, self.config.burst)

        if self._fetcher_factory is not None:
            return self._fetcher_factory(limiter)

        if self._session is None:
            self._session = create_session(self.config.user_agent)

        return WebFetcher(
            limiter,
            user_agent=self.config.user_agent,
            request_timeout=self.config.request_timeout,
            max_redirects=self.config.max_redirects,
            max_response_bytes=self.config.max_response_bytes,
            session=self._session
        )

    async def _supervise(self, run: JobRun):
        """Start the worker pool, wait for it to drain, record the outcome."""
        job = run.job
        try:
            run.fetcher = self._make_fetcher(run)
            for url in job.config.seed_urls:
                if await run.frontier.add_url(url, 0):
                    job.stats.urls_admitted += 1

            if run.cancel_event.is_set():
                self._finish(run, JobStatus.CANCELLED)
                return

            num_workers = min(self.config.workers_per_job, job.config.max_pages)
            # RUNNING is set in the same step that creates the workers
            self._transition(run, JobStatus.RUNNING)
            job.stats.started_at = utcnow()
            run.workers = [
                asyncio.create_task(self._worker(run, f"worker-{i}"))
                for i in range(num_workers)
            ]
        except asyncio.CancelledError:
            self._finish(run, JobStatus.CANCELLED)
            raise
        except Exception as e:
            run.logger.error(f"Failed to start job: {e}", exc_info=True)
            self._finish(run, JobStatus.FAILED, error=str(e))
            return

        run.logger.info(f"Started crawling with {num_workers} workers")

        try:
            results = await asyncio.gather(*run.workers, return_exceptions=True)
        except asyncio.CancelledError:
            run.cancel_event.set()
            await run.frontier.close()
            await asyncio.gather(*run.workers, return_exceptions=True)
            self._finish(run, JobStatus.CANCELLED)
            raise

        failures = [r for r in results if isinstance(r, BaseException)]
        if run.cancel_event.is_set():
            self._finish(run, JobStatus.CANCELLED)
        elif failures:
            run.logger.error(f"{len(failures)} workers crashed: {failures[0]!r}")
            self._finish(run, JobStatus.FAILED, error=f"worker crashed: {failures[0]!r}")
        else:
            self._finish(run, JobStatus.COMPLETED)

    async def _worker(self, run: JobRun, worker_id: str):
        """
        Worker coroutine that processes entries from the job's frontier.

        Cancellation is checked before taking an entry and again before
        fetching it; an in-flight fetch is allowed to finish.
        """
        run.logger.debug(f"Worker {worker_id} started")

        while not run.cancel_event.is_set():
            entry = await run.frontier.get()
            if entry is None:
                break

            try:
                if run.cancel_event.is_set():
                    break
                await self._process_entry(run, entry)
            finally:
                await run.frontier.task_done()

        run.logger.debug(f"Worker {worker_id} finished")

    async def _process_entry(self, run: JobRun, entry: FrontierEntry):
        """Fetch, parse and expand a single frontier entry."""
        job = run.job

        try:
            result = await run.fetcher.fetch(entry.url, run.cancel_event)
        except FetchCancelled:
            return
        except StatusError as e:
            if self.config.status_error_policy != 'page' or e.result is None:
                self._record_error(run, entry, e)
                return
            result = e.result
        except FetchError as e:
            self._record_error(run, entry, e)
            return
        except Exception as e:
            run.logger.error(f"Unexpected error fetching {entry.url}: {e}", exc_info=True)
            self._record_error(run, entry, e)
            return

        page = self.parser.parse(result.body, result.final_url)

        stats = job.stats
        stats.pages_fetched += 1
        stats.links_discovered += len(page.links)
        stats.bytes_downloaded += result.body_bytes
        self.metrics.record_page(result.fetch_time)

        if entry.depth < job.config.max_depth:
            added_count = 0
            for link in page.links:
                if await run.frontier.add_url(link, entry.depth + 1):
                    added_count += 1
            stats.urls_admitted += added_count
            run.logger.debug(f"Queued {added_count} new URLs from {entry.url}")

        if self.page_sink is not None:
            artifact = PageArtifact(
                job_id=job.id,
                url=entry.url,
                depth=entry.depth,
                status_code=result.status_code,
                final_url=result.final_url,
                page=page
            )
            try:
                await self.page_sink(artifact)
            except Exception as e:
                run.logger.error(f"Page sink failed for {entry.url}: {e}", exc_info=True)
                self._record_error(run, entry, e)

    def _record_error(self, run: JobRun, entry: FrontierEntry, error: Exception):
        run.job.stats.errors += 1
        error_type = getattr(error, 'error_type', type(error).__name__)
        self.metrics.record_error(error_type)
        run.logger.log_url_event(logging.WARNING, entry.url, f"Failed {entry.url}: {error}")

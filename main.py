#!/usr/bin/env python3
"""
Main entry point for the crawl job service.
"""

import asyncio
import argparse
import json
import logging
import signal
import sys
from typing import List, Optional

from aiohttp import web

from crawljobs import __version__
from crawljobs.api import create_app
from crawljobs.crawler import CrawlConfig, JobError, JobManager, JobStatus, PageArtifact
from crawljobs.utils.config import load_config, Config
from crawljobs.utils.logger import setup_logging
from crawljobs.utils.monitoring import initialize_metrics


class CrawlerApp:
    """Main application class for the crawl job service."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._shutdown_event = asyncio.Event()

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._request_shutdown, signum)

    def _request_shutdown(self, signum):
        self.logger.info(f"Received signal {signum}, initiating shutdown...")
        self._shutdown_event.set()

    async def serve(self, config: Config) -> int:
        """Run the HTTP control surface until a shutdown signal arrives."""
        self.setup_signal_handlers()
        metrics = initialize_metrics(config.monitoring.metrics_enabled)
        app = create_app(config, metrics_collector=metrics)

        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, config.server.host, config.server.port)
        await site.start()

        self.logger.info("=== CRAWL JOB SERVICE STARTING ===")
        self.logger.info(f"Listening on {config.server.host}:{config.server.port}")
        self.logger.info(f"Rate limit scope: {config.crawler.rate_limit_scope}")
        self.logger.info(f"Workers per job: {config.crawler.workers_per_job}")

        try:
            await self._shutdown_event.wait()
        finally:
            # Cleanup closes the job manager, cancelling active jobs
            await runner.cleanup()
            self.logger.info("=== CRAWL JOB SERVICE STOPPED ===")
        return 0

    async def crawl(self, config: Config, seed_urls: List[str], max_pages: int,
                    max_depth: int, rate: float, job_id: Optional[str] = None) -> int:
        """Run a single job in-process and print its final snapshot."""
        self.setup_signal_handlers()
        metrics = initialize_metrics(config.monitoring.metrics_enabled)

        async def log_page(artifact: PageArtifact):
            self.logger.info(f"[depth {artifact.depth}] {artifact.url} "
                             f"({artifact.status_code}) {artifact.page.title or ''}")

        async with JobManager(config.crawler, page_sink=log_page, metrics=metrics) as manager:
            try:
                job = await manager.create_job(job_id, CrawlConfig(
                    seed_urls=seed_urls,
                    max_pages=max_pages,
                    max_depth=max_depth,
                    rate_per_second=rate
                ))
            except JobError as e:
                self.logger.error(f"Cannot start crawl: {e.message}")
                return 2

            wait_task = asyncio.create_task(manager.wait(job.id))
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            # Wait for either the job to finish or a shutdown signal
            done, _ = await asyncio.wait(
                [wait_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )

            if shutdown_task in done:
                self.logger.info("Shutdown requested, cancelling crawl...")
                await manager.cancel(job.id)
            shutdown_task.cancel()

            final = await manager.wait(job.id)

        print(json.dumps(final.to_dict(), indent=2))
        return 0 if final.status is JobStatus.COMPLETED else 1


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Crawl Job Service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve                              # Serve the HTTP API with defaults
  python main.py serve --config config.yaml         # Serve with a config file
  python main.py crawl https://example.com/ --max-pages 20 --max-depth 2
        """
    )

    parser.add_argument(
        '--config',
        help='Path to configuration file (default: $CRAWLJOBS_CONFIG or built-in defaults)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Crawl Job Service {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command')
    subparsers.add_parser('serve', help='Run the HTTP control surface')

    crawl_parser = subparsers.add_parser('crawl', help='Run one crawl job and print its stats')
    crawl_parser.add_argument('seed_urls', nargs='+', help='Seed URLs')
    crawl_parser.add_argument('--max-pages', type=int, default=50, help='Maximum pages to fetch')
    crawl_parser.add_argument('--max-depth', type=int, default=1, help='Maximum link depth')
    crawl_parser.add_argument('--rate', type=float, default=2.0, help='Requests per second')
    crawl_parser.add_argument('--job-id', help='Job id (generated if omitted)')

    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    setup_logging(config.logging)

    app = CrawlerApp()
    try:
        if args.command == 'crawl':
            return asyncio.run(app.crawl(
                config,
                seed_urls=args.seed_urls,
                max_pages=args.max_pages,
                max_depth=args.max_depth,
                rate=args.rate,
                job_id=args.job_id
            ))
        return asyncio.run(app.serve(config))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())

"""
HTTP control surface: create, inspect and cancel crawl jobs.
"""

import json
import logging
from typing import Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

from ..crawler.errors import DuplicateJobId, InvalidConfig, JobError, JobNotFound
from ..crawler.job_manager import JobManager
from ..utils.config import Config
from ..utils.monitoring import CrawlerMetrics, get_metrics


logger = logging.getLogger(__name__)

JOB_MANAGER_KEY = web.AppKey('job_manager', JobManager)
METRICS_KEY = web.AppKey('metrics', CrawlerMetrics)

ERROR_STATUS = {
    DuplicateJobId: 409,
    InvalidConfig: 400,
    JobNotFound: 404,
}

routes = web.RouteTableDef()


def error_response(status: int, code: str, message: str) -> web.Response:
    return web.json_response({'error': code, 'message': message}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map job-level errors to 4xx JSON responses with a machine-readable code."""
    try:
        return await handler(request)
    except JobError as e:
        status = ERROR_STATUS.get(type(e), 400)
        logger.info(f"{request.method} {request.path} -> {status} {e.code}: {e.message}")
        return error_response(status, e.code, e.message)


@routes.post('/api/v1/jobs')
async def create_job(request: web.Request) -> web.Response:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return error_response(400, 'invalid_request', f"Body is not valid JSON: {e}")
    
    if not isinstance(payload, dict):
        return error_response(400, 'invalid_request', "Body must be a JSON object")
    if 'config' not in payload:
        return error_response(400, 'invalid_request', "Missing field: config")
    
    job_id = payload.get('job_id')
    if job_id is not None and not isinstance(job_id, str):
        return error_response(400, 'invalid_request', "job_id must be a string")
    
    manager = request.app[JOB_MANAGER_KEY]
    job = await manager.create_job(job_id, payload['config'])
    logger.info(f"Accepted crawl job {job.id}")
    
    return web.json_response({'job_id': job.id, 'status': 'queued'}, status=202)


@routes.get('/api/v1/jobs/{job_id}/status')
async def get_job_status(request: web.Request) -> web.Response:
    manager = request.app[JOB_MANAGER_KEY]
    job = manager.get_status(request.match_info['job_id'])
    return web.json_response(job.to_dict())


@routes.post('/api/v1/jobs/{job_id}/cancel')
async def cancel_job(request: web.Request) -> web.Response:
    manager = request.app[JOB_MANAGER_KEY]
    job = await manager.cancel(request.match_info['job_id'])
    # A job that already finished keeps its own terminal status
    status = job.status.value if job.status.is_terminal else 'cancelled'
    return web.json_response({'job_id': job.id, 'status': status})


@routes.get('/api/v1/health')
async def health(request: web.Request) -> web.Response:
    return web.json_response({'status': 'ok'})


@routes.get('/metrics')
async def metrics(request: web.Request) -> web.Response:
    collector = request.app[METRICS_KEY]
    if not collector.enabled:
        raise web.HTTPNotFound()
    return web.Response(body=collector.render(), headers={'Content-Type': CONTENT_TYPE_LATEST})


def create_app(config: Config, job_manager: Optional[JobManager] = None,
               metrics_collector: Optional[CrawlerMetrics] = None) -> web.Application:
    """
    Build the aiohttp application.
    
    Args:
        config: Service configuration
        job_manager: Manager to serve; one is built from ``config`` if omitted
        metrics_collector: Metrics to expose; defaults to the global instance
        
    Returns:
        Application whose cleanup closes the job manager
    """
    app = web.Application(middlewares=[error_middleware])
    app[METRICS_KEY] = metrics_collector or get_metrics()
    app[JOB_MANAGER_KEY] = job_manager or JobManager(config.crawler, metrics=app[METRICS_KEY])
    app.add_routes(routes)
    
    async def close_job_manager(app: web.Application):
        await app[JOB_MANAGER_KEY].close()
    
    app.on_cleanup.append(close_job_manager)
    return app

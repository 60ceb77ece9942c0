"""
Logging utilities for the crawl job service.
"""

import logging
import logging.handlers
import json
import sys
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from .config import LoggingConfig


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.
    
    Job context attached by ``JobLogAdapter`` is lifted to the top level,
    so ``job_id`` and ``url`` can be filtered on directly.
    """
    
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'ts': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
            'where': f"{record.module}:{record.funcName}:{record.lineno}",
        }
        task_name = getattr(record, 'taskName', None)
        if task_name:
            entry['task'] = task_name
        
        entry.update(getattr(record, 'extra_fields', {}))
        
        if record.exc_info:
            entry['exc'] = self.formatException(record.exc_info)
        
        return json.dumps(entry, ensure_ascii=False, default=str)


class JobLogAdapter(logging.LoggerAdapter):
    """Logger adapter that tags every record with crawl job context."""
    
    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})
    
    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Prefix the message with the job id and attach context for JSON output."""
        extra = kwargs.setdefault('extra', {})
        extra_fields = dict(extra.get('extra_fields', {}))
        extra_fields.update(self.extra)
        extra['extra_fields'] = extra_fields
        
        job_id = self.extra.get('job_id')
        if job_id is not None:
            msg = f"[job={job_id}] {msg}"
        return msg, kwargs
    
    def log_url_event(self, level: int, url: str, message: str, **kwargs):
        """Log URL-specific events."""
        extra = kwargs.setdefault('extra', {})
        extra['extra_fields'] = {'url': url, 'event_type': 'url_event'}
        self.log(level, message, **kwargs)


class NoisyLoggerFilter(logging.Filter):
    """Filter to suppress chatty third-party access logs."""
    
    def __init__(self, suppress_modules: Optional[list] = None):
        super().__init__()
        self.suppress_modules = suppress_modules or [
            'aiohttp.access',
        ]
    
    def filter(self, record: logging.LogRecord) -> bool:
        """Filter out noisy log records."""
        return not any(record.name.startswith(module) for module in self.suppress_modules)


def setup_logging(config: LoggingConfig, enable_noise_filtering: bool = True) -> logging.Logger:
    """
    Setup logging for the service.
    
    Args:
        config: Logging configuration section
        enable_noise_filtering: Drop aiohttp access log records
        
    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    
    # Clear existing handlers
    root_logger.handlers.clear()
    
    if config.json:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(config.format)
    
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    if enable_noise_filtering:
        console_handler.addFilter(NoisyLoggerFilter())
    root_logger.addHandler(console_handler)
    
    # File handler with rotation
    if config.file:
        log_file = Path(config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=50 * 1024 * 1024,  # 50MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        if enable_noise_filtering:
            file_handler.addFilter(NoisyLoggerFilter())
        root_logger.addHandler(file_handler)
    
    third_party_loggers = {
        'aiohttp': logging.WARNING,
        'asyncio': logging.WARNING,
    }
    
    for logger_name, level in third_party_loggers.items():
        logging.getLogger(logger_name).setLevel(level)
    
    root_logger.info("Logging system initialized")
    root_logger.info(f"Log file: {config.file or 'console only'}")
    root_logger.info(f"Log level: {config.level}")
    root_logger.info(f"JSON formatting: {config.json}")
    
    return root_logger


def get_job_logger(name: str, job_id: str, **extra_context) -> JobLogAdapter:
    """
    Get a logger that tags all messages with a crawl job id.
    
    Args:
        name: Logger name
        job_id: Crawl job id
        **extra_context: Additional context fields to include in all log messages
        
    Returns:
        JobLogAdapter instance
    """
    logger = logging.getLogger(name)
    return JobLogAdapter(logger, {'job_id': job_id, **extra_context})

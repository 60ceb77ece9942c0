"""
Configuration management for the crawl job service.
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, fields


RATE_LIMIT_SCOPES = ('job', 'global')
STATUS_ERROR_POLICIES = ('error', 'page')

DEFAULT_USER_AGENT = "crawljobs/1.0 (+https://github.com/crawljobs)"


@dataclass
class CrawlerConfig:
    """Configuration for fetch and worker behavior."""
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = 30.0
    max_redirects: int = 10
    max_response_bytes: int = 10 * 1024 * 1024
    workers_per_job: int = 4
    rate_limit_scope: str = 'job'
    global_rate_per_second: float = 2.0
    burst: float = 1.0
    status_error_policy: str = 'error'


@dataclass
class ServerConfig:
    """Configuration for the HTTP control surface."""
    host: str = '0.0.0.0'
    port: int = 8080


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = 'INFO'
    file: Optional[str] = None
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    metrics_enabled: bool = True


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _build_section(section_cls, data: Optional[Dict[str, Any]], name: str):
    """Build a config section, rejecting keys the section does not know."""
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    known = {f.name for f in fields(section_cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in config section '{name}': {sorted(unknown)}")
    return section_cls(**data)


class ConfigManager:
    """Manages configuration loading and validation."""
    
    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        self._config: Optional[Config] = None
    
    def load_config(self) -> Config:
        """Load configuration from a YAML file, then apply environment overrides."""
        config_data: Dict[str, Any] = {}
        if self.config_path is not None:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")
            
            with open(self.config_path, 'r') as file:
                config_data = yaml.safe_load(file) or {}
        
        self._config = Config(
            crawler=_build_section(CrawlerConfig, config_data.get('crawler'), 'crawler'),
            server=_build_section(ServerConfig, config_data.get('server'), 'server'),
            logging=_build_section(LoggingConfig, config_data.get('logging'), 'logging'),
            monitoring=_build_section(MonitoringConfig, config_data.get('monitoring'), 'monitoring'),
        )
        
        self._apply_env_overrides()
        self._validate_config()
        return self._config
    
    def _apply_env_overrides(self):
        """Apply PORT and LOG_LEVEL from the environment."""
        port = os.environ.get('PORT')
        if port:
            try:
                self._config.server.port = int(port)
            except ValueError:
                raise ValueError(f"PORT must be an integer, got {port!r}")
        
        log_level = os.environ.get('LOG_LEVEL')
        if log_level:
            self._config.logging.level = log_level
    
    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")
        
        crawler = self._config.crawler
        
        if crawler.workers_per_job < 1:
            raise ValueError("workers_per_job must be at least 1")
        
        if crawler.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        
        if crawler.max_redirects < 0:
            raise ValueError("max_redirects must be non-negative")
        
        if crawler.max_response_bytes <= 0:
            raise ValueError("max_response_bytes must be positive")
        
        if crawler.burst < 1:
            raise ValueError("burst must be at least 1")
        
        if crawler.global_rate_per_second <= 0:
            raise ValueError("global_rate_per_second must be positive")
        
        if crawler.rate_limit_scope not in RATE_LIMIT_SCOPES:
            raise ValueError(f"rate_limit_scope must be one of {RATE_LIMIT_SCOPES}")
        
        if crawler.status_error_policy not in STATUS_ERROR_POLICIES:
            raise ValueError(f"status_error_policy must be one of {STATUS_ERROR_POLICIES}")
        
        if not 0 < self._config.server.port < 65536:
            raise ValueError("server port must be between 1 and 65535")
        
        if not isinstance(getattr(logging, str(self._config.logging.level).upper(), None), int):
            raise ValueError(f"Unknown log level: {self._config.logging.level}")
        
        logging.getLogger(__name__).debug("Configuration validation passed")
    
    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from file, falling back to $CRAWLJOBS_CONFIG."""
    global config_manager
    config_manager = ConfigManager(config_path or os.environ.get('CRAWLJOBS_CONFIG'))
    return config_manager.load_config()

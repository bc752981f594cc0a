"""
Configuration management for the crawl service.
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field

from ..errors import ConfigError


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    user_agent: str = "CrawlService"
    request_timeout: int = 10
    robots_timeout: int = 5
    global_rate_limit: int = 10
    per_domain_rate_limit: int = 5
    retry_attempts: int = 4
    retry_delays: List[float] = field(default_factory=lambda: [10, 20, 60])
    max_cache_entries: int = 10000
    max_content_bytes: int = 10 * 1024 * 1024
    abort_on_link_failure: bool = True


@dataclass
class RedisConfig:
    """Configuration for Redis."""
    url: str = "redis://127.0.0.1:6379"
    queue_name: str = "crawlQueue"
    result_prefix: str = "result:"
    result_ttl: int = 86400
    job_attempts: int = 4
    poll_interval: float = 1.0


@dataclass
class StorageConfig:
    """Configuration for result storage."""
    type: str = "redis"


@dataclass
class ApiConfig:
    """Configuration for the HTTP front end."""
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class WorkerConfig:
    """Configuration for the worker pool."""
    concurrency: Optional[int] = None
    stats_interval: float = 30.0


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/crawler.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


# Environment variables that override values from the YAML file
ENV_OVERRIDES = {
    'PORT': ('api', 'port', int),
    'REDIS_URL': ('redis', 'url', str),
    'GLOBAL_RATE_LIMIT': ('crawler', 'global_rate_limit', int),
    'PER_DOMAIN_RATE_LIMIT': ('crawler', 'per_domain_rate_limit', int),
}


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml", environ: Optional[Dict[str, str]] = None):
        self.config_path = Path(config_path)
        self.environ = os.environ if environ is None else environ
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file and apply environment overrides."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            config_data = yaml.safe_load(file) or {}

        if not isinstance(config_data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {self.config_path}")

        self._config = self.build_config(config_data)
        self._apply_env_overrides()
        self._validate_config()
        return self._config

    def build_config(self, config_data: Dict[str, Any]) -> Config:
        """Build a Config from parsed YAML data, using defaults for missing sections."""
        try:
            return Config(
                crawler=CrawlerConfig(**(config_data.get('crawler') or {})),
                redis=RedisConfig(**(config_data.get('redis') or {})),
                storage=StorageConfig(**(config_data.get('storage') or {})),
                api=ApiConfig(**(config_data.get('api') or {})),
                worker=WorkerConfig(**(config_data.get('worker') or {})),
                logging=LoggingConfig(**(config_data.get('logging') or {})),
                monitoring=MonitoringConfig(**(config_data.get('monitoring') or {})),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def _apply_env_overrides(self):
        """Apply environment variable overrides on top of the file values."""
        for env_name, (section, key, cast) in ENV_OVERRIDES.items():
            raw = self.environ.get(env_name)
            if raw in (None, ''):
                continue
            try:
                value = cast(raw)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {env_name}: {raw!r}") from e
            setattr(getattr(self._config, section), key, value)

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ConfigError("Configuration not loaded")

        crawler = self._config.crawler

        if crawler.global_rate_limit < 1:
            raise ConfigError("global_rate_limit must be at least 1")

        if crawler.per_domain_rate_limit < 1:
            raise ConfigError("per_domain_rate_limit must be at least 1")

        if crawler.retry_attempts < 1:
            raise ConfigError("retry_attempts must be at least 1")

        if not crawler.retry_delays or any(d < 0 for d in crawler.retry_delays):
            raise ConfigError("retry_delays must be a non-empty list of non-negative numbers")

        if crawler.max_cache_entries < 1:
            raise ConfigError("max_cache_entries must be at least 1")

        if self._config.redis.job_attempts < 1:
            raise ConfigError("job_attempts must be at least 1")

        if self._config.redis.result_ttl < 1:
            raise ConfigError("result_ttl must be positive")

        if self._config.worker.concurrency is not None and self._config.worker.concurrency < 1:
            raise ConfigError("worker concurrency must be at least 1")

        # Validate storage type
        if self._config.storage.type not in ['redis', 'memory']:
            raise ConfigError("Storage type must be 'redis' or 'memory'")

        logging.getLogger(__name__).info("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ConfigError("Configuration not loaded. Call load_config() first.")
        return self._config


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config()

"""
Application configuration.

Settings are read from a YAML file (backend/config/app_config.yaml by default,
or the path in RAGCHAT_CONFIG) and can be overridden by environment variables.
A missing file falls back to the built-in defaults.
"""

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "app_config.yaml"


@dataclass
class DatabaseConfig:
    """Storage settings."""
    url: str = "sqlite:///./ragchat.db"
    echo: bool = False


@dataclass
class RateLimitConfig:
    """Token bucket settings applied to every caller key."""
    enabled: bool = True
    capacity: int = 10
    refill_tokens: int = 10
    refill_period_seconds: float = 60.0
    path_prefix: str = "/api/"

    @property
    def refill_rate(self) -> float:
        """Tokens added per second."""
        return self.refill_tokens / self.refill_period_seconds


@dataclass
class PaginationConfig:
    """Defaults for paginated listings."""
    session_page_size: int = 10
    message_page_size: int = 20
    latest_limit: int = 10
    max_page_size: int = 100


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json_format: bool = False


@dataclass
class AppConfig:
    """Complete application configuration."""
    app_name: str = "RAG Chat Storage"
    app_version: str = "0.1.0"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    """Let environment variables take precedence over the YAML file."""
    config.database.url = os.getenv("DATABASE_URL", config.database.url)
    config.logging.level = os.getenv("LOG_LEVEL", config.logging.level)
    log_format = os.getenv("LOG_FORMAT")
    if log_format:
        config.logging.json_format = log_format.lower() == "json"

    rate_limit = config.rate_limit
    rate_limit.enabled = _env_bool("RATE_LIMIT_ENABLED", rate_limit.enabled)
    rate_limit.capacity = int(os.getenv("RATE_LIMIT_CAPACITY", rate_limit.capacity))
    rate_limit.refill_tokens = int(os.getenv("RATE_LIMIT_REFILL_TOKENS", rate_limit.refill_tokens))
    rate_limit.refill_period_seconds = float(
        os.getenv("RATE_LIMIT_REFILL_PERIOD", rate_limit.refill_period_seconds)
    )
    return config


def load_config(path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from YAML, then apply environment overrides.

    Args:
        path: Config file to read. Defaults to RAGCHAT_CONFIG or the bundled file.

    Returns:
        Populated AppConfig
    """
    if path is None:
        path = Path(os.getenv("RAGCHAT_CONFIG", str(DEFAULT_CONFIG_PATH)))

    if not path.exists():
        logger.warning("Config file not found, using defaults", path=str(path))
        return _apply_env_overrides(AppConfig())

    with open(path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    app_cfg = raw_config.get('app', {})
    db_cfg = raw_config.get('database', {})
    rl_cfg = raw_config.get('rate_limit', {})
    page_cfg = raw_config.get('pagination', {})
    log_cfg = raw_config.get('logging', {})

    config = AppConfig(
        app_name=app_cfg.get('name', "RAG Chat Storage"),
        app_version=app_cfg.get('version', "0.1.0"),
        database=DatabaseConfig(
            url=db_cfg.get('url', "sqlite:///./ragchat.db"),
            echo=db_cfg.get('echo', False),
        ),
        rate_limit=RateLimitConfig(
            enabled=rl_cfg.get('enabled', True),
            capacity=rl_cfg.get('capacity', 10),
            refill_tokens=rl_cfg.get('refill_tokens', 10),
            refill_period_seconds=rl_cfg.get('refill_period_seconds', 60.0),
            path_prefix=rl_cfg.get('path_prefix', "/api/"),
        ),
        pagination=PaginationConfig(
            session_page_size=page_cfg.get('session_page_size', 10),
            message_page_size=page_cfg.get('message_page_size', 20),
            latest_limit=page_cfg.get('latest_limit', 10),
            max_page_size=page_cfg.get('max_page_size', 100),
        ),
        logging=LoggingConfig(
            level=log_cfg.get('level', "INFO"),
            json_format=log_cfg.get('json_format', False),
        ),
    )

    logger.info("Configuration loaded", config_path=str(path))
    return _apply_env_overrides(config)


_config: Optional[AppConfig] = None
_config_lock = threading.Lock()


def get_config() -> AppConfig:
    """Get the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config

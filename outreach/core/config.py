# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Outreach Engine Configuration - Single source of truth.
YAML is king. Env vars ONLY for secrets and the config file location.

- ALL tunables in plain text (configs/outreach.yaml)
- NO hidden state - everything inspectable via `cat`, `grep`
"""

import logging
import os
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from outreach.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = "configs/outreach.yaml"


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable engine configuration.
    All values from YAML. No hidden state.
    """

    # -- Task queue / worker pool --
    worker_concurrency: int = 5
    queue_poll_interval: float = 1.0
    job_retention_seconds: float = 3600.0
    continuation_max_retries: int = 3

    # -- Trigger scheduler --
    scheduler_interval: float = 60.0
    scheduler_batch_limit: int = 50
    default_trigger_interval_hours: float = 24.0

    # -- Engine --
    daily_email_limit: int = 50
    max_node_visits: int = 1
    max_loop_iterations: int = 1000
    collaborator_timeout: float = 30.0

    # -- HTTP --
    http_timeout: float = 10.0

    # -- Provider retries --
    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_backoff_multiplier: float = 2.0

    # -- Paths --
    executions_path: str = "./data/executions"

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def executions_dir(self) -> Path:
        return Path(self.executions_path)

    def get_gemini_api_key(self) -> Optional[str]:
        """Get Gemini API key from environment"""
        return get_gemini_api_key()


# =============================================================================
# SECRETS - The ONLY thing from environment variables
# =============================================================================

def get_gemini_api_key() -> Optional[str]:
    """API keys cannot be in version control."""
    return os.getenv("GEMINI_API_KEY")


# =============================================================================
# LOADER
# =============================================================================

def load_config(path: str = DEFAULT_CONFIG_PATH) -> Config:
    """
    Load configuration from YAML.
    Returns defaults if file doesn't exist.

    Raises:
        ConfigurationError: If the file is not valid YAML or not a mapping
    """
    if not Path(path).exists():
        logger.info(f"Config not found at {path}, using defaults")
        return Config()

    try:
        with open(path) as f:
            y = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config: {e}", config_file=path)

    if not isinstance(y, dict):
        raise ConfigurationError("Config root must be a mapping", config_file=path)

    # Helper to safely navigate nested dicts
    def get(d: dict, *keys, default=None):
        for k in keys:
            if not isinstance(d, dict):
                return default
            d = d.get(k, {})
        return d if d != {} else default

    defaults = Config()

    return Config(
        # Queue
        worker_concurrency=get(y, "queue", "concurrency") or defaults.worker_concurrency,
        queue_poll_interval=get(y, "queue", "poll_interval") or defaults.queue_poll_interval,
        job_retention_seconds=get(y, "queue", "job_retention") or defaults.job_retention_seconds,
        continuation_max_retries=get(
            y, "queue", "continuation_max_retries", default=defaults.continuation_max_retries
        ),

        # Scheduler
        scheduler_interval=get(y, "scheduler", "interval") or defaults.scheduler_interval,
        scheduler_batch_limit=get(y, "scheduler", "batch_limit") or defaults.scheduler_batch_limit,
        default_trigger_interval_hours=(
            get(y, "scheduler", "default_interval_hours") or defaults.default_trigger_interval_hours
        ),

        # Engine
        daily_email_limit=get(y, "engine", "daily_email_limit") or defaults.daily_email_limit,
        max_node_visits=get(y, "engine", "max_node_visits") or defaults.max_node_visits,
        max_loop_iterations=get(y, "engine", "max_loop_iterations") or defaults.max_loop_iterations,
        collaborator_timeout=get(y, "engine", "collaborator_timeout") or defaults.collaborator_timeout,

        # HTTP
        http_timeout=get(y, "http", "timeout") or defaults.http_timeout,

        # Retries
        retry_max_attempts=get(y, "retry", "max_attempts") or defaults.retry_max_attempts,
        retry_initial_delay=get(y, "retry", "initial_delay", default=defaults.retry_initial_delay),
        retry_max_delay=get(y, "retry", "max_delay") or defaults.retry_max_delay,
        retry_backoff_multiplier=get(y, "retry", "backoff_multiplier") or defaults.retry_backoff_multiplier,

        # Paths
        executions_path=get(y, "paths", "executions") or defaults.executions_path,

        # Logging
        log_level=os.getenv("LOG_LEVEL") or get(y, "logging", "level") or defaults.log_level,
        log_format=get(y, "logging", "format") or defaults.log_format,
    )


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        config_path = os.getenv("OUTREACH_CONFIG_PATH", DEFAULT_CONFIG_PATH)
        _config = load_config(config_path)
    return _config


def reload_config() -> Config:
    """Force reload configuration."""
    global _config
    _config = None
    return get_config()

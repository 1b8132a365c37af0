"""
Environment variable overrides for trendforge configuration.
"""

import logging
import os
from typing import Any, Dict

logger = logging.getLogger(__name__)

ENV_CONFIG_PATH = "TRENDFORGE_CONFIG_PATH"
ENV_LOG_LEVEL = "TRENDFORGE_LOG_LEVEL"
ENV_WORKSPACE_DIR = "TRENDFORGE_WORKSPACE_DIR"
ENV_CACHE_DIR = "TRENDFORGE_CACHE_DIR"
ENV_MAX_CONCURRENCY = "TRENDFORGE_MAX_CONCURRENCY"


class EnvironmentManager:
    """Reads the optional TRENDFORGE_* overrides."""

    def get_optional_config_overrides(self) -> Dict[str, str]:
        """Get optional configuration overrides from environment variables."""

        optional_vars = {
            ENV_CONFIG_PATH: os.getenv(ENV_CONFIG_PATH),
            ENV_LOG_LEVEL: os.getenv(ENV_LOG_LEVEL),
            ENV_WORKSPACE_DIR: os.getenv(ENV_WORKSPACE_DIR),
            ENV_CACHE_DIR: os.getenv(ENV_CACHE_DIR),
            ENV_MAX_CONCURRENCY: os.getenv(ENV_MAX_CONCURRENCY),
        }

        return {k: v for k, v in optional_vars.items() if v}

    def apply_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment overrides to raw configuration data in place."""

        overrides = self.get_optional_config_overrides()

        if ENV_LOG_LEVEL in overrides:
            config_data.setdefault("logging", {})["level"] = overrides[ENV_LOG_LEVEL].upper()

        if ENV_WORKSPACE_DIR in overrides:
            config_data.setdefault("workspace", {})["root_dir"] = overrides[ENV_WORKSPACE_DIR]

        if ENV_CACHE_DIR in overrides:
            config_data.setdefault("cache", {})["cache_dir"] = overrides[ENV_CACHE_DIR]

        if ENV_MAX_CONCURRENCY in overrides:
            config_data.setdefault("concurrency", {})["max_concurrency"] = overrides[
                ENV_MAX_CONCURRENCY
            ]

        applied = [name for name in overrides if name != ENV_CONFIG_PATH]
        if applied:
            logger.debug(f"Applied environment overrides: {', '.join(applied)}")
        return config_data

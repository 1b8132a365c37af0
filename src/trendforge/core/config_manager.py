"""
Configuration loading, validation and persistence.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..models.config_models import PipelineConfig
from ..models.error_models import ConfigurationError
from .environment_manager import ENV_CONFIG_PATH, EnvironmentManager
from .yaml_parser import YAMLConfigParser

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".trendforge"


class ConfigurationManager:
    """Loads PipelineConfig from YAML with environment overrides."""

    def __init__(self) -> None:
        self.yaml_parser = YAMLConfigParser()
        self.env_manager = EnvironmentManager()
        self.current_config: Optional[PipelineConfig] = None
        self.config_path: Optional[Path] = None
        self._lock = threading.Lock()

    async def load_config(self, config_path: Optional[Path] = None) -> PipelineConfig:
        """
        Load configuration from file with validation.

        A missing file yields the default configuration (environment
        overrides still apply).

        Raises:
            ConfigurationError: If the file cannot be parsed or validated
        """
        if not config_path:
            config_path = self._get_default_config_path()
        config_path = Path(config_path).expanduser()
        self.config_path = config_path

        if config_path.exists():
            config_data = await self.yaml_parser.load_yaml_config(config_path)
            source = str(config_path)
        else:
            logger.info(f"No configuration file at {config_path}, using defaults")
            config_data = {}
            source = "defaults"

        validated_config = await self.validate_config(config_data)

        with self._lock:
            self.current_config = validated_config

        logger.info(f"Configuration loaded from {source}")
        return validated_config

    async def validate_config(self, config_data: Dict[str, Any]) -> PipelineConfig:
        """Apply environment overrides and validate raw configuration data."""
        data = {k: v for k, v in config_data.items() if v is not None}
        self.env_manager.apply_overrides(data)

        try:
            return PipelineConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

    async def save_config(
        self, config: PipelineConfig, config_path: Optional[Path] = None
    ) -> Path:
        """Save configuration to a commented YAML file."""
        if not config_path:
            config_path = self.config_path or self._get_default_config_path()
        config_path = Path(config_path).expanduser()

        await self.yaml_parser.save_yaml_config(config.model_dump(), config_path)
        return config_path

    async def generate_default_config(
        self, config_path: Optional[Path] = None, force: bool = False
    ) -> Path:
        """
        Write the default configuration file.

        Raises:
            ConfigurationError: If the file exists and `force` is not set
        """
        if not config_path:
            config_path = self._get_default_config_path()
        config_path = Path(config_path).expanduser()

        if config_path.exists() and not force:
            raise ConfigurationError(
                f"Configuration file already exists at {config_path} (use --force to overwrite)"
            )

        saved_path = await self.save_config(PipelineConfig(), config_path)
        logger.info(f"Default configuration generated at {saved_path}")
        return saved_path

    def get_current_config(self) -> Optional[PipelineConfig]:
        with self._lock:
            return self.current_config

    def _get_default_config_path(self) -> Path:
        """Get default configuration file path."""
        env_path = os.getenv(ENV_CONFIG_PATH)
        if env_path:
            return Path(env_path).expanduser()
        return DEFAULT_CONFIG_DIR / "config.yaml"

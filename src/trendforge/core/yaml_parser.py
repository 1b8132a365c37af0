"""
YAML configuration parser with environment variable substitution.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict

import yaml

from ..models.error_models import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_COMMENTS: Dict[str, Dict[str, str]] = {
    "concurrency": {
        "_section_comment": "Worker pool configuration",
        "max_concurrency": "Items analyzed at the same time (1-50)",
        "stop_on_error": "Stop starting new items after the first unexpected failure",
    },
    "retry": {
        "_section_comment": "Retry policy for external calls",
        "max_retries": "Retries after the first attempt (0-10)",
        "base_delay": "Delay before the first retry in seconds, doubled each retry",
    },
    "cache": {
        "_section_comment": "Analysis result cache",
        "ttl_seconds": "Entry time-to-live in seconds",
        "max_size": "Maximum entries kept in memory (oldest evicted first)",
        "persist": "Persist entries as JSON files",
        "cache_dir": "Directory for persisted entries",
        "cleanup_interval_seconds": "Interval of the background expiry sweep",
        "cache_fallback_results": "Also cache results of the fallback tier",
    },
    "workspace": {
        "_section_comment": "Ephemeral analysis workspaces",
        "root_dir": "Directory holding per-item workspaces",
        "max_size_mb": "Workspaces larger than this are rejected",
        "max_file_count": "Maximum source files scanned per workspace",
        "max_file_size_bytes": "Source files at or above this size are skipped",
        "clone_timeout_seconds": "Timeout of the shallow clone",
        "preview_length": "Maximum preview characters per file",
        "max_content_bytes": "Cumulative preview budget handed to deep analysis",
        "stale_after_hours": "Age at which sweeps delete leftover workspaces",
    },
    "history": {
        "_section_comment": "Snapshot history used for trend deltas",
        "path": "History JSON file",
        "retention_days": "Number of daily snapshots kept",
    },
    "logging": {
        "_section_comment": "Logging configuration",
        "level": "Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        "format": "Format of records written to the log file",
        "file_path": "Log file path (leave empty for console only)",
        "max_file_size_mb": "Maximum log file size in MB before rotation",
        "backup_count": "Number of rotated log files to keep",
    },
}


class YAMLConfigParser:
    """YAML configuration parser with environment variable substitution."""

    def __init__(self) -> None:
        self.env_var_pattern = re.compile(r"\$\{([^}]+)\}")

    async def load_yaml_config(self, config_path: Path) -> Dict[str, Any]:
        """Load and parse YAML configuration file with environment substitution."""

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, encoding="utf-8") as f:
                yaml_content = f.read()
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}") from e

        substituted_content = self._substitute_environment_variables(yaml_content)

        try:
            config_data = yaml.safe_load(substituted_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e

        if config_data is None:
            config_data = {}
        if not isinstance(config_data, dict):
            raise ConfigurationError("Configuration file must contain a YAML dictionary")

        logger.debug(f"Loaded configuration from {config_path}")
        return config_data

    async def save_yaml_config(
        self, config_data: Dict[str, Any], config_path: Path
    ) -> None:
        """Save configuration data to a commented YAML file atomically."""

        config_path.parent.mkdir(parents=True, exist_ok=True)
        yaml_content = self._generate_commented_yaml(config_data)
        temp_path = config_path.with_suffix(".tmp")

        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(yaml_content)
            temp_path.replace(config_path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

        logger.info(f"Saved configuration to {config_path}")

    def _substitute_environment_variables(self, content: str) -> str:
        """Substitute ${VAR} and ${VAR:default} outside comment lines."""

        def replace_env_var(match: Any) -> str:
            var_name = match.group(1)

            if ":" in var_name:
                var_name, default_value = var_name.split(":", 1)
                return os.getenv(var_name, default_value)

            env_value = os.getenv(var_name)
            if env_value is None:
                raise ConfigurationError(f"Environment variable '{var_name}' is not set")
            return env_value

        processed_lines = []
        for line in content.split("\n"):
            if line.strip().startswith("#"):
                processed_lines.append(line)
                continue
            processed_lines.append(self.env_var_pattern.sub(replace_env_var, line))

        return "\n".join(processed_lines)

    def _generate_commented_yaml(self, config_data: Dict[str, Any]) -> str:
        """Generate YAML with a comment above every known key."""

        lines = [
            "# trendforge configuration",
            "# Generated automatically - modify as needed",
            "# Environment variables can be substituted using ${VAR} or ${VAR:default}",
            "",
        ]

        for section_name, section_data in config_data.items():
            if not isinstance(section_data, dict):
                lines.append(f"{section_name}: {_format_scalar(section_data)}")
                lines.append("")
                continue

            section_comments = CONFIG_COMMENTS.get(section_name, {})
            section_comment = section_comments.get(
                "_section_comment", f"{section_name} configuration"
            )
            lines.append(f"# {section_comment}")
            lines.append(f"{section_name}:")

            for key, value in section_data.items():
                comment = section_comments.get(key)
                if comment:
                    lines.append(f"  # {comment}")
                lines.append(f"  {key}: {_format_scalar(value)}")

            lines.append("")

        return "\n".join(lines)


def _format_scalar(value: Any) -> str:
    dumped = yaml.safe_dump(value, default_flow_style=True, width=float("inf")).strip()
    if dumped.endswith("..."):
        dumped = dumped[:-3].strip()
    return dumped

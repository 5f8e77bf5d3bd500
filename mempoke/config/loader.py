"""Configuration loader with YAML parsing and environment variable substitution."""

import yaml
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional
from .models import MempokeConfig


class ConfigLoader:
    """Load and validate mempoke configuration."""

    @staticmethod
    def load_from_file(config_path: str) -> MempokeConfig:
        """
        Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            MempokeConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
            pydantic.ValidationError: If configuration validation fails
        """
        return MempokeConfig(**ConfigLoader._read_file(config_path))

    @staticmethod
    def load(
        config_path: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None
    ) -> MempokeConfig:
        """
        Load configuration from an optional file plus command-line overrides.

        Args:
            config_path: Optional path to YAML configuration file
            overrides: Dotted keys (e.g. "discovery.tag") mapped to values;
                None values are ignored

        Returns:
            MempokeConfig: Validated configuration object
        """
        raw_config = ConfigLoader._read_file(config_path) if config_path else {}

        for dotted_key, value in (overrides or {}).items():
            if value is None:
                continue
            ConfigLoader._set_dotted(raw_config, dotted_key, value)

        return MempokeConfig(**raw_config)

    @staticmethod
    def _read_file(config_path: str) -> Dict[str, Any]:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        if not isinstance(raw_config, dict):
            raise ValueError(f"Configuration root must be a mapping: {config_path}")

        return ConfigLoader._substitute_env_vars(raw_config)

    @staticmethod
    def _set_dotted(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
        """Set ``value`` at ``dotted_key`` creating intermediate sections."""
        *sections, leaf = dotted_key.split('.')
        for section in sections:
            target = target.setdefault(section, {})
        target[leaf] = value

    @staticmethod
    def _substitute_env_vars(obj: Any) -> Any:
        """
        Recursively substitute ${ENV_VAR} placeholders with environment values.

        Args:
            obj: Object to process (str, dict, list, or primitive)

        Returns:
            Object with environment variables substituted
        """
        if isinstance(obj, str):
            pattern = r'\$\{(\w+)\}'
            return re.sub(pattern, lambda m: os.getenv(m.group(1), ''), obj)

        elif isinstance(obj, dict):
            return {k: ConfigLoader._substitute_env_vars(v) for k, v in obj.items()}

        elif isinstance(obj, list):
            return [ConfigLoader._substitute_env_vars(item) for item in obj]

        return obj

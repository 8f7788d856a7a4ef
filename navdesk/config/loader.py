"""
Configuration loader with environment variable handling.

Loads configuration from:
1. config.yaml (main config)
2. .env.local (loaded into process env)
3. Environment variables (highest priority)
"""

import os
from pathlib import Path
from typing import Dict, Any, Callable
from dotenv import load_dotenv
import yaml


# Environment variable -> (config section or None for top level, key)
ENV_OVERRIDES: Dict[str, tuple] = {
    "NAVDESK_RISK_FREE_RATE": ("pricing", "risk_free_rate"),
    "NAVDESK_SEED": ("market_data", "seed"),
    "NAVDESK_TICK_INTERVAL": ("monitor", "tick_interval_seconds"),
    "NAVDESK_MARKET_TZ": ("monitor", "market_timezone"),
    "NAVDESK_LOG_LEVEL": ("logging", "log_level"),
    "NAVDESK_CONSOLE_LEVEL": ("logging", "console_level"),
    "NAVDESK_LOG_DIR": ("logging", "log_dir"),
    "NAVDESK_POSITIONS_FILE": (None, "positions_file"),
    "NAVDESK_SECURITIES_FILE": (None, "securities_file"),
}


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Priority (highest to lowest):
    1. OS Environment variables
    2. .env.local file
    3. config.yaml
    """

    def __init__(self, config_dir: Path = Path("config")):
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "config.yaml"
        self.secrets_file = self.config_dir / ".env.local"

    @classmethod
    def for_file(cls, config_file: Path) -> "ConfigLoader":
        """Loader for an explicit config file path (its directory holds .env.local)."""
        config_file = Path(config_file)
        loader = cls(config_file.parent)
        loader.config_file = config_file
        return loader

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources.

        Returns:
            Merged configuration dictionary

        Raises:
            FileNotFoundError: If config.yaml doesn't exist
            ValueError: If the file does not hold a mapping
        """
        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        with open(self.config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise ValueError(f"Configuration file must contain a mapping: {self.config_file}")

        # Do NOT override already-set OS env vars.
        if self.secrets_file.exists():
            load_dotenv(self.secrets_file, override=False)

        self._apply_env_overrides(config)
        return config

    @staticmethod
    def _apply_env_overrides(config: Dict[str, Any], getenv: Callable[[str], Any] = os.getenv) -> None:
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = getenv(env_name)
            if value is None or value.strip() == "":
                continue
            if section is None:
                config[key] = value.strip()
            else:
                target = config.get(section)
                if not isinstance(target, dict):
                    target = {}
                    config[section] = target
                target[key] = value.strip()

    def load_and_validate(self):
        """
        Load and validate configuration.

        Returns:
            ConfigSchema instance with file paths anchored at the config
            file's parent directory's parent (the project root)

        Raises:
            ValueError: If validation fails
        """
        from .schema import ConfigSchema

        config_dict = self.load()

        try:
            schema = ConfigSchema(**config_dict)
        except Exception as e:
            raise ValueError(f"Configuration validation failed: {e}") from e

        return schema.resolve_paths(self.config_dir.resolve().parent)


def load_config(config_path: Path = Path("config/config.yaml")):
    """
    Convenience function to load and validate configuration.

    Args:
        config_path: Path to config.yaml

    Returns:
        Validated ConfigSchema instance
    """
    return ConfigLoader.for_file(Path(config_path)).load_and_validate()

"""
Configuration loader with environment variable handling.

Loads configuration from:
1. config.yaml (main config, optional)
2. .env.local (loaded into process env)
3. SWAPDESK_* environment variables (highest priority)
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError


# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "SWAPDESK_STORE_DB_PATH": ("store", "db_path"),
    "SWAPDESK_QUEUE_DB_PATH": ("queue", "db_path"),
    "SWAPDESK_WORKER_CONCURRENCY": ("worker", "concurrency"),
    "SWAPDESK_WORKER_MAX_ATTEMPTS": ("worker", "max_attempts"),
    "SWAPDESK_WORKER_BASE_DELAY_SECONDS": ("worker", "base_delay_seconds"),
    "SWAPDESK_ROUTER_SEED": ("router", "seed"),
    "SWAPDESK_ROUTER_TOLERATE_VENUE_FAILURES": ("router", "tolerate_venue_failures"),
    "SWAPDESK_STREAM_HOST": ("stream", "host"),
    "SWAPDESK_STREAM_PORT": ("stream", "port"),
    "SWAPDESK_LOG_DIR": ("logging", "log_dir"),
    "SWAPDESK_LOG_LEVEL": ("logging", "log_level"),
    "SWAPDESK_CONSOLE_LEVEL": ("logging", "console_level"),
}


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Priority (highest to lowest):
    1. OS Environment variables
    2. .env.local file
    3. config.yaml
    4. Schema defaults
    """

    def __init__(self, config_dir: Path = Path("config"), environ: Optional[Mapping[str, str]] = None):
        self.config_dir = config_dir
        self.config_file = config_dir / "config.yaml"
        self.env_file = config_dir / ".env.local"
        self._environ = environ

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources.

        A missing config.yaml is not an error: every section has defaults.

        Returns:
            Merged configuration dictionary

        Raises:
            ValueError: If config.yaml is not a mapping
        """
        config: Dict[str, Any] = {}

        # 1) Base config from YAML
        if self.config_file.exists():
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
            if data is not None:
                if not isinstance(data, dict):
                    raise ValueError(f"Configuration root must be a mapping: {self.config_file}")
                config = data

        # 2) .env.local; never override already-set OS env vars
        if self._environ is None and self.env_file.exists():
            load_dotenv(self.env_file, override=False)

        # 3) SWAPDESK_* overrides
        environ = os.environ if self._environ is None else self._environ
        for var, (section, key) in ENV_OVERRIDES.items():
            value = environ.get(var)
            if value is None or value.strip() == "":
                continue
            block = config.setdefault(section, {})
            if block is None:
                block = config[section] = {}
            block[key] = value.strip()

        return config

    def load_and_validate(self):
        """
        Load and validate configuration.

        Returns:
            ConfigSchema instance
        """
        from .schema import ConfigSchema

        config_dict = self.load()

        try:
            return ConfigSchema(**config_dict)
        except PydanticValidationError as e:
            raise ValueError(f"Configuration validation failed: {e}") from e

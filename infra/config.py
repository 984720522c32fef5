"""
Configuration Manager
---------------------
Loads client configuration from YAML with environment variable overrides.

Precedence: D2L_* environment variables > config file > defaults.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging
import os

import yaml

from api.client import D2LClientConfig
from api.rate_limiter import RateLimitConfig

ENV_PREFIX = "D2L_"
DEFAULT_CONFIG_PATH = Path.home() / ".d2l-client" / "config.yaml"
DEFAULT_BASE_URL = "https://purdue.brightspace.com"


def expand_path(value: Union[str, Path]) -> Path:
    """Expand a leading ~ to the user's home directory."""
    return Path(value).expanduser()


class ConfigManager:
    """
    Centralized configuration management.
    Loads configuration from YAML with environment variable overrides.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self._config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._config: Dict[str, Any] = {}
        self._logger = logging.getLogger("d2l.infra.config")

        self._load_config()

    @property
    def path(self) -> Path:
        return self._config_path

    def _load_config(self) -> None:
        """Load configuration from file."""
        if not self._config_path.exists():
            self._logger.debug(f"No config file at {self._config_path}, using environment and defaults")
            self._config = {}
            return

        with open(self._config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {self._config_path} must contain a mapping")

        self._config = data
        self._logger.debug(f"Loaded config from {self._config_path}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.
        Supports dot notation: 'section.key'
        Environment variables override file config.
        """
        env_key = f"{ENV_PREFIX}{key.upper().replace('.', '_')}"
        env_value = os.getenv(env_key)
        if env_value is not None and env_value != "":
            return env_value

        parts = key.split(".")
        value = self._config

        for part in parts:
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get an entire configuration section."""
        return self._config.get(section, {}) or {}

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()


@dataclass
class ClientSettings:
    """Resolved settings for the client runtime."""
    base_url: str = DEFAULT_BASE_URL
    session_dir: Path = field(default_factory=lambda: Path.home() / ".d2l-session")
    token_ttl: int = 3600  # Seconds a handed-over credential is trusted for
    request_timeout: float = 30.0
    rate_limit_capacity: int = 10
    rate_limit_refill_per_second: float = 3.0
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None) -> "ClientSettings":
        """Resolve settings from environment, config file and defaults."""
        config = ConfigManager(config_path)
        defaults = cls()

        session_dir = expand_path(config.get("session_dir", defaults.session_dir))
        log_dir = config.get("log_dir")

        try:
            return cls(
                base_url=str(config.get("base_url", defaults.base_url)).rstrip("/"),
                session_dir=session_dir,
                token_ttl=int(config.get("token_ttl", defaults.token_ttl)),
                request_timeout=float(config.get("request_timeout", defaults.request_timeout)),
                rate_limit_capacity=int(config.get("rate_limit.capacity", defaults.rate_limit_capacity)),
                rate_limit_refill_per_second=float(
                    config.get("rate_limit.refill_per_second", defaults.rate_limit_refill_per_second)
                ),
                log_level=str(config.get("log_level", defaults.log_level)).upper(),
                log_dir=expand_path(log_dir) if log_dir else session_dir / "logs",
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid configuration value: {e}") from e

    def client_config(self) -> D2LClientConfig:
        """Build the API client configuration."""
        return D2LClientConfig(
            base_url=self.base_url,
            timeout_seconds=self.request_timeout,
            rate_limit=RateLimitConfig(
                capacity=self.rate_limit_capacity,
                refill_per_second=self.rate_limit_refill_per_second,
            ),
        )

"""
Bot configuration.

Settings are read from an optional YAML file (REPOSIGNAL_CONFIG) and then
overridden by environment variables. The backend credential is mandatory.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, Mapping

import yaml

logger = logging.getLogger("config")

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------
DEFAULT_BACKEND_URL = "http://localhost:5000"
DEFAULT_GITHUB_API_BASE = "https://api.github.com"
DEFAULT_CLEANUP_STATE_FILE = Path("data/cleanup_queue.json")
DEFAULT_CLEANUP_CONCURRENCY = 5
DEFAULT_CLEANUP_POLL_INTERVAL = 1.0
DEFAULT_HTTP_TIMEOUT = 30.0

# Environment variable -> settings field
ENV_OVERRIDES = {
    "BACKEND_URL": "backend_url",
    "BOT_API_KEY": "bot_api_key",
    "GITHUB_API_BASE": "github_api_base",
    "GITHUB_TOKEN": "github_token",
    "GITHUB_APP_ID": "github_app_id",
    "GITHUB_APP_PRIVATE_KEY": "github_app_private_key",
    "CLEANUP_STATE_FILE": "cleanup_state_file",
    "CLEANUP_CONCURRENCY": "cleanup_concurrency",
    "CLEANUP_POLL_INTERVAL": "cleanup_poll_interval",
    "HTTP_TIMEOUT": "http_timeout",
}


class ConfigurationError(Exception):
    """Raised when required settings are missing or malformed."""


@dataclass
class BotSettings:
    """Runtime settings for the bot process."""
    bot_api_key: str
    backend_url: str = DEFAULT_BACKEND_URL
    github_api_base: str = DEFAULT_GITHUB_API_BASE
    github_token: Optional[str] = None
    github_app_id: Optional[str] = None
    github_app_private_key: Optional[str] = None
    cleanup_state_file: Path = field(default_factory=lambda: DEFAULT_CLEANUP_STATE_FILE)
    cleanup_concurrency: int = DEFAULT_CLEANUP_CONCURRENCY
    cleanup_poll_interval: float = DEFAULT_CLEANUP_POLL_INTERVAL
    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view with credentials redacted."""
        return {
            "backend_url": self.backend_url,
            "bot_api_key": "***" if self.bot_api_key else None,
            "github_api_base": self.github_api_base,
            "github_token": "***" if self.github_token else None,
            "github_app_id": self.github_app_id,
            "github_app_private_key": "***" if self.github_app_private_key else None,
            "cleanup_state_file": str(self.cleanup_state_file),
            "cleanup_concurrency": self.cleanup_concurrency,
            "cleanup_poll_interval": self.cleanup_poll_interval,
            "http_timeout": self.http_timeout,
        }


def _load_yaml(config_path: Path) -> Dict[str, Any]:
    """Load the YAML settings file, returning an empty mapping if absent."""
    if not config_path.exists():
        logger.warning(f"Config file not found: {config_path}")
        return {}
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return data


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    try:
        if name == "cleanup_state_file":
            return Path(value)
        if name == "cleanup_concurrency":
            return int(value)
        if name in ("cleanup_poll_interval", "http_timeout"):
            return float(value)
        if name == "github_app_private_key":
            # single-line env values carry PEM newlines escaped
            return str(value).replace("\\n", "\n")
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
    return str(value)


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BotSettings:
    """
    Build BotSettings from YAML file and environment.

    Precedence: environment > YAML file > defaults.

    Raises:
        ConfigurationError: if BOT_API_KEY is missing or a value is malformed
    """
    env = os.environ if environ is None else environ

    if config_path is None and env.get("REPOSIGNAL_CONFIG"):
        config_path = Path(env["REPOSIGNAL_CONFIG"])

    values: Dict[str, Any] = {}
    if config_path is not None:
        for key, value in _load_yaml(config_path).items():
            if key in BotSettings.__dataclass_fields__:
                values[key] = _coerce(key, value)
            else:
                logger.warning(f"Ignoring unknown config key: {key}")

    for env_name, field_name in ENV_OVERRIDES.items():
        if env.get(env_name):
            values[field_name] = _coerce(field_name, env[env_name])

    if not values.get("bot_api_key"):
        raise ConfigurationError("BOT_API_KEY environment variable is required")

    if values.get("cleanup_concurrency") is not None and values["cleanup_concurrency"] < 1:
        raise ConfigurationError("cleanup_concurrency must be at least 1")

    if bool(values.get("github_app_id")) != bool(values.get("github_app_private_key")):
        raise ConfigurationError("GITHUB_APP_ID and GITHUB_APP_PRIVATE_KEY must be set together")

    settings = BotSettings(**values)
    logger.info(f"Settings loaded: {settings.to_dict()}")
    return settings

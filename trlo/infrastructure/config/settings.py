"""Provides functions for loading and accessing configuration settings.

Supports loading from a YAML configuration file (~/.trlo/config.yaml), a
.env file and environment variables. Nested YAML keys are addressed with
dotted paths (e.g. 'batch.concurrency'); the matching environment variable
is TRLO_BATCH_CONCURRENCY.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from trlo.domain.models.batch import BatchOptions
from trlo.domain.models.common import ApiKey, ApiToken, BackoffPolicy, RateLimitPolicy

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".trlo"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "TRLO_"

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None,
                       force: bool = False) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values passed to the getters

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug(".env file not found at or above current directory.")

    # 3. Environment Variables (Highest priority) are handled in get_config

    _loaded = True
    logger.debug("Configuration loading process completed.")


def _env_name(key: str) -> str:
    return ENV_PREFIX + key.upper().replace(".", "_").replace("-", "_")


def _coerce(value: str) -> Any:
    """Converts common scalar spellings found in environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        if "." in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value


def _lookup_nested(key: str) -> Any:
    if key in _config:
        return _config[key]
    node: Any = _config
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by (dotted) key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (TRLO_ + key upper-cased, dots as underscores)
    3. YAML config
    4. Default value

    Args:
        key: The configuration key, e.g. 'batch.concurrency'
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = _env_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    value = _lookup_nested(key)
    if value is not None:
        return value

    logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


# --- Convenience Functions ---

def _first_present(*candidates: Any) -> Optional[str]:
    for candidate in candidates:
        if candidate is not None and str(candidate).strip():
            return str(candidate).strip()
    return None


def get_trello_api_key() -> Optional[ApiKey]:
    """Gets the Trello API key (TRELLO_API_KEY, then trello.api_key)."""
    key = _first_present(_test_config.get("trello.api_key"), os.environ.get("TRELLO_API_KEY"),
                         get_config("trello.api_key"))
    return ApiKey(key) if key else None


def get_trello_token() -> Optional[ApiToken]:
    """Gets the Trello API token (TRELLO_TOKEN, then trello.token)."""
    token = _first_present(_test_config.get("trello.token"), os.environ.get("TRELLO_TOKEN"),
                           get_config("trello.token"))
    return ApiToken(token) if token else None


def get_trello_base_url() -> str:
    return str(get_config("trello.base_url", "https://api.trello.com/1"))


def get_batch_defaults() -> BatchOptions:
    """Batch options used when neither the document nor the command line sets them."""
    defaults = BatchOptions()
    return BatchOptions(
        concurrency=int(get_config("batch.concurrency", defaults.concurrency)),
        continue_on_error=_as_bool(get_config("batch.continue_on_error", defaults.continue_on_error)),
        dry_run=False,
        timeout_per_operation=get_config("batch.timeout_per_operation", defaults.timeout_per_operation),
    )


def get_max_concurrency() -> int:
    return int(get_config("batch.max_concurrency", 32))


def get_rate_limit_policy() -> RateLimitPolicy:
    return RateLimitPolicy(
        capacity=int(get_config("rate_limit.capacity", 100)),
        refill_rate=float(get_config("rate_limit.refill_rate", 10.0)),
    )


def get_retry_policy() -> BackoffPolicy:
    return BackoffPolicy(
        max_retries=int(get_config("retry.max_retries", 5)),
        initial_delay=float(get_config("retry.initial_delay", 1.0)),
        factor=float(get_config("retry.factor", 2.0)),
        max_delay=float(get_config("retry.max_delay", 60.0)),
        jitter=float(get_config("retry.jitter", 0.5)),
    )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "on")
    return bool(value)


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# Load configuration when the module is imported
load_configuration()

# pos_sync/config.py
# Description: Configuration management for the POS sync engine.
#
# Imports
import copy
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional
#
# Third-Party Imports
import toml
from loguru import logger
#
# Local Imports
#
#######################################################################################################################
#
# Functions:

# --- Path to the configuration file ---
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "pos_sync" / "config.toml"
BASE_DATA_DIR = Path.home() / ".local" / "share" / "pos_sync"

CONFIG_TOML_CONTENT = """
# Configuration for the POS offline sync engine.
# Environment variables POS_API_BASE_URL, POS_API_TOKEN, POS_DB_PATH, POS_DEVICE_ID
# and LOG_LEVEL override the matching keys below.

[general]
# Leave empty to generate and persist a device id on first run.
device_id = ""

[logging]
log_level = "INFO"
log_filename = "pos_sync.log"
metrics_filename = "pos_sync_metrics.json"
# Set to false to log to the console only.
log_to_file = true

[database]
db_path = "~/.local/share/pos_sync/pos_local.db"

[api]
base_url = "http://localhost:8000"
# Session token. Sync passes are refused while this is empty.
token = ""
request_timeout = 30.0
# URL probed by the connectivity check. Defaults to base_url when empty.
connectivity_check_url = ""

[sync]
# Delay after coming back online before a full sync pass runs.
reconnect_debounce_seconds = 1.0
# Delay after queueing a mutation (while online) before a sync pass runs.
enqueue_sync_delay_seconds = 0.5
# Upper bound for one remote call, in seconds.
remote_timeout_seconds = 30.0
# Number of sync passes kept in the history log, at most 20.
history_max_entries = 20
# Synced queue rows older than this are removed by the retention sweep. 0 disables the sweep.
queue_retention_days = 30
# How often `pos-sync --watch` probes the server.
connectivity_poll_seconds = 15.0
"""

try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal CONFIG_TOML_CONTENT: {e}.")
    DEFAULT_CONFIG_FROM_TOML = {}

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "POS_API_BASE_URL": ("api", "base_url"),
    "POS_API_TOKEN": ("api", "token"),
    "POS_DB_PATH": ("database", "db_path"),
    "POS_DEVICE_ID": ("general", "device_id"),
    "LOG_LEVEL": ("logging", "log_level"),
}


def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _get_typed_value(data_dict: Dict, key: str, default: Any, target_type: type = str) -> Any:
    """Helper to get value from dict and cast to type, with logging for type errors."""
    value = data_dict.get(key, default)
    if value is default and default is not None:
        return value
    if value is None:
        return None

    try:
        if target_type == bool:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ['true', '1', 't', 'y', 'yes']
        if target_type == Path:
            return Path(value).expanduser() if value else default
        return target_type(value)
    except (ValueError, TypeError) as e:
        logger.warning(f"Config key '{key}' has value '{value}' which could not be converted to {target_type}. Using default: '{default}'. Error: {e}")
        return default


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    for env_var, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            config.setdefault(section, {})[key] = value
            logger.debug(f"Config [{section}].{key} overridden by environment variable {env_var}")
    return config


def get_config_path() -> Path:
    """The config file location; POS_SYNC_CONFIG points it elsewhere."""
    override = os.environ.get("POS_SYNC_CONFIG")
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH


# --- Primary Configuration Loading Logic ---
_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_settings(force_reload: bool = False, config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Loads settings from the TOML config file, merged over the built-in defaults,
    with environment variable overrides applied last.

    If the file doesn't exist, it's created with default values.

    Args:
        force_reload: Ignore the cached result and read the file again.
        config_path: Explicit config file. Defaults to `get_config_path()`.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload and config_path is None:
        return _CONFIG_CACHE

    path = config_path or get_config_path()
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not path.exists():
        logger.info(f"Config file not found at {path}. Creating with default values.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
            logger.info(f"Created default config file at {path}")
        except OSError as e:
            logger.error(f"Could not create default config file {path}: {e}. Using internal defaults.")
    else:
        logger.debug(f"Loading config from: {path}")
        try:
            with open(path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {path}: {e}. Using internal defaults.")

    _CONFIG_CACHE = _apply_env_overrides(loaded_config)
    logger.debug(f"load_settings returning config with top-level keys: {list(_CONFIG_CACHE.keys())}")
    return _CONFIG_CACHE


def save_settings(settings: Dict[str, Any], config_path: Optional[Path] = None) -> Path:
    """Writes `settings` to the config file and refreshes the cache."""
    global _CONFIG_CACHE
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        toml.dump(settings, f)
    _CONFIG_CACHE = None
    logger.info(f"Saved settings to {path}")
    return path


def get_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = load_settings()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


# --- Typed getters ---

def get_db_path(settings: Optional[Dict[str, Any]] = None) -> Path:
    settings = settings if settings is not None else load_settings()
    default_path = BASE_DATA_DIR / "pos_local.db"
    db_path = _get_typed_value(settings.get("database", {}), "db_path", default_path, Path)
    return Path(db_path).expanduser().resolve()


def get_log_file_paths(settings: Optional[Dict[str, Any]] = None) -> Dict[str, Optional[Path]]:
    """Application and metrics log paths, both placed beside the database. None when file logging is off."""
    settings = settings if settings is not None else load_settings()
    logging_section = settings.get("logging", {})
    if not _get_typed_value(logging_section, "log_to_file", True, bool):
        return {"app": None, "metrics": None}
    log_dir = get_db_path(settings).parent / "Logs"
    return {
        "app": log_dir / _get_typed_value(logging_section, "log_filename", "pos_sync.log"),
        "metrics": log_dir / _get_typed_value(logging_section, "metrics_filename", "pos_sync_metrics.json"),
    }


def get_api_settings(settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    settings = settings if settings is not None else load_settings()
    api_section = settings.get("api", {})
    base_url = _get_typed_value(api_section, "base_url", "http://localhost:8000")
    return {
        "base_url": base_url,
        "token": _get_typed_value(api_section, "token", "") or None,
        "request_timeout": _get_typed_value(api_section, "request_timeout", 30.0, float),
        "connectivity_check_url": _get_typed_value(api_section, "connectivity_check_url", "") or base_url,
    }


def get_sync_settings(settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    settings = settings if settings is not None else load_settings()
    sync_section = settings.get("sync", {})
    return {
        "reconnect_debounce_seconds": _get_typed_value(sync_section, "reconnect_debounce_seconds", 1.0, float),
        "enqueue_sync_delay_seconds": _get_typed_value(sync_section, "enqueue_sync_delay_seconds", 0.5, float),
        "remote_timeout_seconds": _get_typed_value(sync_section, "remote_timeout_seconds", 30.0, float),
        "history_max_entries": _get_typed_value(sync_section, "history_max_entries", 20, int),
        "queue_retention_days": _get_typed_value(sync_section, "queue_retention_days", 30, int),
        "connectivity_poll_seconds": _get_typed_value(sync_section, "connectivity_poll_seconds", 15.0, float),
        "device_id": _get_typed_value(settings.get("general", {}), "device_id", "") or None,
    }

#
# End of pos_sync/config.py
#######################################################################################################################

# mfg_capture/config.py
# Description: Configuration management for the mfg_capture client.
#
# Imports
import copy
import os
import tomllib
from pathlib import Path
from typing import Dict, Any, Optional
#
# Third-Party Imports
import toml
from loguru import logger
#
# Local Imports
from .Constants import DEFAULT_API_PREFIX, DEFAULT_REMOTE_PAGE_SIZE
#
#######################################################################################################################
#
# Functions:

# --- Path to the configuration file ---
CONFIG_PATH_ENV_VAR = "MFG_CAPTURE_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "mfg_capture" / "config.toml"
BASE_DATA_DIR = Path.home() / ".local" / "share" / "mfg_capture"

# --- Configuration File Content (for reference or auto-creation) ---
CONFIG_TOML_CONTENT = """
# Configuration for the mfg_capture client
# Located at: ~/.config/mfg_capture/config.toml (override with MFG_CAPTURE_CONFIG)
[general]
log_level = "INFO" # Console/TUI Log Level: DEBUG, INFO, WARNING, ERROR, CRITICAL

[database]
# Local record store. Holds captured records, sync settings, history and conflicts.
local_db_path = "~/.local/share/mfg_capture/mfg_capture.db"

[logging]
# Log file will be placed in the same directory as local_db_path.
log_filename = "mfg_capture.log"
file_log_level = "INFO"
log_max_bytes = 10485760 # 10 MB
log_backup_count = 5

[sync]
# Server URL and token are entered in the app and stored in the local database.
# default_server_url only pre-fills the settings row the first time.
default_server_url = ""
api_prefix = "/api/mobile"
remote_page_size = 50
request_timeout = 30.0
"""

try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal CONFIG_TOML_CONTENT: {e}.")
    DEFAULT_CONFIG_FROM_TOML = {}


def get_config_path() -> Path:
    override = os.environ.get(CONFIG_PATH_ENV_VAR)
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH


# --- Helper for deep merging dictionaries ---
def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


# --- Primary Configuration Loading Logic ---
_CONFIG_CACHE: Optional[Dict[str, Any]] = None

def load_settings(force_reload: bool = False) -> Dict[str, Any]:
    """
    Loads settings from the config file, creating it with defaults if it doesn't exist.
    The file's values are merged over the built-in defaults.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    config_path = get_config_path()
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not config_path.exists():
        logger.info(f"Config file not found at {config_path}. Creating with default values.")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
            logger.info(f"Created default config file at {config_path}")
        except OSError as e:
            logger.error(f"Could not create default config file {config_path}: {e}. Using internal defaults.")
    else:
        try:
            with open(config_path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Loaded and merged config from {config_path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {config_path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {config_path}: {e}. Using internal defaults.")

    _CONFIG_CACHE = loaded_config
    logger.debug(f"load_settings returning config with top-level keys: {list(loaded_config.keys())}")
    return _CONFIG_CACHE


def save_setting(section: str, key: str, value: Any) -> Path:
    """Writes a single value into the config file and refreshes the cache."""
    config_path = get_config_path()
    current = copy.deepcopy(load_settings())
    current.setdefault(section, {})[key] = value
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        toml.dump(current, f)
    logger.info(f"Saved [{section}] {key} to {config_path}")
    load_settings(force_reload=True)
    return config_path


# --- Setting Getter ---
def get_cli_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    section_data = load_settings().get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


# --- Database and Log File Path Getters ---
def get_local_db_path() -> Path:
    default_db_path_str = DEFAULT_CONFIG_FROM_TOML.get("database", {}).get(
        "local_db_path", str(BASE_DATA_DIR / "mfg_capture.db"))
    db_path_str = get_cli_setting("database", "local_db_path", default_db_path_str)
    return Path(db_path_str).expanduser().resolve()


def get_log_file_path() -> Path:
    log_filename = get_cli_setting("logging", "log_filename", "mfg_capture.log")
    log_file_path = get_local_db_path().parent / log_filename
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create log directory {log_file_path.parent}: {e}")
    return log_file_path


def get_sync_defaults() -> Dict[str, Any]:
    """Keyword arguments for `SyncService` taken from the [sync] section."""
    return {
        "api_prefix": str(get_cli_setting("sync", "api_prefix", DEFAULT_API_PREFIX)),
        "request_timeout": float(get_cli_setting("sync", "request_timeout", 30.0)),
        "remote_page_size": int(get_cli_setting("sync", "remote_page_size", DEFAULT_REMOTE_PAGE_SIZE)),
    }

#
# End of mfg_capture/config.py
#######################################################################################################################

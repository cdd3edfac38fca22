import copy
import os
import logging
from dataclasses import dataclass

import yaml

from constants import CONFIG_FILE, DEFAULT_SETTINGS, DEFAULT_DB_FILE, DEFAULT_BACKUP_DIR
from exceptions import ConfigurationException

# Retrieve main logger
logger = logging.getLogger("main")

SERVER_MODES = ("debug", "release", "test")
REQUIRED_ENV = ("UPSTREAM_API_KEY",)


@dataclass
class Config:
    """Process configuration read from the environment"""

    server_port: int = 8080
    server_host: str = "localhost"
    server_mode: str = "release"
    read_timeout: int = 15
    write_timeout: int = 15
    database_path: str = DEFAULT_DB_FILE
    max_idle_conn: int = 10
    max_open_conn: int = 100
    thumbnail_dir: str = "./assets/thumbnails"
    performer_dir: str = "./assets/performers"
    assets_base_dir: str = "./assets"
    backup_dir: str = DEFAULT_BACKUP_DIR
    api_key: str = ""
    log_format: str = "console"
    log_level: str = "INFO"

    @property
    def database_uri(self):
        return f"sqlite:///{os.path.abspath(self.database_path)}"


def _get_env(environ, key, default):
    value = environ.get(key)
    return value if value else default


def _get_env_int(environ, key, default):
    value = environ.get(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {key}={value!r}, using default {default}")
        return default


def load_config(environ=None):
    """Build the process Config from environment variables.

    Raises ConfigurationException when a required value is missing or the
    server mode is not one of debug/release/test.
    """
    environ = os.environ if environ is None else environ

    missing = [key for key in REQUIRED_ENV if not environ.get(key)]
    if missing:
        raise ConfigurationException(f"{', '.join(missing)} is required")

    mode = _get_env(environ, "SERVER_MODE", "release").lower()
    if mode not in SERVER_MODES:
        raise ConfigurationException(f"SERVER_MODE must be one of {', '.join(SERVER_MODES)}, got {mode!r}")

    return Config(
        server_port=_get_env_int(environ, "SERVER_PORT", 8080),
        server_host=_get_env(environ, "SERVER_HOST", "localhost"),
        server_mode=mode,
        read_timeout=_get_env_int(environ, "SERVER_READ_TIMEOUT", 15),
        write_timeout=_get_env_int(environ, "SERVER_WRITE_TIMEOUT", 15),
        database_path=_get_env(environ, "DATABASE_PATH", DEFAULT_DB_FILE),
        max_idle_conn=_get_env_int(environ, "DB_MAX_IDLE_CONN", 10),
        max_open_conn=_get_env_int(environ, "DB_MAX_OPEN_CONN", 100),
        thumbnail_dir=_get_env(environ, "THUMBNAIL_DIR", "./assets/thumbnails"),
        performer_dir=_get_env(environ, "PERFORMER_DIR", "./assets/performers"),
        assets_base_dir=_get_env(environ, "ASSETS_BASE_DIR", "./assets"),
        backup_dir=_get_env(environ, "BACKUP_DIR", DEFAULT_BACKUP_DIR),
        api_key=environ.get("UPSTREAM_API_KEY", ""),
        log_format=_get_env(environ, "LOG_FORMAT", "console"),
        log_level=_get_env(environ, "LOG_LEVEL", "INFO").upper(),
    )


def merge_settings(overrides, base=None):
    """Deep merge `overrides` over a copy of `base` (DEFAULT_SETTINGS by default)"""
    merged = copy.deepcopy(DEFAULT_SETTINGS if base is None else base)
    for section, values in (overrides or {}).items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section] = merge_settings(values, merged[section])
        else:
            merged[section] = values
    return merged


# Cache variable
_cached_settings = None


def load_settings(force=False, config_file=CONFIG_FILE):
    """Load pipeline tunables from the YAML settings file, merged over defaults."""
    global _cached_settings

    if _cached_settings and not force:
        return _cached_settings

    if os.path.exists(config_file):
        logger.debug(f"Reading configuration file: {config_file}")
        with open(config_file, "r") as yaml_file:
            settings = merge_settings(yaml.safe_load(yaml_file) or {})
    else:
        settings = copy.deepcopy(DEFAULT_SETTINGS)
        os.makedirs(os.path.dirname(config_file), exist_ok=True)
        with open(config_file, "w") as yaml_file:
            yaml.dump(settings, yaml_file)
        logger.info(f"Wrote default settings to {config_file}")

    _cached_settings = settings
    return settings

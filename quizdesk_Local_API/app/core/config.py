# config.py
# Description: Configuration settings for the local quizdesk data service.
#
# Imports
import configparser
import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
#
########################################################################################################################
#
# Functions:

PACKAGE_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_FILE = PACKAGE_ROOT / "Config_Files" / "config.txt"
DEFAULT_DB_PATH = Path("./quizdesk_data/local_store.db")


def _str_to_bool(value: Any) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_config_file(config_path: Optional[Path] = None) -> configparser.ConfigParser:
    """Reads the optional INI file. A missing file yields an empty parser."""
    config = configparser.ConfigParser()
    path = Path(config_path or os.getenv("QUIZDESK_CONFIG_FILE", DEFAULT_CONFIG_FILE))
    if path.exists():
        try:
            config.read(path, encoding="utf-8")
            logger.debug(f"Loaded configuration file: {path}")
        except configparser.Error as e:
            logger.error(f"Could not parse configuration file {path}: {e}")
    else:
        logger.debug(f"No configuration file at {path}; using environment and defaults")
    return config


def load_settings(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Loads all settings from environment variables, the config file, or defaults into a dictionary."""
    config = load_config_file(config_path)

    def get(env_name: str, section: str, key: str, default: Any) -> Any:
        env_value = os.getenv(env_name)
        if env_value is not None:
            return env_value
        return config.get(section, key, fallback=default)

    # --- Local Store ---
    db_path = Path(get("LOCAL_DB_PATH", "Database", "local_db_path", DEFAULT_DB_PATH)).expanduser()
    client_id = get("CLIENT_ID", "Database", "client_id", "") or f"desktop-{uuid.getnode():x}"
    integrity_check_on_startup = _str_to_bool(
        get("INTEGRITY_CHECK_ON_STARTUP", "Database", "integrity_check_on_startup", "true"))

    # --- Remote store ---
    remote_api_url = get("REMOTE_API_URL", "Remote", "api_url", "") or None
    remote_api_key = get("REMOTE_API_KEY", "Remote", "api_key", "") or None
    remote_timeout_seconds = float(get("REMOTE_TIMEOUT_SECONDS", "Remote", "timeout_seconds", "30"))

    # --- Sync ---
    sync_batch_size = int(get("SYNC_BATCH_SIZE", "Sync", "batch_size", "50"))
    sync_on_startup = _str_to_bool(get("SYNC_ON_STARTUP", "Sync", "sync_on_startup", "true"))
    scheduled_sync_interval = float(get("SCHEDULED_SYNC_INTERVAL_SECONDS", "Sync", "interval_seconds", "30"))
    committed_retention_days = int(get("COMMITTED_RETENTION_DAYS", "Sync", "committed_retention_days", "7"))
    app_close_sync_timeout = float(get("APP_CLOSE_SYNC_TIMEOUT_SECONDS", "Sync", "app_close_timeout_seconds", "10"))

    # --- Server / Logging ---
    log_level = str(get("LOG_LEVEL", "Logging", "log_level", "INFO")).upper()
    allowed_origins_raw = get("ALLOWED_ORIGINS", "Server", "allowed_origins", "")
    allowed_origins: List[str] = [o.strip() for o in str(allowed_origins_raw).split(",") if o.strip()]

    config_dict = {
        "LOCAL_DB_PATH": db_path,
        "CLIENT_ID": client_id,
        "INTEGRITY_CHECK_ON_STARTUP": integrity_check_on_startup,
        "REMOTE_API_URL": remote_api_url,
        "REMOTE_API_KEY": remote_api_key,
        "REMOTE_TIMEOUT_SECONDS": remote_timeout_seconds,
        "SYNC_BATCH_SIZE": sync_batch_size,
        "SYNC_ON_STARTUP": sync_on_startup,
        "SCHEDULED_SYNC_INTERVAL_SECONDS": scheduled_sync_interval,
        "COMMITTED_RETENTION_DAYS": committed_retention_days,
        "APP_CLOSE_SYNC_TIMEOUT_SECONDS": app_close_sync_timeout,
        "LOG_LEVEL": log_level,
        "ALLOWED_ORIGINS": allowed_origins,
    }

    if config_dict["REMOTE_API_URL"] is None:
        logger.warning("REMOTE_API_URL is not set. Sync passes will fail until a remote store is configured.")
    if config_dict["SYNC_BATCH_SIZE"] <= 0:
        logger.warning(f"SYNC_BATCH_SIZE={sync_batch_size} is not positive; using 50.")
        config_dict["SYNC_BATCH_SIZE"] = 50

    return config_dict


settings = load_settings()

#
# End of config.py
########################################################################################################################

import os
import json
from pathlib import Path

from disk_search.utils.logger import logger

CONFIG_ENV_VAR = "DISK_SEARCH_CONFIG"
DEFAULT_CONFIG_PATH = "disk_search_config.json"

DEFAULTS = {
    # Index storage
    "index_dir": "index",
    "log_dir": "logs",
    "log_level": "INFO",
    # Root selected at startup when the user has not picked one
    "default_root": str(Path.home()),
    # Full-volume sweep interval in seconds
    "update_interval": 600,
    "min_update_interval": 30,
    # Scanning configuration
    "ignore_patterns": [
        "__pycache__", ".git", ".hg", ".svn", "node_modules", ".DS_Store",
        "Thumbs.db", "*.tmp", "*.temp", "$RECYCLE.BIN", "System Volume Information",
    ],
    "max_file_size": 50 * 1024 * 1024,  # content is read only below 50MB
    "max_content_chars": 100000,
    "max_token_length": 64,
    # Change monitoring
    "watch_changes": False,
    "watch_quiet_period": 5.0,
    # Number of cycle reports kept by the scheduler
    "report_history": 50,
}

CONFIG = dict(DEFAULTS)


def config_path(path=None):
    """Resolve the configuration file location."""
    return Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)


def load_config(path=None, create=True):
    """Load configuration from file or create default"""
    target = config_path(path)
    if target.exists():
        try:
            with open(target, "r", encoding="utf-8") as f:
                loaded_config = json.load(f)
            if not isinstance(loaded_config, dict):
                raise ValueError("configuration root must be an object")
            # Update global CONFIG
            for key, value in loaded_config.items():
                CONFIG[key] = value
            logger.info(f"Loaded configuration from {target}")
        except (OSError, ValueError) as e:
            logger.error(f"Error loading config: {e}")
    elif create:
        save_config(target)
    return CONFIG


def save_config(path=None):
    """Save current configuration to file"""
    target = config_path(path)
    try:
        with open(target, "w", encoding="utf-8") as f:
            json.dump(CONFIG, f, indent=2)
        logger.info(f"Configuration saved to {target}")
        return True
    except OSError as e:
        logger.error(f"Error saving config: {e}")
        return False


def reset_config():
    """Restore the built-in defaults."""
    CONFIG.clear()
    CONFIG.update(DEFAULTS)
    return CONFIG


def ensure_directories(config=None):
    """Ensure all required directories exist"""
    config = config or CONFIG
    for directory in (config["index_dir"], config["log_dir"]):
        Path(directory).mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {directory}")


def validate_config(config=None):
    """Validate configuration settings"""
    config = config or CONFIG
    issues = []

    interval = config.get("update_interval")
    if not isinstance(interval, (int, float)) or interval < config.get("min_update_interval", 0):
        issues.append(f"update_interval must be a number >= {config.get('min_update_interval')}")

    for key in ("max_file_size", "max_content_chars", "max_token_length"):
        value = config.get(key)
        if not isinstance(value, int) or value <= 0:
            issues.append(f"{key} must be a positive integer")

    if not isinstance(config.get("ignore_patterns"), list):
        issues.append("ignore_patterns must be a list")

    root = config.get("default_root")
    if root and not os.path.isdir(root):
        issues.append(f"Default root not found: {root}")

    if issues:
        logger.warning("Configuration validation issues:")
        for issue in issues:
            logger.warning(f"  - {issue}")

    return len(issues) == 0

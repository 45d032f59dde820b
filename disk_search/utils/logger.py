import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Create the main logger
logger = logging.getLogger("DiskSearch")


def setup_logging(log_dir="logs", level="INFO"):
    """Attach file and console handlers to the application logger.

    Safe to call more than once; handlers are only installed the first time.
    """
    if getattr(logger, "_disk_search_configured", False):
        set_log_level(level)
        return logger

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = logging.FileHandler(log_path / "disk_search.log", encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False
    logger._disk_search_configured = True

    set_log_level(level)
    return logger


def get_logger(name):
    """Get a logger for a specific module"""
    return logging.getLogger(f"DiskSearch.{name}")


def set_log_level(level):
    """Set the logging level for all loggers"""
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    logger.setLevel(numeric_level)
    logger.info(f"Log level set to {str(level).upper()}")

from .logger import get_logger, set_log_level, setup_logging

__all__ = ["get_logger", "set_log_level", "setup_logging"]

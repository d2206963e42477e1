# bouncer/core/logging.py
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import ConfigManager


def setup_logging(config: ConfigManager) -> logging.Logger:
    """
    Configures logging for the bouncer based on settings from ConfigManager.
    All module loggers live under the "bouncer" logger.
    """
    log_level_str = str(config.get_config("logging.level", "INFO")).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    log_format = config.get_config("logging.format", "%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    date_format = config.get_config("logging.date_format", "%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger("bouncer")
    root_logger.setLevel(log_level)
    root_logger.handlers = [] # Clear any existing handlers (e.g., from basicConfig)
    root_logger.propagate = False

    # Console Handler, stdout so container runtimes pick it up
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))
    root_logger.addHandler(console_handler)

    # File Handler (Optional, based on config)
    log_file_path_str = config.get_config("logging.file.path")
    if log_file_path_str:
        log_file_path = Path(log_file_path_str)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file_path,
            maxBytes=config.get_config("logging.file.max_bytes", 1024 * 1024 * 5), # 5MB
            backupCount=config.get_config("logging.file.backup_count", 5),
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))
        root_logger.addHandler(file_handler)
        root_logger.info(f"File logging configured at: {log_file_path}")

    # HTTP client chatter only at DEBUG
    for noisy in ("urllib3", "requests"):
        logging.getLogger(noisy).setLevel(log_level if log_level <= logging.DEBUG else logging.WARNING)

    root_logger.info(f"Logging setup complete. Log level set to {log_level_str}.")
    return root_logger

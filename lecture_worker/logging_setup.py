import logging
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "lecture_worker"
LOG_FILE_NAME = "lecture_worker.log"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Client libraries that log every HTTP request at INFO
NOISY_LOGGERS = ("httpx", "openai", "psycopg.pool")


def setup_logging(log_level: str = "INFO", log_dir: str = "/app/data/worker",
                  log_file: str = LOG_FILE_NAME, max_bytes: int = 5 * 1024 * 1024,
                  backup_count: int = 3, log_format: str = LOG_FORMAT) -> logging.Logger:
    """
    Configure the worker logger with a rotating file and the console.

    Args:
        log_level: Level name for the worker logger
        log_dir: Directory for the log file, created if missing
        log_file: Log file name inside log_dir
        max_bytes: Size at which the file rotates
        backup_count: Rotated files to keep
        log_format: logging.Formatter format string

    Returns:
        The configured worker logger
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Re-running setup replaces handlers instead of stacking them
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(log_format)
    log_target = log_path / log_file

    file_handler = RotatingFileHandler(log_target, maxBytes=max_bytes, backupCount=backup_count)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Logging initialized at {log_level.upper()}. Log file: {log_target}")
    return logger


def log_exception(logger: logging.Logger, message: str) -> None:
    """Log an error message together with the active traceback"""
    logger.error(f"{message}\n{traceback.format_exc()}")

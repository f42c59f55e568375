import logging
import sys
from . import config  # To get DATA_DIR

LOG_FILE_PATH = config.DATA_DIR / "rule_handler.log"


def setup_logging(log_level=logging.INFO, testing_mode=False):
    """Configures basic logging for the application."""

    logger = logging.getLogger("rule_handler")  # Parent logger for every module
    logger.setLevel(log_level)

    # Prevent multiple handlers if setup_logging is called more than once
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s"
    )

    # Console output is skipped in testing mode so CliRunner output stays clean
    if not testing_mode:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    try:
        config.DATA_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(LOG_FILE_PATH, mode="a")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        # If logger itself is having issues, print directly as a fallback
        print(f"CRITICAL LOGGING ERROR during file_handler setup: {e}", file=sys.stderr)

    if not testing_mode or log_level <= logging.DEBUG:
        logger.info(f"Logging initialized. Log file: {LOG_FILE_PATH}")

    return logger

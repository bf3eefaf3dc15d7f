import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIR = Path("logs")


def setup_logging(level: int = logging.INFO, log_dir: Path = LOG_DIR):
    """
    Installs the application-wide logging setup.

    Records go both to stdout (for containers and local runs) and to a rotating
    file under ``log_dir`` that rolls over at 5 MB and keeps five old files.
    """
    log_format = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"

    log_dir.mkdir(exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(level)

    # Drop handlers installed by uvicorn and friends so every record uses our format.
    if logger.hasHandlers():
        logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(stdout_handler)

    file_handler = RotatingFileHandler(
        log_dir / "app.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=5
    )
    file_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(file_handler)

import logging
import os
from pathlib import Path
from typing import Optional


DEFAULT_LOG_FILE = "data/nhs_export.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# Playwright's driver logs every protocol message at DEBUG.
NOISY_LOGGERS: tuple[str, ...] = ("playwright", "urllib3", "asyncio")


def configure_logging(level: str = "INFO", file_path: Optional[str] = DEFAULT_LOG_FILE) -> Optional[Path]:
    """
    Log to stderr and, unless `file_path` is empty, to a UTF-8 log file that debug bundles pick up.

    Returns the log file path. Safe to call again once config (and --verbose) is known.
    """
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    path: Optional[Path] = None
    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, handlers=handlers, force=True)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(os.getenv("NOISY_LOG_LEVEL", "WARNING"))
    return path

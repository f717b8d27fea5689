from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

DEFAULT_LOG_PATH = "buildtools-installer.log"


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> Optional[str]:
    """Configure logging.

    Every resolution decision and command is recorded to ``log_path``.

    Notes:
    - If the requested path is not writable we fall back to a file in the
      current working directory; if that fails too, only the console is used
      and None is returned.
    - Safe to call more than once; handlers are only installed the first time.

    Returns the actual file path being used, or None.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    if getattr(logger, "_buildtools_configured", False):
        return getattr(logger, "_buildtools_log_path", log_path)

    chosen_path: Optional[str] = log_path
    handlers: list[logging.Handler] = []

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    file_handler: Optional[logging.Handler] = None
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(fmt)
        handlers.append(file_handler)
    except OSError:
        fallback = str(Path.cwd() / DEFAULT_LOG_PATH)
        try:
            file_handler = logging.FileHandler(fallback)
            file_handler.setFormatter(fmt)
            handlers.append(file_handler)
            chosen_path = fallback
        except OSError:
            chosen_path = None

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        handlers.append(console)

    for h in handlers:
        logger.addHandler(h)

    setattr(logger, "_buildtools_configured", True)
    setattr(logger, "_buildtools_log_path", chosen_path)

    log = logging.getLogger(__name__)
    if chosen_path is None:
        log.warning("Could not open a log file (requested=%s); logging to console only", log_path)
    else:
        log.info("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path

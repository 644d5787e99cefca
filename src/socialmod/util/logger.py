import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from pathlib import Path
from datetime import datetime
from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import ANSI

# -------------------- Configuration --------------------
LOGS_DIR: Path = Path(os.getenv("SOCIALMOD_LOG_DIR", "./logs")).resolve()
LOGS_DIR.mkdir(parents=True, exist_ok=True)

LOG_FORMAT: str = "[%(asctime)s] [%(levelname)s] [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
DATE_FORMAT: str = "%Y-%m-%d %H-%M-%S"

LOG_COLORS = {
    "DEBUG": "\033[36m",      # Cyan
    "INFO": "\033[32m",       # Green
    "WARNING": "\033[33m",    # Yellow
    "ERROR": "\033[31m",      # Red
    "CRITICAL": "\033[38;5;88m",  # Dark Red (ANSI 256-color)
}
RESET_COLOR = "\033[0m"

# Session log file, chosen on first use
LOG_FILEPATH: Path | None = None

# Rotate the session file at 10 MB, keep 5 backups
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

DEFAULT_CONSOLE_LEVEL = logging.INFO


# -------------------- Formatters --------------------
class ColorFormatter(logging.Formatter):
    """
    Log formatter that wraps each record in the ANSI color for its level.

    Worker and pipeline logs are interleaved heavily when several queues are
    draining at once; coloring by severity keeps warnings about retries and
    dropped messages easy to spot on the console.
    """

    def format(self, record: logging.LogRecord) -> str:
        color = LOG_COLORS.get(record.levelname, "")
        message = super().format(record)
        return f"{color}{message}{RESET_COLOR}" if color else message


class PromptToolkitHandler(logging.Handler):
    """
    Logging handler that prints through prompt_toolkit.

    ``print_formatted_text`` cooperates with any active prompt_toolkit
    application, so log lines never corrupt an interactive session.
    """

    def __init__(self, formatter: logging.Formatter | None = None, level: int = logging.NOTSET):
        super().__init__(level)
        if formatter:
            self.setFormatter(formatter)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            print_formatted_text(ANSI(self.format(record)))
        except Exception:
            self.handleError(record)


plain_formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def should_use_color() -> bool:
    """Return True when stderr is attached to a terminal."""
    try:
        return sys.stderr.isatty()
    except (AttributeError, ValueError):
        return False


color_formatter = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT) if should_use_color() else plain_formatter


def console_level() -> int:
    """Console threshold from ``SOCIALMOD_LOG_LEVEL`` (a level name such as ``DEBUG``).

    Unknown names fall back to INFO. The session file always records DEBUG.
    """
    name = os.getenv("SOCIALMOD_LOG_LEVEL", "").strip().upper()
    level = logging.getLevelName(name) if name else DEFAULT_CONSOLE_LEVEL
    return level if isinstance(level, int) else DEFAULT_CONSOLE_LEVEL


# -------------------- Logger Setup --------------------

def get_log_filepath() -> Path:
    """
    Get or create the log file path for the current session.

    Every logger in the process writes to the same file. The first call
    reuses a log file from today if it was touched within the last 60 seconds
    (a quick restart of the worker process), otherwise it starts a new
    timestamped file.
    """
    global LOG_FILEPATH

    if LOG_FILEPATH is not None:
        return LOG_FILEPATH

    now = datetime.now()
    todays_logs = sorted(LOGS_DIR.glob(f"{now:%Y-%m-%d}*.log"), key=lambda p: p.stat().st_mtime, reverse=True)
    if todays_logs and now.timestamp() - todays_logs[0].stat().st_mtime < 60:
        LOG_FILEPATH = todays_logs[0]
    else:
        LOG_FILEPATH = LOGS_DIR / f"{now.strftime(DATE_FORMAT)}.log"
    return LOG_FILEPATH


def _session_file_handler() -> RotatingFileHandler:
    handler = RotatingFileHandler(
        get_log_filepath(),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(plain_formatter)
    return handler


def setup_logger(logger_name: str) -> logging.Logger:
    """Attach the console and session-file handlers to ``logger_name`` once.

    Records do not propagate to the root logger, so each line is written
    exactly once however many pipeline loggers exist.
    """
    logger = logging.getLogger(logger_name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(PromptToolkitHandler(formatter=color_formatter, level=console_level()))
    logger.addHandler(_session_file_handler())
    return logger


def get_logger(logger_name: str) -> logging.Logger:
    """Retrieve a logger configured for socialmod, creating it if necessary."""
    return setup_logger(logger_name)


# -------------------- Exception Handling --------------------
def handle_exception(exception_type, exception_instance, exception_traceback) -> None:
    """
    Global exception hook that logs uncaught exceptions.

    Installed as ``sys.excepthook`` by :func:`socialmod.main.main`.
    KeyboardInterrupt is passed to the default hook so Ctrl+C still exits
    cleanly.
    """
    if issubclass(exception_type, KeyboardInterrupt):
        sys.__excepthook__(exception_type, exception_instance, exception_traceback)
        return
    logging.error("Uncaught exception", exc_info=(exception_type, exception_instance, exception_traceback))


# -------------------- Suppress Noisy Libraries --------------------
# Pillow plugin probing, aiosqlite statement tracing and urllib3 connection
# pooling are far too chatty at DEBUG for a worker that handles every upload.
NOISY_LOGGERS = [
    "PIL", "PIL.Image", "PIL.PngImagePlugin", "PIL.TiffImagePlugin",
    "aiosqlite", "urllib3", "urllib3.connectionpool", "requests",
    "asyncio",
]

for noisy_logger in NOISY_LOGGERS:
    lg = logging.getLogger(noisy_logger)
    lg.setLevel(logging.ERROR)
    lg.propagate = False
    lg.handlers = []

"""
Logging setup for the debt-tracker CLI.

Console output goes to stderr so stdout stays clean for the table or JSON
result. Run progress is logged on its own logger at INFO and rendered with
a percent column. Debug mode also writes every engine record to a file.
"""
import logging
import os
import sys
from pathlib import Path

DEBT_TRACKER_DEBUG = os.getenv('DEBT_TRACKER_DEBUG', '').lower() in ('1', 'true', 'yes')
DEBUG_LOG_PATH = Path(os.getenv('DEBT_TRACKER_DEBUG_LOG', 'debt_tracker_debug.log'))

APP_LOGGER = 'debt_tracker'
PROGRESS_LOGGER = 'debt_tracker.progress'
CONSOLE_HANDLER_NAME = 'debt_tracker_console'
FILE_HANDLER_NAME = 'debt_tracker_debug_file'

# Chatty client libraries that log every RPC and HTTP round trip
NOISY_LOGGERS = ('urllib3', 'requests', 'web3', 'asyncio')


class ConsoleFormatter(logging.Formatter):
    """One line per record. Progress records carry their percent and stage."""

    LEVEL_TAGS = {
        logging.DEBUG: ("[D]", "\033[90m"),
        logging.INFO: ("[I]", "\033[32m"),
        logging.WARNING: ("[W]", "\033[33m"),
        logging.ERROR: ("[E]", "\033[31m"),
        logging.CRITICAL: ("[!]", "\033[31;1m"),
    }

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def _tag(self, levelno: int) -> str:
        tag, color = self.LEVEL_TAGS.get(levelno, self.LEVEL_TAGS[logging.INFO])
        return f"{color}{tag}\033[0m" if self.color else tag

    def format(self, record):
        message = record.getMessage()
        percent = getattr(record, 'progress_percent', None)
        if percent is not None:
            stage = getattr(record, 'stage', None) or '-'
            line = f"{self._tag(record.levelno)} [{percent:5.1f}%] {stage}: {message}"
        elif record.levelno >= logging.ERROR or record.levelno == logging.DEBUG:
            line = f"{self._tag(record.levelno)} {record.name}: {message}"
        else:
            line = f"{self._tag(record.levelno)} {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class ProgressLogger:
    """
    Progress callback that logs ProgressUpdate objects on the progress logger.

    A line is emitted when the percent advances by at least `step`, when the
    stage changes, or when the run status changes. Everything in between goes
    out at DEBUG.
    """

    def __init__(self, step: float = 5.0, logger: logging.Logger = None):
        self.step = step
        self.logger = logger or logging.getLogger(PROGRESS_LOGGER)
        self._last_percent = None
        self._last_stage = None
        self._last_status = None

    def __call__(self, update):
        stage = update.stage
        status = update.status
        visible = (
            self._last_percent is None
            or update.progress_percent - self._last_percent >= self.step
            or stage != self._last_stage
            or status != self._last_status
        )
        level = logging.INFO if visible else logging.DEBUG
        self.logger.log(
            level,
            update.current_step,
            extra={'progress_percent': update.progress_percent, 'stage': stage},
        )
        if visible:
            self._last_percent = update.progress_percent
            self._last_stage = stage
            self._last_status = status


def _replace_handler(logger: logging.Logger, handler: logging.Handler):
    for existing in list(logger.handlers):
        if existing.get_name() == handler.get_name():
            logger.removeHandler(existing)
            existing.close()
    logger.addHandler(handler)


def setup_logging(level=logging.INFO, debug=DEBT_TRACKER_DEBUG, debug_log_path=None, stream=None):
    """
    Configure console logging (and the debug file when `debug` is set).

    Handlers are installed by name, so calling this again replaces them
    instead of stacking duplicates. Handlers owned by others are left alone.
    """
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    stream = stream or sys.stderr
    console = logging.StreamHandler(stream)
    console.set_name(CONSOLE_HANDLER_NAME)
    console.setLevel(level)
    console.setFormatter(ConsoleFormatter(color=hasattr(stream, 'isatty') and stream.isatty()))

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else level)
    _replace_handler(root, console)

    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.setLevel(logging.DEBUG if debug else level)

    if debug:
        path = Path(debug_log_path) if debug_log_path else DEBUG_LOG_PATH
        file_handler = logging.FileHandler(path, mode='w', encoding='utf-8')
        file_handler.set_name(FILE_HANDLER_NAME)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            fmt='%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        _replace_handler(app_logger, file_handler)
        app_logger.debug(f"Engine debug log: {path.resolve()}")

    return app_logger

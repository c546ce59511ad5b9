# Logging_Config.py
# Description: Logging setup shared by the TUI, the sync service and the local store
#
# Imports
import asyncio
import logging
import logging.handlers
from typing import Any, Dict, Optional
#
# 3rd-Party Imports
from loguru import logger as loguru_logger
from textual.logging import TextualHandler
from textual.widgets import RichLog
#
# Local Imports
from .config import get_cli_setting, get_log_file_path
#
########################################################################################################################
#
# Functions:

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s:%(lineno)d - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOGURU_TO_STD_LEVELS = {
    "TRACE": logging.DEBUG, "DEBUG": logging.DEBUG, "INFO": logging.INFO,
    "SUCCESS": logging.INFO, "WARNING": logging.WARNING, "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


# --- Custom Logging Handler ---
class RichLogHandler(logging.Handler):
    """Queues formatted records and writes them to a Textual `RichLog` from the app's event loop."""

    def __init__(self, rich_log_widget: RichLog):
        super().__init__()
        self.rich_log_widget = rich_log_widget
        self.log_queue: asyncio.Queue = asyncio.Queue()
        self.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue_processor_task: Optional[asyncio.Task] = None

    def start_processor(self) -> None:
        """Must be called from the app's running loop (e.g. in `on_mount`)."""
        if self._queue_processor_task and not self._queue_processor_task.done():
            return
        self._loop = asyncio.get_running_loop()
        self._queue_processor_task = self._loop.create_task(self._process_log_queue(), name="RichLogProcessor")

    async def stop_processor(self) -> None:
        if self._queue_processor_task and not self._queue_processor_task.done():
            self._queue_processor_task.cancel()
            try:
                await self._queue_processor_task
            except asyncio.CancelledError:
                pass
        self._queue_processor_task = None
        self._loop = None

    async def _process_log_queue(self) -> None:
        while True:
            message = await self.log_queue.get()
            if self.rich_log_widget.is_mounted:
                self.rich_log_widget.write(message)
            self.log_queue.task_done()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            if self._loop is not None and not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self.log_queue.put_nowait, message)
        except Exception:
            self.handleError(record)


def _forward_loguru_to_std_logging() -> None:
    loguru_logger.remove()

    def sink_to_standard_logging(message):
        record = message.record
        std_level = _LOGURU_TO_STD_LEVELS.get(record["level"].name, logging.INFO)
        std_logger = logging.getLogger(record["name"])
        if record["exception"]:
            std_logger.log(std_level, record["message"], exc_info=record["exception"])
        else:
            std_logger.log(std_level, record["message"])

    loguru_logger.add(sink_to_standard_logging, format="{message}", level="TRACE")


def configure_logging(app_config: Dict[str, Any], app_instance: Any = None,
                      rich_log_widget: Optional[RichLog] = None) -> Optional[RichLogHandler]:
    """
    Routes loguru through stdlib logging and installs the handlers.

    Always adds a rotating file handler. When `app_instance` is given, a
    `TextualHandler` is added, and when `rich_log_widget` is given a
    `RichLogHandler` is created and returned (its processor still has to be
    started from the running loop).
    """
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _forward_loguru_to_std_logging()

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    level_name = str(app_config.get("general", {}).get("log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    root_logger.setLevel(console_level)

    if app_instance is not None:
        textual_handler = TextualHandler()
        textual_handler.setLevel(console_level)
        textual_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root_logger.addHandler(textual_handler)

    rich_log_handler = None
    if rich_log_widget is not None:
        rich_log_handler = RichLogHandler(rich_log_widget)
        rich_log_handler.setLevel(console_level)
        root_logger.addHandler(rich_log_handler)

    try:
        log_file_path = get_log_file_path()
        max_bytes = int(get_cli_setting("logging", "log_max_bytes", 10485760))
        backup_count = int(get_cli_setting("logging", "log_backup_count", 5))
        file_level_name = str(get_cli_setting("logging", "file_log_level", "INFO")).upper()
        file_level = getattr(logging, file_level_name, logging.INFO)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root_logger.addHandler(file_handler)
        # The root level filters before handlers, so it follows the most verbose one.
        root_logger.setLevel(min(console_level, file_level))
    except OSError as e:
        logging.warning(f"File logging disabled: {e}")

    loguru_logger.info(f"Logging configured (console level {level_name})")
    return rich_log_handler

#
# End of Logging_Config.py
########################################################################################################################

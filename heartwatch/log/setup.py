import sys
import logging

from heartwatch.local.config import effective_settings as config
from heartwatch.log.handler import SQLiteHandler

LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'


class MainFormatter(logging.Formatter):
    """Formats regular records normally and lifecycle-tool output raw."""

    def __init__(self) -> None:
        super().__init__(LOG_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        # Lifecycle-tool output is printed as the tool wrote it, prefixed by the component.
        if record.name.startswith('proc.'):
            return f"[{record.name[len('proc.'):]}] {record.getMessage()}"
        return super().format(record)


def setup_logging(console_level: int = logging.INFO, log_to_db: bool = True) -> None:
    """
    Configures the root logger for the application.
    Installs the console handler and, unless disabled, the SQLite handler,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param log_to_db: Whether to also store records in the log database.
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    if root_logger.hasHandlers():
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    if not log_to_db:
        return

    # --- SQLite Handler (always enabled for all levels) ---
    try:
        config.LOG_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        sqlite_handler = SQLiteHandler(
            db_path=config.LOG_DB_PATH,
            buffer_size=config.LOG_BUFFER_SIZE,
            flush_interval=config.LOG_BUFFER_FLUSH_INTERVAL,
        )
        sqlite_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(sqlite_handler)
    except Exception as e:
        root_logger.error(f"Failed to initialize SQLite logging handler: {e}. Logging to DB will be disabled.")

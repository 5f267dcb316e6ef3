import time
import sqlite3
import logging
from pathlib import Path
from collections import namedtuple
from typing import List, Dict, Any, Tuple

from heartwatch.local.database.base import BaseDBManager

LogEntry = namedtuple('LogEntry', ['timestamp', 'level', 'module', 'message'])
log = logging.getLogger(__name__)


def _format_row(row: sqlite3.Row) -> LogEntry:
    dt = time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(row['timestamp']))
    return LogEntry(
        timestamp=row['timestamp'], level=row['level'], module=row['module'],
        message=f"{dt} - {row['level']:<8} - [{row['module']}] - {row['message']}"
    )


class LogDBManager(BaseDBManager):
    """
    Manages the supervisor's log database.
    """

    def __init__(self, db_path: Path):
        super().__init__(db_path, lock=None, enable_wal=False)

    def initialize_database(self) -> None:
        self.ensure_parent_dir()
        try:
            self.execute('''
                CREATE TABLE IF NOT EXISTS logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL,
                    level TEXT,
                    module TEXT,
                    funcName TEXT,
                    lineno INTEGER,
                    message TEXT
                )
            ''')
            self.execute("CREATE INDEX IF NOT EXISTS idx_logs_timestamp ON logs (timestamp)")
            log.debug("Log database tables created/verified.")
        except sqlite3.Error as e:
            log.critical(f"Could not create log database tables: {e}", exc_info=True)
            raise

    def insert_log_batch(self, log_entries: List[Dict[str, Any]]) -> None:
        """
        Inserts multiple log entries in a single transaction.

        :param log_entries: Dicts with keys timestamp, level, module, funcName, lineno, message.
        """
        if not log_entries:
            return
        params = [(
            entry['timestamp'],
            entry['level'],
            entry['module'],
            entry['funcName'],
            entry['lineno'],
            entry['message']
        ) for entry in log_entries]
        self.execute_many(
            '''INSERT INTO logs (timestamp, level, module, funcName, lineno, message)
               VALUES (?, ?, ?, ?, ?, ?)''',
            params
        )

    def fetch_last_entries(self, limit: int) -> List[LogEntry]:
        """
        Fetches the most recent log entries, oldest first.

        :param limit: The maximum number of log entries to retrieve.
        """
        try:
            rows = self.fetch_all(
                "SELECT timestamp, level, module, message FROM logs ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,)
            )
        except sqlite3.Error as e:
            log.error(f"Failed to fetch log entries from database: {e}")
            return []
        return [_format_row(row) for row in reversed(rows)]

    def listen_for_updates(self, last_timestamp: float) -> Tuple[List[LogEntry], float]:
        """
        Polls the database for logs newer than `last_timestamp`.

        :return: The new entries and the newest timestamp seen.
        """
        try:
            rows = self.fetch_all(
                "SELECT timestamp, level, module, message FROM logs WHERE timestamp > ? ORDER BY timestamp ASC, id ASC",
                (last_timestamp,)
            )
        except sqlite3.Error as e:
            log.error(f"Failed to poll log database for updates: {e}")
            return [], last_timestamp
        entries = [_format_row(row) for row in rows]
        newest = max([last_timestamp] + [e.timestamp for e in entries])
        return entries, newest

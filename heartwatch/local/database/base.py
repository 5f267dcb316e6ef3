import sqlite3
import logging
import threading
from pathlib import Path
from contextlib import contextmanager
from typing import List, Optional, Tuple, Any, Generator

log = logging.getLogger(__name__)


class BaseDBManager:
    """
    Base class for database managers, providing common functionality.
    """

    def __init__(self, db_path: Path, lock: Optional[threading.Lock] = None, enable_wal: bool = False):
        """
        Initializes the base database manager.

        :param db_path: The path to the SQLite database file.
        :param lock: An optional lock serializing access to the database file.
        :param enable_wal: Whether to enable WAL (Write-Ahead Logging) mode.
        """
        self.db_path = Path(db_path)
        self.lock = lock
        self.enable_wal = enable_wal

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager that opens a new database connection, holding the
        lock for the duration if one was given.
        """
        if self.lock:
            self.lock.acquire()
        try:
            conn = sqlite3.connect(self.db_path, timeout=10)
            if self.enable_wal:
                conn.execute("PRAGMA journal_mode=WAL;")
            try:
                yield conn
            finally:
                conn.close()
        finally:
            if self.lock:
                self.lock.release()

    def ensure_parent_dir(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def execute(self, sql: str, params: Optional[Tuple[Any, ...]] = None) -> Any:
        """
        Executes a raw SQL command on the database.

        :param sql: The SQL command to execute.
        :param params: Optional parameters for the SQL command.
        :return: The result of the query.
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(sql, params or ())
                conn.commit()
                return cursor.fetchall()
        except sqlite3.Error as e:
            log.error(f"Database operation failed on {self.db_path.name}: {e}")
            raise

    def execute_many(self, sql: str, params: List[Tuple[Any, ...]]) -> None:
        """
        Executes a batch of SQL commands in one transaction.

        :param sql: The SQL command to execute.
        :param params: A list of tuples containing parameters for each command.
        """
        try:
            with self._get_connection() as conn:
                conn.executemany(sql, params)
                conn.commit()
        except sqlite3.Error as e:
            log.error(f"Batch database operation failed on {self.db_path.name}: {e}")
            raise

    def fetch_all(self, sql: str, params: Optional[Tuple[Any, ...]] = None) -> List[sqlite3.Row]:
        try:
            with self._get_connection() as conn:
                conn.row_factory = sqlite3.Row
                return conn.execute(sql, params or ()).fetchall()
        except sqlite3.Error as e:
            log.error(f"Failed to fetch data from {self.db_path.name}: {e}")
            raise

    def fetch_one(self, sql: str, params: Optional[Tuple[Any, ...]] = None) -> Optional[sqlite3.Row]:
        try:
            with self._get_connection() as conn:
                conn.row_factory = sqlite3.Row
                return conn.execute(sql, params or ()).fetchone()
        except sqlite3.Error as e:
            log.error(f"Failed to fetch data from {self.db_path.name}: {e}")
            raise

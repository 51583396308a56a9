"""
Database connection management for Chest of Notes.

This module provides centralized SQLite connection handling with:
- One connection per thread (the stores run queries from worker threads)
- Proper error handling and rollback
- Schema initialization for the notes table
- Connection health monitoring
"""

import sqlite3
import threading
import time
import logging
import os
from typing import Optional, Dict, Any
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

NOTES_SCHEMA = """
    CREATE TABLE IF NOT EXISTS notes (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('text', 'audio', 'video')),
        content TEXT,
        upload_complete INTEGER,
        upload_token TEXT,
        created_at TEXT NOT NULL
    )
"""

NOTES_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_notes_upload_complete ON notes (upload_complete)",
    "CREATE INDEX IF NOT EXISTS idx_notes_created_at ON notes (created_at)",
)


class DatabaseManager:
    """Centralized database connection manager with per-thread connections."""

    def __init__(self, db_path: str):
        self.db_path = str(db_path)
        self._connections: Dict[int, sqlite3.Connection] = {}
        self._lock = threading.RLock()
        self._health_stats = {
            'total_connections': 0,
            'active_connections': 0,
            'failed_connections': 0,
            'last_health_check': None
        }

    def get_connection(self) -> sqlite3.Connection:
        """Get the calling thread's connection, creating it if needed."""
        thread_id = threading.get_ident()

        with self._lock:
            try:
                if thread_id in self._connections:
                    conn = self._connections[thread_id]
                    try:
                        conn.execute("SELECT 1")
                        return conn
                    except sqlite3.Error:
                        # Connection is dead, remove it
                        del self._connections[thread_id]
                        self._health_stats['active_connections'] -= 1

                conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")

                self._connections[thread_id] = conn
                self._health_stats['total_connections'] += 1
                self._health_stats['active_connections'] += 1

                logger.debug(f"Created new database connection for thread {thread_id}")
                return conn

            except sqlite3.Error as e:
                self._health_stats['failed_connections'] += 1
                logger.error(f"Failed to create database connection: {e}")
                raise

    @contextmanager
    def get_db_context(self):
        """Context manager that commits on success and rolls back on error."""
        conn = self.get_connection()
        try:
            yield conn
        except Exception as e:
            conn.rollback()
            logger.error(f"Database operation failed: {e}")
            raise
        else:
            conn.commit()

    def close_all_connections(self):
        """Close all active connections."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error:
                    pass
            self._connections.clear()
            self._health_stats['active_connections'] = 0
            logger.info("Closed all database connections")

    def health_check(self) -> Dict[str, Any]:
        """Perform health check and return statistics."""
        health_info = {
            'database_path': self.db_path,
            'database_exists': os.path.exists(self.db_path),
            'database_size_mb': 0,
            'connection_test': False,
            'stats': self._health_stats.copy()
        }

        try:
            if health_info['database_exists']:
                health_info['database_size_mb'] = round(
                    os.path.getsize(self.db_path) / (1024 * 1024), 2
                )

            with self.get_db_context() as conn:
                conn.execute("SELECT 1")
                health_info['connection_test'] = True

            self._health_stats['last_health_check'] = time.time()

        except sqlite3.Error as e:
            logger.error(f"Database health check failed: {e}")
            health_info['error'] = str(e)

        return health_info

    def initialize_database(self):
        """Create the notes schema if it does not exist yet."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self.get_db_context() as conn:
            conn.execute(NOTES_SCHEMA)
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(notes)")}
            if "upload_token" not in columns:
                # Databases created before upload attempts were tracked
                conn.execute("ALTER TABLE notes ADD COLUMN upload_token TEXT")
            for statement in NOTES_INDEXES:
                conn.execute(statement)
        logger.info(f"Database initialized at {self.db_path}")


def create_db_manager(db_path: Optional[str] = None) -> DatabaseManager:
    """Create and initialize a database manager."""
    if db_path is None:
        from config import settings
        db_path = str(settings.db_path)
    manager = DatabaseManager(db_path)
    manager.initialize_database()
    return manager


__all__ = [
    'DatabaseManager',
    'create_db_manager',
    'NOTES_SCHEMA',
]

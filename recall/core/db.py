"""
SQLite foundation: connections and schema for messages and their vectors.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import ensure_db_directory

# Seconds a connection waits on a locked database before failing
BUSY_TIMEOUT_SEC = 30.0


@contextmanager
def get_db(db_path: str) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection with foreign keys enforced."""
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_SEC)
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
    finally:
        conn.close()


def init_db(db_path: str):
    """Initialize the database with required tables."""
    ensure_db_directory(db_path)

    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # WAL lets searches read while a save or backfill commits
        cursor.execute("PRAGMA journal_mode = WAL")

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                content TEXT NOT NULL,
                is_user BOOLEAN NOT NULL DEFAULT TRUE,
                created_at REAL NOT NULL
            )
        ''')

        # One optional vector per message, removed with its message
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS message_vectors (
                message_id TEXT PRIMARY KEY REFERENCES messages(id) ON DELETE CASCADE,
                vector BLOB NOT NULL,
                dimension INTEGER NOT NULL,
                created_at REAL NOT NULL
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_messages_created_at ON messages(created_at, id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_message_vectors_created_at ON message_vectors(created_at)')

        conn.commit()


def health_check(db_path: str) -> bool:
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return all(table in table_names for table in ['messages', 'message_vectors'])
    except sqlite3.Error:
        return False

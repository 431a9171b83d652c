"""SQLite-backed document store.

Each collection (books, users, requests, history, fines, credentials) is a set
of JSON documents keyed by their ``id`` field, all in one ``documents`` table.
Commands that touch several documents run inside ``transaction()`` so their
writes land together or not at all.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from config import settings

logger = logging.getLogger(__name__)

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE from the process environment at import time
# 2) settings.db_file (from .env or the built-in default)
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or settings.db_file

CREDENTIALS = "credentials"


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are explicit."""
    conn = sqlite3.connect(db_file or DATABASE_FILE, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the documents table if it does not exist."""
    conn = get_db_connection(db_file)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                body TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (collection, id)
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)")
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Ensure the database file and its tables exist."""
    create_tables(db_file)
    logger.debug("Document store ready at %s", db_file or DATABASE_FILE)


class DocumentSession:
    """Collection-level reads and writes over one open connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(
            "SELECT body FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ).fetchone()
        return json.loads(row["body"]) if row else None

    def all(self, collection: str) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT body FROM documents WHERE collection = ? ORDER BY rowid",
            (collection,),
        ).fetchall()
        return [json.loads(row["body"]) for row in rows]

    def put(self, collection: str, doc: Dict[str, Any]) -> None:
        """Insert or replace a document by its ``id``."""
        doc_id = doc.get("id")
        if not doc_id:
            raise ValueError(f"Documents in '{collection}' need an 'id' field.")
        self.conn.execute(
            """
            INSERT INTO documents (collection, id, body) VALUES (?, ?, ?)
            ON CONFLICT(collection, id) DO UPDATE SET body = excluded.body, updated_at = CURRENT_TIMESTAMP
            """,
            (collection, str(doc_id), json.dumps(doc, ensure_ascii=False)),
        )

    def merge(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Shallow-merge ``fields`` into an existing document; None when it is missing."""
        current = self.get(collection, doc_id)
        if current is None:
            return None
        current.update(fields)
        current["id"] = doc_id
        self.put(collection, current)
        return current

    def delete(self, collection: str, doc_id: str) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        )
        return cursor.rowcount > 0

    def clear(self, collection: str) -> int:
        cursor = self.conn.execute("DELETE FROM documents WHERE collection = ?", (collection,))
        return cursor.rowcount

    def count(self, collection: str) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM documents WHERE collection = ?", (collection,)).fetchone()
        return row[0]


@contextmanager
def open_session(db_file: Optional[str] = None) -> Iterator[DocumentSession]:
    """Session for reads and single-statement writes."""
    conn = get_db_connection(db_file)
    try:
        yield DocumentSession(conn)
    finally:
        conn.close()


@contextmanager
def transaction(db_file: Optional[str] = None) -> Iterator[DocumentSession]:
    """Session whose writes commit together, or roll back on any exception."""
    conn = get_db_connection(db_file)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield DocumentSession(conn)
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()

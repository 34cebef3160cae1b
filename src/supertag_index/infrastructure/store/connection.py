"""
SQLite connection setup.

File databases run in WAL mode with a busy timeout so query processes can
read while a sync writes. In-memory databases have a single connection and
skip both settings.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from supertag_index.core.config import DatabaseConfig

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


def is_in_memory(db_path: Path | str) -> bool:
    """True for paths that open a private in-memory database."""
    path = str(db_path)
    return path in (MEMORY_PATH, "") or path.startswith("file::memory:")


def configure_for_concurrency(conn: sqlite3.Connection, config: DatabaseConfig) -> str:
    """
    Enable multi-reader/single-writer settings on a file connection.

    Returns the journal mode SQLite reports after the change.
    """
    row = conn.execute(f"PRAGMA journal_mode={config.journal_mode};").fetchone()
    conn.execute(f"PRAGMA busy_timeout={int(config.busy_timeout_ms)};")
    mode = row[0] if row else "unknown"
    if mode.lower() != config.journal_mode.lower():
        logger.warning(f"Requested journal mode {config.journal_mode}, SQLite kept {mode}")
    return mode


def open_connection(
    db_path: Path | str,
    config: Optional[DatabaseConfig] = None,
) -> sqlite3.Connection:
    """
    Open a connection in autocommit mode.

    Transactions are issued explicitly (BEGIN IMMEDIATE ... COMMIT) by the
    callers that need them.
    """
    config = config or DatabaseConfig()

    if is_in_memory(db_path):
        conn = sqlite3.connect(MEMORY_PATH, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), isolation_level=None)
    conn.row_factory = sqlite3.Row
    configure_for_concurrency(conn, config)
    return conn

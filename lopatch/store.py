"""
Projection Store — SQLite mirror of relational tables

Every relational table is projected into a SQLite table named after its full
table name (``land_units_tables``).  Two identity columns come first:

    archive_name   archive the record came from (or the override archive)
    file_name      record file name (``~`` prefixed for base-game records)

followed by the data columns.  Row order is the insertion order (``rowid``).
Tables of different versions share one SQLite table; their column sets are
unioned with ``ALTER TABLE ADD COLUMN`` and missing cells read back as the
column type's default.

Files, one pair per game under ``<patch_db_dir>/<game_key>/``:

    vanilla.db3    snapshot of base-game tables (rebuilt when stale)
    working.db3    copy of the snapshot plus mod and override tables

Thread safety: connections come from a bounded ``ConnectionPool``; callers
borrow one with ``with pool.connection() as conn:``.  Table decoding runs in
a thread pool, projection writes are sequential in path order.

Public API:
    ConnectionPool(db_path, size)
    ProjectionStore(db_path, pool_size)
    project_table(conn, archive_name, file_name, table)
    extract_rows(conn, table, archive_name, file_name)
    snapshot_is_stale(snapshot_path, executable) -> bool
    rebuild_snapshot(snapshot_path, records, workers) -> int
    make_working_copy(snapshot_path, working_path) -> str
"""

from __future__ import annotations

import logging
import os
import queue
import shutil
import sqlite3
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from lopatch.codec import decode_record
from lopatch.errors import DecodeFailure, IOFailure
from lopatch.types import Column, Record, RelationalTable

try:
    import fcntl as _fcntl
    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False

logger = logging.getLogger(__name__)

SNAPSHOT_FILE = "vanilla.db3"
WORKING_FILE = "working.db3"

IDENTITY_COLUMNS = ("archive_name", "file_name")

_SQL_TYPES = {"str": "TEXT", "int": "INTEGER", "float": "REAL", "bool": "INTEGER"}

# Serializes snapshot rebuilds inside this process; the lock file covers others.
_REBUILD_LOCK = threading.Lock()


# ---------------------------------------------------------------------------
# Connection pool
# ---------------------------------------------------------------------------

class ConnectionPool:
    """Bounded pool of SQLite connections to one database file."""

    def __init__(self, db_path: str, size: int = 4):
        if size < 1:
            raise ValueError(f"Pool size must be >= 1, got {size}")
        self._db_path = db_path
        self._size = size
        self._idle: "queue.Queue[sqlite3.Connection]" = queue.Queue(maxsize=size)
        self._all: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def db_path(self) -> str:
        return self._db_path

    def _acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise IOFailure(f"Connection pool for {self._db_path} is closed")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass
        with self._lock:
            if len(self._all) < self._size:
                conn = sqlite3.connect(self._db_path, check_same_thread=False)
                self._all.append(conn)
                return conn
        return self._idle.get()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a connection; it is returned to the pool on every exit path.

        Commits on success, rolls back the open transaction on error.
        """
        conn = self._acquire()
        try:
            yield conn
            conn.commit()
        except BaseException:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            self._idle.put(conn)

    def close(self) -> None:
        """Close every connection the pool created."""
        with self._lock:
            self._closed = True
            for conn in self._all:
                conn.close()
            self._all.clear()

    def __enter__(self) -> ConnectionPool:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Projection helpers
# ---------------------------------------------------------------------------

def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _column_type_from_sql(decl: str) -> str:
    decl = (decl or "").upper()
    if "BOOL" in decl:
        return "bool"
    if "INT" in decl:
        return "int"
    if any(t in decl for t in ("REAL", "FLOA", "DOUB", "NUMERIC", "DECIMAL")):
        return "float"
    return "str"


def table_columns(conn: sqlite3.Connection, sql_name: str) -> List[Tuple[str, str]]:
    """(name, declared type) of an existing SQLite table; empty if absent."""
    rows = conn.execute(f"PRAGMA table_info({quote_identifier(sql_name)})").fetchall()
    return [(r[1], r[2]) for r in rows]


def ensure_table(conn: sqlite3.Connection, sql_name: str, columns: Sequence[Column]) -> None:
    """Create ``sql_name`` or add the columns it lacks."""
    existing = {name for name, _ in table_columns(conn, sql_name)}
    if not existing:
        defs = [f"{quote_identifier(c)} TEXT NOT NULL" for c in IDENTITY_COLUMNS]
        defs += [f"{quote_identifier(c.name)} {_SQL_TYPES[c.type]}" for c in columns]
        conn.execute(f"CREATE TABLE {quote_identifier(sql_name)} ({', '.join(defs)})")
        return
    for col in columns:
        if col.name not in existing:
            conn.execute(
                f"ALTER TABLE {quote_identifier(sql_name)} "
                f"ADD COLUMN {quote_identifier(col.name)} {_SQL_TYPES[col.type]}"
            )


def project_table(
    conn: sqlite3.Connection, archive_name: str, file_name: str, table: RelationalTable,
) -> int:
    """Insert all rows of ``table`` under its (archive_name, file_name) identity.

    Returns:
        Number of rows inserted.
    """
    sql_name = table.table_name
    ensure_table(conn, sql_name, table.columns)
    names = list(IDENTITY_COLUMNS) + table.column_names
    placeholders = ", ".join("?" for _ in names)
    conn.executemany(
        f"INSERT INTO {quote_identifier(sql_name)} "
        f"({', '.join(quote_identifier(n) for n in names)}) VALUES ({placeholders})",
        ([archive_name, file_name] + list(row) for row in table.rows),
    )
    return len(table.rows)


def extract_rows(
    conn: sqlite3.Connection, table: RelationalTable, archive_name: str, file_name: str,
) -> List[List[Any]]:
    """Current rows of one (archive_name, file_name) slice, in rowid order.

    Columns missing from the SQLite table read back as defaults.

    Raises:
        DecodeFailure: If a stored value cannot be converted to its column type.
    """
    present = {name for name, _ in table_columns(conn, table.table_name)}
    if not present:
        return []
    selected = [c for c in table.columns if c.name in present]
    if selected:
        cols = ", ".join(quote_identifier(c.name) for c in selected)
    else:
        cols = "NULL"
    cursor = conn.execute(
        f"SELECT {cols} FROM {quote_identifier(table.table_name)} "
        "WHERE archive_name = ? AND file_name = ? ORDER BY rowid",
        (archive_name, file_name),
    )
    rows: List[List[Any]] = []
    for raw in cursor:
        values = dict(zip((c.name for c in selected), raw))
        try:
            rows.append([col.coerce(values.get(col.name)) for col in table.columns])
        except ValueError as e:
            raise DecodeFailure(
                f"{table.table_name}/{file_name}", f"bad value in projection store: {e}"
            ) from e
    return rows


def columns_from_store(conn: sqlite3.Connection, sql_name: str) -> Optional[List[Column]]:
    """Data columns of a SQLite table (identity columns excluded), or None if absent."""
    info = table_columns(conn, sql_name)
    if not info:
        return None
    return [
        Column(name, _column_type_from_sql(decl))
        for name, decl in info if name not in IDENTITY_COLUMNS
    ]


# ---------------------------------------------------------------------------
# Bulk decode + projection
# ---------------------------------------------------------------------------

def _decode_one(record: Record) -> Optional[RelationalTable]:
    try:
        table = decode_record(record)
    except DecodeFailure as e:
        logger.warning("Skipping table %s: %s", record.path, e)
        return None
    if not isinstance(table, RelationalTable):
        return None
    return table


def decode_tables(
    records: Sequence[Record], workers: int = 4,
) -> List[Tuple[Record, RelationalTable]]:
    """Decode table records in parallel; failures are logged and skipped.

    The result keeps the input order.
    """
    if not records:
        return []
    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        decoded = list(executor.map(_decode_one, records))
    return [(rec, table) for rec, table in zip(records, decoded) if table is not None]


def populate(conn: sqlite3.Connection, decoded: Sequence[Tuple[Record, RelationalTable]]) -> int:
    """Project decoded tables sequentially; per-table failures are logged and skipped.

    Returns:
        Number of tables projected.
    """
    count = 0
    for record, table in decoded:
        try:
            project_table(conn, record.archive_name, record.file_name, table)
            count += 1
        except sqlite3.Error as e:
            logger.warning(
                "Table %s_v%d (%s) failed to be projected: %s",
                table.table_name, table.version, record.path, e,
            )
    return count


class ProjectionStore:
    """A projection database file accessed through a connection pool."""

    def __init__(self, db_path: str, pool_size: int = 4):
        self.db_path = db_path
        self.pool = ConnectionPool(db_path, size=pool_size)

    def project(self, records: Sequence[Record], workers: int = 4) -> int:
        """Decode (in parallel) and project (sequentially) table records."""
        decoded = decode_tables(records, workers)
        with self.pool.connection() as conn:
            count = populate(conn, decoded)
        logger.debug("Projected %d/%d table(s) into %s", count, len(records), self.db_path)
        return count

    def extract(self, record: Record, table: RelationalTable, archive_name: Optional[str] = None) -> List[List[Any]]:
        with self.pool.connection() as conn:
            return extract_rows(conn, table, archive_name or record.archive_name, record.file_name)

    def columns_of(self, sql_name: str) -> Optional[List[Column]]:
        with self.pool.connection() as conn:
            return columns_from_store(conn, sql_name)

    def close(self) -> None:
        self.pool.close()

    def __enter__(self) -> ProjectionStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Vanilla snapshot
# ---------------------------------------------------------------------------

def store_paths(patch_db_dir: str, game_key: str) -> Tuple[str, str]:
    """(snapshot path, working copy path) for one game."""
    base = os.path.join(patch_db_dir, game_key)
    return os.path.join(base, SNAPSHOT_FILE), os.path.join(base, WORKING_FILE)


def _creation_time(path: str) -> float:
    st = os.stat(path)
    return getattr(st, "st_birthtime", st.st_ctime)


def snapshot_is_stale(snapshot_path: str, executable: Optional[str] = None) -> bool:
    """True if the snapshot is missing or older than the game executable.

    A missing or unreadable executable never forces a rebuild.
    """
    if not os.path.isfile(snapshot_path):
        return True
    if not executable:
        return False
    try:
        return _creation_time(executable) > os.stat(snapshot_path).st_mtime
    except OSError as e:
        logger.debug("Cannot stat %s: %s", executable, e)
        return False


@contextmanager
def _exclusive_lock(lock_path: str) -> Iterator[None]:
    """Process-wide lock plus an advisory lock file (POSIX only)."""
    with _REBUILD_LOCK:
        with open(lock_path, "w", encoding="utf-8") as fh:
            if _HAS_FCNTL:
                _fcntl.flock(fh, _fcntl.LOCK_EX)
            try:
                yield
            finally:
                if _HAS_FCNTL:
                    _fcntl.flock(fh, _fcntl.LOCK_UN)


def rebuild_snapshot(snapshot_path: str, records: Sequence[Record], workers: int = 4) -> int:
    """Rebuild the snapshot from base-game table records.

    The store is written to a fresh temporary file and atomically moved into
    place, so identical records give a byte-identical snapshot.

    Returns:
        Number of tables projected.

    Raises:
        IOFailure: If the snapshot cannot be written.
    """
    ordered = sorted(records, key=lambda r: r.path)
    decoded = decode_tables(ordered, workers)
    parent = os.path.dirname(os.path.abspath(snapshot_path))
    try:
        os.makedirs(parent, exist_ok=True)
        with _exclusive_lock(snapshot_path + ".lock"):
            fd, tmp = tempfile.mkstemp(prefix=".vanilla-", suffix=".db3", dir=parent)
            os.close(fd)
            try:
                conn = sqlite3.connect(tmp)
                try:
                    count = populate(conn, decoded)
                    conn.commit()
                finally:
                    conn.close()
                os.replace(tmp, snapshot_path)
            finally:
                if os.path.exists(tmp):
                    os.unlink(tmp)
    except (OSError, sqlite3.Error) as e:
        raise IOFailure(f"Cannot rebuild snapshot {snapshot_path}: {e}") from e
    logger.info("Vanilla snapshot rebuilt: %s (%d tables)", snapshot_path, count)
    return count


def make_working_copy(snapshot_path: str, working_path: str) -> str:
    """Replace the working store with a fresh copy of the snapshot.

    Raises:
        IOFailure: If the copy fails.
    """
    try:
        os.makedirs(os.path.dirname(os.path.abspath(working_path)), exist_ok=True)
        for suffix in ("-journal", "-wal", "-shm"):
            if os.path.exists(working_path + suffix):
                os.unlink(working_path + suffix)
        shutil.copyfile(snapshot_path, working_path)
    except OSError as e:
        raise IOFailure(f"Cannot create working store {working_path}: {e}") from e
    return working_path

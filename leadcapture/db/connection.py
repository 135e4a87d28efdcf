"""
Database Connection Management
One statement contract over two engines: SQLite (embedded, single connection)
and PostgreSQL (bounded connection pool).

Statements are written once with neutral '?' placeholders and positional
arguments; the active Dialect rewrites them for its driver. Each statement runs
in its own transaction: commit on success, rollback on error. Driver errors are
surfaced unchanged, except connection acquisition failures which become
StorageUnavailable. Nothing here retries.

Usage:
    db = create_database(config)
    result = db.execute("UPDATE leads SET status = ? WHERE id = ?", ('contatado', 42))
    lead = db.fetch_one("SELECT * FROM leads WHERE email = ?", ('ana@x.com',))
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union
from zoneinfo import ZoneInfo

import psycopg2
import psycopg2.errorcodes
import psycopg2.pool
from psycopg2.extras import RealDictCursor

from leadcapture.errors import StorageUnavailable

logger = logging.getLogger(__name__)


@dataclass
class ExecResult:
    """Outcome of a write statement."""
    rows_affected: int = 0
    inserted_id: Optional[int] = None


def _rewrite_placeholders(sql: str, placeholder: str, escape_percent: bool) -> str:
    """
    Replace '?' outside quoted literals/identifiers. With escape_percent every
    '%' is doubled, quoted or not, since the driver formats the whole string.
    """
    out = []
    quote = None
    for ch in sql:
        if ch == '%' and escape_percent:
            out.append('%%')
            continue
        if quote:
            out.append(ch)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif ch == '?':
            out.append(placeholder)
        else:
            out.append(ch)
    return ''.join(out)


def _as_zone(timezone: Union[str, tzinfo]) -> tzinfo:
    return ZoneInfo(timezone) if isinstance(timezone, str) else timezone


# =============================================================================
# DIALECTS
# =============================================================================

class Dialect:
    """Everything that differs between engines, in one place."""

    name = ''
    column_types: Dict[str, str] = {}

    def __init__(self, timezone: Union[str, tzinfo]):
        self.tz = _as_zone(timezone)

    def render(self, sql: str) -> str:
        raise NotImplementedError

    def returning_id(self, sql: str) -> str:
        """Make an INSERT report its generated id."""
        return sql

    def to_db_timestamp(self, dt: Optional[datetime]) -> Any:
        raise NotImplementedError

    def from_db_timestamp(self, value: Any) -> Optional[datetime]:
        if value is None or value == '':
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        if value.tzinfo is None or value.utcoffset() is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)

    def from_db_bool(self, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ('1', 'true', 't')
        return bool(value)

    def is_unique_violation(self, exc: BaseException) -> bool:
        raise NotImplementedError

    def is_already_exists(self, exc: BaseException) -> bool:
        raise NotImplementedError

    def columns_query(self, table: str) -> Tuple[str, Tuple, str]:
        """Return (sql, args, column-name key) listing a table's columns."""
        raise NotImplementedError


class SqliteDialect(Dialect):
    name = 'sqlite'
    column_types = {
        'pk': 'INTEGER PRIMARY KEY AUTOINCREMENT',
        'timestamp': 'DATETIME',
        'text': 'TEXT',
        'bool': 'BOOLEAN',
        'int': 'INTEGER',
    }

    def render(self, sql: str) -> str:
        return sql

    def to_db_timestamp(self, dt: Optional[datetime]) -> Optional[str]:
        # Stored as naive local civil time so text comparison orders correctly
        if dt is None:
            return None
        return dt.astimezone(self.tz).strftime('%Y-%m-%d %H:%M:%S')

    def is_unique_violation(self, exc: BaseException) -> bool:
        return isinstance(exc, sqlite3.IntegrityError) and 'UNIQUE' in str(exc).upper()

    def is_already_exists(self, exc: BaseException) -> bool:
        if not isinstance(exc, sqlite3.OperationalError):
            return False
        message = str(exc).lower()
        return 'already exists' in message or 'duplicate column' in message

    def columns_query(self, table: str) -> Tuple[str, Tuple, str]:
        return f"PRAGMA table_info({table})", (), 'name'


class PostgresDialect(Dialect):
    name = 'postgres'
    column_types = {
        'pk': 'SERIAL PRIMARY KEY',
        'timestamp': 'TIMESTAMP WITH TIME ZONE',
        'text': 'TEXT',
        'bool': 'BOOLEAN',
        'int': 'INTEGER',
    }

    # Concurrent CREATE ... IF NOT EXISTS can still collide in the catalogs
    _ALREADY_EXISTS_CODES = {
        psycopg2.errorcodes.DUPLICATE_TABLE,
        psycopg2.errorcodes.DUPLICATE_COLUMN,
        psycopg2.errorcodes.DUPLICATE_OBJECT,
        psycopg2.errorcodes.UNIQUE_VIOLATION,
    }

    def render(self, sql: str) -> str:
        return _rewrite_placeholders(sql, '%s', escape_percent=True)

    def returning_id(self, sql: str) -> str:
        return sql.rstrip().rstrip(';') + ' RETURNING id'

    def to_db_timestamp(self, dt: Optional[datetime]) -> Optional[datetime]:
        if dt is None:
            return None
        return dt.astimezone(self.tz)

    def is_unique_violation(self, exc: BaseException) -> bool:
        return (isinstance(exc, psycopg2.IntegrityError)
                and getattr(exc, 'pgcode', None) == psycopg2.errorcodes.UNIQUE_VIOLATION)

    def is_already_exists(self, exc: BaseException) -> bool:
        return (isinstance(exc, psycopg2.Error)
                and getattr(exc, 'pgcode', None) in self._ALREADY_EXISTS_CODES)

    def columns_query(self, table: str) -> Tuple[str, Tuple, str]:
        return (
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_name = ? AND table_schema = current_schema()",
            (table,),
            'column_name',
        )


# =============================================================================
# DATABASES
# =============================================================================

class Database:
    """
    Backend adapter. Subclasses provide _cursor() and _inserted_id();
    rows always come back as plain dicts.
    """

    def __init__(self, dialect: Dialect):
        self.dialect = dialect

    @property
    def engine(self) -> str:
        return self.dialect.name

    def _cursor(self):
        raise NotImplementedError

    def _inserted_id(self, cur, sql: str) -> Optional[int]:
        raise NotImplementedError

    def execute(self, sql: str, args: Sequence = ()) -> ExecResult:
        with self._cursor() as cur:
            cur.execute(self.dialect.render(sql), tuple(args))
            inserted_id = self._inserted_id(cur, sql)
            return ExecResult(rows_affected=max(cur.rowcount, 0), inserted_id=inserted_id)

    def fetch_one(self, sql: str, args: Sequence = ()) -> Optional[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(self.dialect.render(sql), tuple(args))
            row = cur.fetchone()
            return dict(row) if row is not None else None

    def fetch_all(self, sql: str, args: Sequence = ()) -> List[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(self.dialect.render(sql), tuple(args))
            return [dict(row) for row in cur.fetchall()]

    def column_names(self, table: str) -> Set[str]:
        sql, args, key = self.dialect.columns_query(table)
        return {row[key] for row in self.fetch_all(sql, args)}

    def close(self) -> None:
        raise NotImplementedError


def _is_insert(sql: str) -> bool:
    return sql.lstrip().upper().startswith('INSERT')


def _unicode_lower(value):
    # SQLite's built-in LOWER() folds ASCII only ('JOÃO' -> 'joÃo')
    return value.lower() if isinstance(value, str) else value


class SqliteDatabase(Database):
    """
    Embedded engine: one long-lived connection shared by all threads,
    statements serialized by a lock.
    """

    def __init__(self, path: str, dialect: SqliteDialect, timeout: float = 10.0):
        super().__init__(dialect)
        self.path = path
        if path != ':memory:':
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(path, timeout=timeout, check_same_thread=False)
        except sqlite3.OperationalError as exc:
            raise StorageUnavailable(f"Cannot open SQLite database {path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.create_function('LOWER', 1, _unicode_lower, deterministic=True)
        self._lock = threading.RLock()
        logger.debug(f"SQLite connection opened: {path}")

    @contextmanager
    def _cursor(self):
        with self._lock:
            cur = self._conn.cursor()
            try:
                yield cur
                self._conn.commit()
            except Exception as e:
                self._conn.rollback()
                logger.debug(f"Transaction rolled back due to error: {e}")
                raise
            finally:
                cur.close()

    def _inserted_id(self, cur, sql: str) -> Optional[int]:
        return cur.lastrowid if _is_insert(sql) else None

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.debug("SQLite connection closed")


class PostgresDatabase(Database):
    """
    Networked engine behind a bounded pool. Acquisition blocks up to `timeout`
    seconds, then fails fast with StorageUnavailable.
    """

    def __init__(self, dsn: str, dialect: PostgresDialect,
                 minconn: int = 1, maxconn: int = 10, timeout: float = 10.0):
        super().__init__(dialect)
        self._timeout = timeout
        self._slots = threading.BoundedSemaphore(maxconn)
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn, maxconn, dsn, connect_timeout=max(1, int(timeout)),
            )
        except psycopg2.OperationalError as exc:
            raise StorageUnavailable(f"Cannot connect to PostgreSQL: {exc}") from exc
        logger.debug(f"PostgreSQL pool created (min={minconn}, max={maxconn})")

    @contextmanager
    def _connection(self):
        if not self._slots.acquire(timeout=self._timeout):
            raise StorageUnavailable(f"No database connection available within {self._timeout}s")
        try:
            try:
                conn = self._pool.getconn()
            except (psycopg2.OperationalError, psycopg2.pool.PoolError) as exc:
                raise StorageUnavailable(f"Cannot acquire PostgreSQL connection: {exc}") from exc
            try:
                yield conn
            finally:
                self._pool.putconn(conn, close=bool(conn.closed))
        finally:
            self._slots.release()

    @contextmanager
    def _cursor(self):
        with self._connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            try:
                yield cur
                conn.commit()
            except Exception as e:
                if not conn.closed:
                    conn.rollback()
                logger.debug(f"Transaction rolled back due to error: {e}")
                raise
            finally:
                cur.close()

    def _inserted_id(self, cur, sql: str) -> Optional[int]:
        if cur.description is None:
            return None
        row = cur.fetchone()
        return row['id'] if row else None

    def close(self) -> None:
        self._pool.closeall()
        logger.debug("PostgreSQL pool closed")


def _mask_url(url: str) -> str:
    """Mask password in DB URL for safe logging."""
    if "@" in url:
        before_at, after_at = url.split("@", 1)
        if ":" in before_at.split("//", 1)[-1]:
            scheme_user = before_at.rsplit(":", 1)[0]
            return f"{scheme_user}:****@{after_at}"
    return url


def create_database(cfg) -> Database:
    """Pick the engine once, from the configuration's ENGINE value."""
    if cfg.ENGINE == 'postgres':
        logger.info(f"Database engine: PostgreSQL ({_mask_url(cfg.DATABASE_URL)})")
        return PostgresDatabase(
            cfg.DATABASE_URL,
            PostgresDialect(cfg.TIMEZONE),
            minconn=cfg.DB_POOL_MIN,
            maxconn=cfg.DB_POOL_MAX,
            timeout=cfg.DB_POOL_TIMEOUT,
        )
    logger.info(f"Database engine: SQLite ({cfg.DATABASE_PATH})")
    return SqliteDatabase(cfg.DATABASE_PATH, SqliteDialect(cfg.TIMEZONE), timeout=cfg.DB_POOL_TIMEOUT)

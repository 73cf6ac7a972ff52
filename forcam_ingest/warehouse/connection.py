"""
Pooled PostgreSQL access for the cycle-time store

One pool is shared by every worker of a run. Both opening the pool and
checking out a connection go through the retry executor, and any
connection-level failure is reported as TransientStoreError.
"""
from contextlib import contextmanager

from psycopg import Connection, OperationalError
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from forcam_ingest.core.config import DatabaseSettings
from forcam_ingest.core.errors import FatalConfigurationError, TransientStoreError
from forcam_ingest.observability.logger import get_logger
from forcam_ingest.pipeline.retry import RetryExecutor

logger = get_logger(__name__)


class DatabaseConnectionPool:
    """
    Bounded psycopg pool with retried open and checkout

    Rows come back as dictionaries. The pool must be opened before use,
    either explicitly or by entering it as a context manager.
    """

    def __init__(self, settings: DatabaseSettings, retry: RetryExecutor | None = None) -> None:
        if not settings.password:
            raise FatalConfigurationError(
                "No database password configured: set DB_PASSWORD or database.password"
            )

        self.settings = settings
        self.retry = retry or RetryExecutor()
        self.conninfo = make_conninfo(
            host=settings.host,
            port=settings.port,
            dbname=settings.database,
            user=settings.user,
            password=settings.password,
            connect_timeout=int(settings.timeout),
        )
        self._pool: ConnectionPool | None = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def _retried(self, func, operation_name: str):
        return self.retry.call(
            func,
            self.settings.connect_max_attempts,
            self.settings.connect_base_delay_seconds,
            retry_on=(TransientStoreError,),
            operation_name=operation_name,
        )

    def _try_open(self) -> None:
        pool = ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.settings.min_size,
            max_size=self.settings.max_size,
            timeout=self.settings.timeout,
            kwargs={"row_factory": dict_row},
            open=False,
        )
        try:
            pool.open(wait=True, timeout=self.settings.timeout)
        except OperationalError as e:
            pool.close()
            raise TransientStoreError(f"Database unreachable at {self.settings.host}:{self.settings.port}: {e}") from e
        self._pool = pool

    def open(self) -> None:
        """
        Open the pool, retrying while the database is unreachable

        Raises:
            TransientStoreError: all connect attempts failed
            OperationCancelled: the run stopped between attempts
        """
        if self._pool is not None:
            return
        self._retried(self._try_open, "db_pool_open")
        logger.info(
            "Database pool opened",
            extra={"host": self.settings.host, "database": self.settings.database,
                   "max_size": self.settings.max_size},
        )

    def close(self) -> None:
        if self._pool is None:
            return
        self._pool.close()
        self._pool = None
        logger.info("Database pool closed", extra={"database": self.settings.database})

    def _try_checkout(self) -> Connection:
        try:
            return self._pool.getconn()
        except OperationalError as e:
            raise TransientStoreError(f"No pooled connection available: {e}") from e

    def acquire(self) -> Connection:
        """
        Check a connection out of the pool; hand it back with release()

        Raises:
            RuntimeError: open() has not been called
            TransientStoreError: no connection within the retry budget
        """
        if self._pool is None:
            raise RuntimeError("Database pool is closed; call open() before acquiring connections")
        return self._retried(self._try_checkout, "db_acquire")

    def release(self, conn: Connection) -> None:
        if self._pool is not None:
            self._pool.putconn(conn)

    @contextmanager
    def get_connection(self):
        """Borrow a connection for the duration of a with block."""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def execute_query(self, query: str, params: tuple | None = None) -> list[dict]:
        """Run a read-only statement and return every row."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                rows = cur.fetchall()
            conn.rollback()
            return rows

    def execute_command(self, command: str, params: tuple | None = None) -> int:
        """
        Run one write or DDL statement in its own transaction

        Returns:
            Affected row count as reported by the driver
        """
        with self.get_connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(command, params)
                    return cur.rowcount

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

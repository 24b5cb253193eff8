"""Pooled, transactional, identity-bound database sessions.

A ``DBPool`` is constructed once per process and handed to every
``DBConnection`` that needs it. A ``DBConnection`` lives for one request:
it checks out one client, binds the session to the caller's identity,
runs the request's statements in a single transaction, and gives the client
back exactly once.

Example:
    Run a request's statements in one transaction:
        >>> pool = get_db_pool()
        >>> connection = DBConnection(pool, keycloak_token)
        >>> with transaction(connection):
        ...     connection.query("SELECT 1")
"""

from __future__ import annotations

import contextlib
import enum
import logging
import threading
from typing import TYPE_CHECKING, Any, NamedTuple, Protocol

import psycopg2
import psycopg2.extensions
import psycopg2.extras
import psycopg2.pool

from restoration.core import auth, config, errors

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence

    from psycopg2 import sql

logger = logging.getLogger(__name__)

PATCH_USER_GUID_SQL = """
UPDATE
  system_user
SET
  user_guid = %(user_guid)s
WHERE
  system_user_id
IN (
  SELECT
    su.system_user_id
  FROM
    system_user su
  LEFT JOIN
    user_identity_source uis
  ON
    uis.user_identity_source_id = su.user_identity_source_id
  WHERE
    su.user_identifier ILIKE %(user_identifier)s
  AND
    uis.name ILIKE %(user_identity_source)s
  AND
    su.user_guid IS NULL
);
"""

SET_USER_CONTEXT_SQL = """
SELECT api_set_context(%(user_guid)s, %(user_identity_source)s);
"""


class QueryResult(NamedTuple):
    rows: list[dict[str, Any]]
    row_count: int


class SQLStatement(NamedTuple):
    """Prepared statement text with its bound values."""

    text: str
    values: Sequence[Any] | Mapping[str, Any] | None = None


class ComposedStatement(NamedTuple):
    """Query assembled with ``psycopg2.sql`` plus its bound values."""

    query: sql.Composable
    values: Sequence[Any] | Mapping[str, Any] | None = None


class ConnectionProtocol(Protocol):
    """What services need from a connection.

    ``DBConnection`` implements it against PostgreSQL; tests provide fakes.
    """

    def query(
        self,
        text: str,
        values: Sequence[Any] | Mapping[str, Any] | None = None,
    ) -> QueryResult: ...

    def sql(self, statement: SQLStatement) -> QueryResult: ...

    def query_builder_sql(self, builder: ComposedStatement) -> QueryResult: ...

    def system_user_id(self) -> int: ...


class DBPool:
    """Bounded pool of PostgreSQL clients.

    Wraps ``psycopg2.pool.ThreadedConnectionPool``, which fails fast when it
    is exhausted, with a semaphore so that callers beyond capacity wait for a
    client to be returned instead.

    Args:
        settings: Supplies the connection string, the maximum pool size and
            the acquisition timeout in milliseconds (0 waits indefinitely).
    """

    def __init__(self, settings: config.Settings) -> None:
        self.settings = settings
        self.max_size = settings.db_pool_size
        self.acquire_timeout_ms = settings.db_connection_timeout
        self._slots = threading.BoundedSemaphore(self.max_size)
        self._lock = threading.Lock()
        self._pool: psycopg2.pool.ThreadedConnectionPool | None = None

    @property
    def initialized(self) -> bool:
        return self._pool is not None

    def initialize(self) -> None:
        """Create the underlying pool; does nothing if it already exists."""
        with self._lock:
            if self._pool is not None:
                return
            logger.debug(
                "creating db pool: host=%s database=%s max=%s",
                self.settings.db_host,
                self.settings.db_database,
                self.max_size,
            )
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                0,
                self.max_size,
                self.settings.database_url,
            )

    def acquire(self) -> psycopg2.extensions.connection:
        """Check out one client, waiting for a free slot if necessary.

        Raises:
            ConnectionUnavailable: If the pool is not initialized, or no
                client was returned within the acquisition timeout.
        """
        if self._pool is None:
            raise errors.ConnectionUnavailable("DBPool is not initialized")

        if self.acquire_timeout_ms > 0:
            acquired = self._slots.acquire(timeout=self.acquire_timeout_ms / 1000)
        else:
            acquired = self._slots.acquire()
        if not acquired:
            raise errors.ConnectionUnavailable(
                "Timed out waiting for a database connection"
            )

        try:
            return self._pool.getconn()
        except Exception:
            self._slots.release()
            raise

    def put(self, client: psycopg2.extensions.connection) -> None:
        """Return a client previously handed out by ``acquire``.

        A client handed out before the pool was closed is closed instead.
        """
        try:
            if self._pool is not None:
                self._pool.putconn(client)
            else:
                client.close()
        finally:
            self._slots.release()

    def close(self) -> None:
        with self._lock:
            if self._pool is None:
                return
            self._pool.closeall()
            self._pool = None
        logger.debug("db pool closed")


_db_pool: DBPool | None = None
_db_pool_lock = threading.Lock()


def get_db_pool() -> DBPool:
    """Return the process-wide pool, creating it on first use.

    Creation happens under a lock, so requests arriving together while the
    pool does not exist yet still share one pool. Callers receive the pool
    as an explicit dependency rather than reading the module state.
    """
    global _db_pool
    if _db_pool is None:
        with _db_pool_lock:
            if _db_pool is None:
                pool = DBPool(config.get_settings())
                pool.initialize()
                _db_pool = pool
    return _db_pool


def close_db_pool() -> None:
    """Close the process-wide pool, if one was created."""
    global _db_pool
    with _db_pool_lock:
        if _db_pool is not None:
            _db_pool.close()
            _db_pool = None


class ConnectionState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    RELEASED = "released"


class DBConnection:
    """One transactional database session bound to one authenticated user.

    ``open`` checks a client out of the pool and sets the user context,
    every query runs in the same transaction, and ``release`` puts the
    client back. Query, commit, rollback and ``system_user_id`` require the
    connection to be open and raise ``NotOpen`` otherwise.

    Args:
        pool: Pool to draw the client from.
        token: Verified identity token claims of the caller.

    Raises:
        GeneralError: If no token is given.
    """

    def __init__(self, pool: DBPool, token: auth.KeycloakToken) -> None:
        if not token:
            raise errors.GeneralError("Keycloak token is undefined")

        self._pool = pool
        self._token = token
        self._client: psycopg2.extensions.connection | None = None
        self._state = ConnectionState.CLOSED
        self._system_user_id: int | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    def _open_client(self) -> psycopg2.extensions.connection:
        match self._state:
            case ConnectionState.OPEN if self._client is not None:
                return self._client
            case _:
                raise errors.NotOpen()

    def open(self) -> None:
        """Check out a client, start the transaction and set the user context.

        Does nothing unless the connection is still closed. If the user
        context cannot be set the connection stays open so that the caller
        can roll back.
        """
        if self._state is not ConnectionState.CLOSED:
            return

        self._client = self._pool.acquire()
        self._state = ConnectionState.OPEN
        logger.debug("db connection opened")

        self._set_user_context()

    def release(self) -> None:
        """Return the client to the pool; later calls do nothing."""
        match self._state:
            case ConnectionState.OPEN:
                client = self._open_client()
                self._client = None
                self._state = ConnectionState.RELEASED
                self._pool.put(client)
                logger.debug("db connection released")
            case ConnectionState.CLOSED | ConnectionState.RELEASED:
                return

    def commit(self) -> None:
        self._open_client().commit()
        logger.debug("transaction committed")

    def rollback(self) -> None:
        self._open_client().rollback()
        logger.debug("transaction rolled back")

    def query(
        self,
        text: str,
        values: Sequence[Any] | Mapping[str, Any] | None = None,
    ) -> QueryResult:
        """Execute a statement in the open transaction.

        Args:
            text: SQL text with psycopg2 placeholders.
            values: Values bound to the placeholders.

        Returns:
            The rows as dictionaries (empty for statements that return
            nothing) and the affected row count.

        Raises:
            NotOpen: If the connection is not open.
        """
        client = self._open_client()
        with client.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
            cursor.execute(text, values)
            if cursor.description is None:
                rows: list[dict[str, Any]] = []
            else:
                rows = [dict(row) for row in cursor.fetchall()]
            return QueryResult(rows=rows, row_count=cursor.rowcount)

    def sql(self, statement: SQLStatement) -> QueryResult:
        return self.query(statement.text, statement.values)

    def query_builder_sql(self, builder: ComposedStatement) -> QueryResult:
        """Render a composed query against this session and execute it."""
        text = builder.query.as_string(self._open_client())
        return self.query(text, builder.values)

    def system_user_id(self) -> int:
        """Return the id of the system user the session runs as."""
        self._open_client()
        return self._system_user_id  # type: ignore[return-value]

    def _set_user_context(self) -> None:
        user_guid = auth.get_user_guid(self._token)
        user_identifier = auth.get_user_identifier(self._token)
        user_identity_source = auth.get_user_identity_source(self._token)
        logger.debug(
            "set user context: guid=%s identifier=%s source=%s",
            user_guid,
            user_identifier,
            user_identity_source,
        )

        if not user_guid or not user_identifier or not user_identity_source:
            raise errors.GeneralError("Failed to identify authenticated user")

        try:
            self.query(
                PATCH_USER_GUID_SQL,
                {
                    "user_guid": user_guid.lower(),
                    "user_identifier": user_identifier,
                    "user_identity_source": user_identity_source,
                },
            )
        except psycopg2.Error as exc:
            logger.error("failed to patch user guid: %s", exc)
            raise errors.QueryExecutionError(
                "Failed to patch user guid", [exc]
            ) from exc

        try:
            result = self.query(
                SET_USER_CONTEXT_SQL,
                {
                    "user_guid": user_guid,
                    "user_identity_source": user_identity_source,
                },
            )
        except psycopg2.Error as exc:
            logger.error("failed to set user context: %s", exc)
            raise errors.QueryExecutionError(
                "Failed to set user context", [exc]
            ) from exc

        if not result.rows or result.rows[0].get("api_set_context") is None:
            raise errors.QueryExecutionError("Failed to set user context")

        self._system_user_id = int(result.rows[0]["api_set_context"])


@contextlib.contextmanager
def transaction(connection: DBConnection) -> Iterator[DBConnection]:
    """Run a block in the connection's transaction.

    Opens the connection, commits when the block succeeds, rolls back when
    it raises (if the connection got as far as opening), and always
    releases the connection.
    """
    try:
        connection.open()
        yield connection
        connection.commit()
    except Exception:
        if connection.is_open:
            connection.rollback()
        raise
    finally:
        connection.release()

"""MySQL connectivity verifiers.

Two variants with different connection timing:

- verify_direct: the PyMySQL connection is built lazily and only reaches
  the network on the explicit ping.
- verify_tunnel: the Cloud SQL connector dials and handshakes inside
  connect(), so liveness is checked before a handle is returned.

Both run the same probe: create the test table if missing, empty it,
insert one row and check the auto-increment id against the configured step.
"""

import logging
from dataclasses import dataclass

import pymysql
from google.cloud.sql.connector import Connector

from errors import ExpectationError, ProbeError, UnreachableError

logger = logging.getLogger(__name__)

TEST_TABLE = 'test'

CREATE_TEST_TABLE = (
    f'CREATE TABLE IF NOT EXISTS {TEST_TABLE} '
    '(id int NOT NULL AUTO_INCREMENT, name varchar(10) NOT NULL, PRIMARY KEY (id))'
)
EMPTY_TEST_TABLE = f'DELETE FROM {TEST_TABLE}'
INSERT_TEST_ROW = f'INSERT INTO {TEST_TABLE} (name) VALUES (%s)'


@dataclass
class DirectTarget:
    """Public endpoint of the instance."""
    host: str
    user: str
    password: str
    database: str
    port: int = 3306
    connect_timeout: int = 10
    read_timeout: int = 10
    write_timeout: int = 10


@dataclass
class TunnelTarget:
    """Cloud SQL proxy endpoint, addressed as project:region:instance."""
    connection_name: str
    user: str
    password: str
    database: str
    timeout: int = 10


def run_probe(conn, marker: str, step: int) -> int:
    """Insert one row and check its id is a multiple of step.

    Returns:
        The inserted row id
    """
    try:
        with conn.cursor() as cursor:
            logger.info(f"Create table: {CREATE_TEST_TABLE}")
            cursor.execute(CREATE_TEST_TABLE)
            logger.info(f"Empty table: {EMPTY_TEST_TABLE}")
            cursor.execute(EMPTY_TEST_TABLE)
            logger.info(f"Insert data: {INSERT_TEST_ROW} ({marker})")
            cursor.execute(INSERT_TEST_ROW, (marker,))
            last_id = cursor.lastrowid
        conn.commit()
    except pymysql.MySQLError as e:
        raise ProbeError(f"Probe statement failed: {e}") from e

    if last_id is None:
        raise ProbeError("Insert returned no auto-increment id")
    if last_id % step != 0:
        raise ExpectationError(
            f"Auto-increment id {last_id} modulo step {step}", 0, last_id % step
        )
    logger.info(f"Inserted '{marker}' with id {last_id}")
    return last_id


def _close(conn) -> None:
    # Closing a never-opened PyMySQL connection raises "Already closed"
    if conn is not None and conn.open:
        conn.close()


def verify_direct(target: DirectTarget, marker: str = 'Grunt', step: int = 5) -> int:
    """Verify the public endpoint with an explicit ping and a probe row.

    Raises:
        UnreachableError: If the ping cannot establish a connection
        ProbeError: If a probe statement fails
        ExpectationError: If the inserted id is not a multiple of step
    """
    logger.info(f"Connecting to: {target.host}")
    # No network traffic until ping()
    conn = pymysql.connect(
        host=target.host,
        port=target.port,
        user=target.user,
        password=target.password,
        database=target.database,
        connect_timeout=target.connect_timeout,
        read_timeout=target.read_timeout,
        write_timeout=target.write_timeout,
        defer_connect=True,
    )
    try:
        logger.info("Ping the DB")
        try:
            conn.ping(reconnect=True)
        except pymysql.MySQLError as e:
            raise UnreachableError(f"Failed to ping DB at {target.host}:{target.port}: {e}") from e
        return run_probe(conn, marker, step)
    finally:
        _close(conn)


def verify_tunnel(target: TunnelTarget, marker: str = 'Grunt2', step: int = 5) -> int:
    """Verify the proxy endpoint; connect() already proves liveness.

    Raises:
        UnreachableError: If the tunnel cannot be dialed or pinged
        ProbeError: If a probe statement fails
        ExpectationError: If the inserted id is not a multiple of step
    """
    logger.info(f"Connecting to: {target.connection_name} via Cloud SQL Proxy")
    connector = None
    conn = None
    try:
        try:
            connector = Connector(timeout=target.timeout)
            conn = connector.connect(
                target.connection_name,
                'pymysql',
                user=target.user,
                password=target.password,
                db=target.database,
                read_timeout=target.timeout,
                write_timeout=target.timeout,
            )
        except Exception as e:
            # Credential lookup and dialing raise the connector's own error types
            raise UnreachableError(
                f"Failed to open proxy connection to {target.connection_name}: {e}"
            ) from e

        logger.info("Ping the DB")
        try:
            conn.ping(reconnect=False)
        except pymysql.MySQLError as e:
            raise UnreachableError(f"Failed to ping DB via proxy: {e}") from e
        return run_probe(conn, marker, step)
    finally:
        _close(conn)
        if connector is not None:
            connector.close()

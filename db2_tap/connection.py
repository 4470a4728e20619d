from __future__ import annotations

from dataclasses import dataclass
import enum
import logging
from typing import Any, Callable

from db2_tap.errors import Db2ConnectionError

PING = "SELECT 1 FROM SYSIBM.SYSDUMMY1"
DEFAULT_PORT = 50000
PASSWORD_FILTERED = "/PASSWORD_FILTERED"


@dataclass(frozen=True)
class ConnectionParams:
    host: str
    database: str
    user: str
    password: str = ""
    properties: str | None = None

    @property
    def hostname(self) -> str:
        return self.host.partition(":")[0] or "localhost"

    @property
    def port(self) -> int:
        _, _, port = self.host.partition(":")
        return int(port) if port else DEFAULT_PORT

    def describe(self) -> str:
        return f"{self.host}/{self.database} {self.user}{PASSWORD_FILTERED}"

    def __repr__(self) -> str:
        return (
            f"ConnectionParams(host={self.host!r}, database={self.database!r}, "
            f"user={self.user!r}, properties={self.properties!r})"
        )


Connector = Callable[[ConnectionParams], Any]


def build_dsn(params: ConnectionParams) -> str:
    """Build an IBM DB2 CLI connection string for ``params``."""
    parts = [
        f"DATABASE={params.database}",
        f"HOSTNAME={params.hostname}",
        f"PORT={params.port}",
        "PROTOCOL=TCPIP",
        f"UID={params.user}",
        f"PWD={params.password}",
    ]
    if params.properties:
        parts.extend(
            item.strip() for item in params.properties.split(";") if item.strip()
        )
    return ";".join(parts) + ";"


def ibm_db_connector(params: ConnectionParams) -> Any:
    import ibm_db_dbi

    return ibm_db_dbi.connect(build_dsn(params), "", "")


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class ConnectionManager:
    """Owns the single cached DB2 connection of one agent.

    The connection is created lazily and validated with a cheap probe before
    every use. An invalid connection is closed and replaced by a new one; a
    failed creation yields ``None`` and the next poll cycle tries again.
    """

    def __init__(self, connector: Connector | None = None, ping: str = PING) -> None:
        self.connector = connector or ibm_db_connector
        self.ping = ping
        self.logger = logging.getLogger(self.__class__.__name__)
        self._conn: Any = None

    @property
    def state(self) -> ConnectionState:
        if self._conn is None:
            return ConnectionState.DISCONNECTED
        return ConnectionState.CONNECTED

    def get_connection(self, params: ConnectionParams) -> Any:
        if self._conn is None:
            self._conn = self._new_connection(params)
        elif not self.is_valid():
            self.close()
            self._conn = self._new_connection(params)
        return self._conn

    def is_valid(self) -> bool:
        if self._conn is None:
            return False
        cursor = None
        try:
            self.logger.debug("Checking connection - pinging DB2 server")
            cursor = self._conn.cursor()
            cursor.execute(self.ping)
            cursor.fetchall()
            return True
        except Exception as exc:
            self.logger.debug("The DB2 connection is not available: %s", exc)
            return False
        finally:
            if cursor is not None:
                try:
                    cursor.close()
                except Exception as exc:
                    self.logger.debug("Error closing ping cursor: %s", exc)

    def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.close()
        except Exception as exc:
            self.logger.debug("Error closing connection: %s", exc)

    def _new_connection(self, params: ConnectionParams) -> Any:
        info = params.describe()
        self.logger.debug("Getting new DB2 connection: %s", info)
        try:
            conn = self._connect(params)
        except Db2ConnectionError as exc:
            self.logger.error(
                "Unable to obtain a new database connection: %s, check your DB2 "
                "configuration settings. %s",
                info,
                exc,
            )
            return None
        self.logger.info("Connected to DB2 %s", info)
        return conn

    def _connect(self, params: ConnectionParams) -> Any:
        try:
            conn = self.connector(params)
        except Exception as exc:
            # Driver messages can echo the DSN; never let the password through.
            message = str(exc)
            if params.password:
                message = message.replace(params.password, "********")
            raise Db2ConnectionError(message) from exc
        if conn is None:
            raise Db2ConnectionError("connector returned no connection")
        return conn

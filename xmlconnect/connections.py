"""Database connections built from XML-described credentials."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import os
import threading
from html import escape
from typing import Any, Coroutine, Mapping, Protocol, TypeVar, runtime_checkable

import aiomysql
import asyncpg
from lxml import etree

from .config import AppConfig, load_config
from .models import ConnectionConfig
from .reporting import ErrorReporter, default_reporter
from .validation import validate_xml

LOG = logging.getLogger(__name__)

CONNECTION_ERROR_TITLE = "Database Connection Error"
CONFIG_FIELDS = ("dbtype", "dbname", "host", "port", "user", "password")
POSTGRES_DRIVERS = ("pgsql", "postgres", "postgresql")
MYSQL_DRIVERS = ("mysql",)

_T = TypeVar("_T")


class ConnectionBackendError(RuntimeError):
    """Raised when a backend cannot open a connection or run a statement."""


@dataclass(frozen=True, slots=True)
class ConnectOptions:
    """Driver options requested for every new connection."""

    charset: str = "utf8mb4"
    raise_on_error: bool = True
    associative_rows: bool = True
    timeout: float = 5.0


@runtime_checkable
class ConnectionHandle(Protocol):
    """Live connection returned to callers of :func:`connect_to_database`."""

    def fetch_all(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        """Run a query and return every row as a dict."""

    def fetch_one(self, sql: str, *args: Any) -> dict[str, Any] | None:
        """Run a query and return the first row as a dict (or None)."""

    def execute(self, sql: str, *args: Any) -> str:
        """Run a statement and return the driver status string."""

    def close(self) -> None:
        """Release the connection."""


@runtime_checkable
class ConnectionBackend(Protocol):
    """Protocol implemented by connection backends."""

    def open(self, dsn: str, user: str, password: str, *, options: ConnectOptions) -> ConnectionHandle:
        """Open a connection described by ``dsn``."""


def build_dsn(config: ConnectionConfig) -> str:
    """Build ``<dbtype>:dbname=<dbname>;host=<host>[;port=<port>]``."""

    dsn = f"{config.dbtype}:dbname={config.dbname};host={config.host}"
    if config.port:
        dsn += f";port={config.port}"
    return dsn


def parse_dsn(dsn: str) -> tuple[str, dict[str, str]]:
    """Split a descriptor into its driver name and ``key=value`` parameters."""

    driver, sep, rest = dsn.partition(":")
    driver = driver.strip()
    if not sep or not driver:
        raise ConnectionBackendError("invalid data source name")
    params: dict[str, str] = {}
    for chunk in rest.split(";"):
        if not chunk.strip():
            continue
        key, eq, value = chunk.partition("=")
        if not eq:
            raise ConnectionBackendError(f"invalid data source name segment: {chunk!r}")
        params[key.strip()] = value
    return driver, params


def extract_connection_config(document: etree._ElementTree) -> ConnectionConfig:
    """Copy the connection fields out of a validated config document."""

    root = document.getroot()
    values = {field: root.findtext(field) or "" for field in CONFIG_FIELDS}
    return ConnectionConfig(**values)


def save_connection_config(config: ConnectionConfig, path: str | os.PathLike[str]) -> None:
    """Write ``config`` as an XML document accepted by the connection schema."""

    root = etree.Element("connection")
    for field in CONFIG_FIELDS:
        value = getattr(config, field)
        if field == "port" and not value:
            continue
        etree.SubElement(root, field).text = value
    target = os.fspath(path)
    os.makedirs(os.path.dirname(os.path.abspath(target)), exist_ok=True)
    etree.ElementTree(root).write(target, encoding="UTF-8", xml_declaration=True, pretty_print=True)


def _check_options(options: ConnectOptions) -> None:
    if not options.raise_on_error:
        raise ConnectionBackendError("only raise-on-error connections are supported")
    if not options.associative_rows:
        raise ConnectionBackendError("only associative row fetching is supported")


class _LoopConnection:
    """Blocking facade over a driver connection living on a backend's loop."""

    def __init__(self, connection: Any, backend: "_LoopBackend") -> None:
        self._connection = connection
        self._backend = backend
        self._closed = False

    @property
    def raw(self) -> Any:
        """Underlying driver connection (for driver-specific calls)."""

        return self._connection

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._backend.run(self._close())
        except Exception as exc:
            raise ConnectionBackendError(str(exc)) from exc

    def __enter__(self) -> "_LoopConnection":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    async def _close(self) -> None:
        await self._connection.close()

    def _call(self, coro: Coroutine[Any, Any, _T]) -> _T:
        if self._closed:
            coro.close()
            raise ConnectionBackendError("connection is closed")
        try:
            return self._backend.run(coro)
        except ConnectionBackendError:
            raise
        except Exception as exc:
            raise ConnectionBackendError(str(exc)) from exc


class AsyncpgConnection(_LoopConnection):
    """asyncpg connection; statements use ``$1``-style placeholders."""

    def fetch_all(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        rows = self._call(self._connection.fetch(sql, *args))
        return [dict(row) for row in rows]

    def fetch_one(self, sql: str, *args: Any) -> dict[str, Any] | None:
        row = self._call(self._connection.fetchrow(sql, *args))
        return dict(row) if row is not None else None

    def execute(self, sql: str, *args: Any) -> str:
        return self._call(self._connection.execute(sql, *args))


class AiomysqlConnection(_LoopConnection):
    """aiomysql connection; statements use ``%s`` placeholders."""

    def fetch_all(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        rows = self._call(self._run_cursor(sql, args, "all"))
        return [dict(row) for row in rows]

    def fetch_one(self, sql: str, *args: Any) -> dict[str, Any] | None:
        row = self._call(self._run_cursor(sql, args, "one"))
        return dict(row) if row is not None else None

    def execute(self, sql: str, *args: Any) -> str:
        return str(self._call(self._run_cursor(sql, args, None)))

    async def _run_cursor(self, sql: str, args: tuple[Any, ...], fetch: str | None) -> Any:
        async with self._connection.cursor() as cursor:
            affected = await cursor.execute(sql, args or None)
            if fetch == "all":
                return await cursor.fetchall()
            if fetch == "one":
                return await cursor.fetchone()
            return affected

    async def _close(self) -> None:
        await self._connection.ensure_closed()


class _LoopBackend:
    """Runs an async driver on a private event loop thread."""

    drivers: tuple[str, ...] = ()
    thread_name = "xmlconnect-backend"

    def __init__(self) -> None:
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name=self.thread_name,
            daemon=True,
        )
        self._loop_thread.start()

    def open(self, dsn: str, user: str, password: str, *, options: ConnectOptions) -> _LoopConnection:
        driver, params = parse_dsn(dsn)
        if driver not in self.drivers:
            raise ConnectionBackendError("could not find driver")
        _check_options(options)
        kwargs = self.connect_kwargs(params, user, password, options)
        try:
            connection = self.run(self._connect(kwargs))
        except Exception as exc:
            raise ConnectionBackendError(str(exc)) from exc
        return self._wrap(connection)

    def connect_kwargs(
        self,
        params: Mapping[str, str],
        user: str,
        password: str,
        options: ConnectOptions,
    ) -> dict[str, object]:
        raise NotImplementedError

    def run(self, coro: Coroutine[Any, Any, _T]) -> _T:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def shutdown(self) -> None:
        """Stop the background event loop."""

        if not self._loop.is_running():  # pragma: no cover
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=1)

    def _connect(self, kwargs: dict[str, object]) -> Coroutine[Any, Any, Any]:
        raise NotImplementedError

    def _wrap(self, connection: Any) -> _LoopConnection:
        raise NotImplementedError

    @staticmethod
    def _port(params: Mapping[str, str]) -> int | None:
        port = params.get("port")
        if not port:
            return None
        try:
            return int(port)
        except ValueError as exc:
            raise ConnectionBackendError(f"invalid port: {port!r}") from exc


class AsyncpgConnectionBackend(_LoopBackend):
    """Connection backend that opens PostgreSQL connections via asyncpg."""

    drivers = POSTGRES_DRIVERS
    thread_name = "xmlconnect-asyncpg-backend"

    _ENCODINGS = {"utf8mb4": "UTF8", "utf8": "UTF8", "utf-8": "UTF8"}

    def connect_kwargs(
        self,
        params: Mapping[str, str],
        user: str,
        password: str,
        options: ConnectOptions,
    ) -> dict[str, object]:
        kwargs: dict[str, object] = {
            "host": params.get("host") or "localhost",
            "user": user,
            "password": password,
            "timeout": options.timeout,
        }
        if params.get("dbname"):
            kwargs["database"] = params["dbname"]
        port = self._port(params)
        if port is not None:
            kwargs["port"] = port
        encoding = self._ENCODINGS.get(options.charset.lower(), options.charset)
        kwargs["server_settings"] = {"client_encoding": encoding}
        return kwargs

    def _connect(self, kwargs: dict[str, object]) -> Coroutine[Any, Any, Any]:
        return asyncpg.connect(**kwargs)

    def _wrap(self, connection: Any) -> AsyncpgConnection:
        return AsyncpgConnection(connection, self)


class AiomysqlConnectionBackend(_LoopBackend):
    """Connection backend that opens MySQL/MariaDB connections via aiomysql."""

    drivers = MYSQL_DRIVERS
    thread_name = "xmlconnect-aiomysql-backend"

    def connect_kwargs(
        self,
        params: Mapping[str, str],
        user: str,
        password: str,
        options: ConnectOptions,
    ) -> dict[str, object]:
        if not options.charset.isalnum():
            raise ConnectionBackendError(f"invalid charset: {options.charset!r}")
        kwargs: dict[str, object] = {
            "host": params.get("host") or "localhost",
            "user": user,
            "password": password,
            "charset": options.charset,
            "init_command": f"SET NAMES '{options.charset}'",
            "cursorclass": aiomysql.DictCursor,
            "connect_timeout": options.timeout,
            "autocommit": True,
        }
        if params.get("dbname"):
            kwargs["db"] = params["dbname"]
        port = self._port(params)
        if port is not None:
            kwargs["port"] = port
        return kwargs

    async def _connect(self, kwargs: dict[str, object]) -> Any:
        # aiomysql.connect returns an awaitable context manager, not a coroutine
        return await aiomysql.connect(**kwargs)

    def _wrap(self, connection: Any) -> AiomysqlConnection:
        return AiomysqlConnection(connection, self)


class BackendRegistry:
    """Routes a descriptor to the backend registered for its driver name."""

    def __init__(self, backends: Mapping[str, ConnectionBackend] | None = None) -> None:
        self._backends: dict[str, ConnectionBackend] = dict(backends or {})

    def register(self, driver: str, backend: ConnectionBackend) -> None:
        self._backends[driver] = backend

    def drivers(self) -> tuple[str, ...]:
        return tuple(sorted(self._backends))

    def open(self, dsn: str, user: str, password: str, *, options: ConnectOptions) -> ConnectionHandle:
        driver, _ = parse_dsn(dsn)
        backend = self._backends.get(driver)
        if backend is None:
            raise ConnectionBackendError("could not find driver")
        return backend.open(dsn, user, password, options=options)


_default_registry: BackendRegistry | None = None
_registry_lock = threading.Lock()


def default_backend() -> BackendRegistry:
    """Process-wide registry: asyncpg for PostgreSQL names, aiomysql for MySQL."""

    global _default_registry
    with _registry_lock:
        if _default_registry is None:
            registry = BackendRegistry()
            for backend in (AsyncpgConnectionBackend(), AiomysqlConnectionBackend()):
                for name in backend.drivers:
                    registry.register(name, backend)
            _default_registry = registry
        return _default_registry


def connect_to_database(
    xml_path: str | os.PathLike[str],
    *,
    config: AppConfig | None = None,
    backend: ConnectionBackend | None = None,
    reporter: ErrorReporter | None = None,
) -> ConnectionHandle:
    """Open the database described by the XML config at ``xml_path``.

    The config is validated against the connection schema before any field
    is read. Every failure is reported under "Database Connection Error" and
    raises :class:`~xmlconnect.reporting.ReportedFailure`; a handle is only
    returned for a live connection.
    """

    config = config or load_config()
    reporter = reporter or default_reporter(config.session_key)
    document = validate_xml(
        xml_path,
        config.resolved_schema_path(),
        CONNECTION_ERROR_TITLE,
        reporter=reporter,
    )
    settings = extract_connection_config(document)
    dsn = build_dsn(settings)
    options = ConnectOptions(timeout=config.connect_timeout)

    try:
        handle = (backend or default_backend()).open(
            dsn, settings.user, settings.password, options=options
        )
    except ConnectionBackendError as exc:
        LOG.warning(
            "Database connection failed",
            extra={"dbtype": settings.dbtype, "host": settings.host, "dbname": settings.dbname},
        )
        reporter.report(
            CONNECTION_ERROR_TITLE,
            "Failed to connect to the database.",
            f"<b>Error Details:</b> {escape(str(exc))}",
        )
    LOG.info("Connected to %s", dsn)
    return handle


__all__ = [
    "AiomysqlConnection",
    "AiomysqlConnectionBackend",
    "AsyncpgConnection",
    "AsyncpgConnectionBackend",
    "BackendRegistry",
    "CONNECTION_ERROR_TITLE",
    "ConnectOptions",
    "ConnectionBackend",
    "ConnectionBackendError",
    "ConnectionHandle",
    "build_dsn",
    "connect_to_database",
    "default_backend",
    "extract_connection_config",
    "parse_dsn",
    "save_connection_config",
]

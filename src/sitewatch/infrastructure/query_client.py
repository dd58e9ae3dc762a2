from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError
from src.config.logger_config import logger


class SqlQueryClient:
    """Runs queries against postgres or sqlite URLs over one reusable connection.

    The connection is reused while it is alive and points at the same URL;
    otherwise it is closed and a new one is opened.
    """

    def __init__(self) -> None:
        self._url: str | None = None
        self._engine: Engine | None = None
        self._connection: Connection | None = None

    def _usable(self, url: str) -> bool:
        connection = self._connection
        if (
            connection is None
            or self._url != url
            or connection.closed
            or connection.invalidated
        ):
            return False
        # The held connection is never checked out again, so pool_pre_ping does not cover it.
        try:
            connection.exec_driver_sql("SELECT 1")
        except DBAPIError as exc:
            logger.warning("Query connection for {} is stale: {}", _safe_url(self._engine), exc)
            if not connection.invalidated:
                connection.invalidate()
            return False
        return True

    def _connect(self, url: str) -> Connection:
        if self._usable(url):
            return self._connection
        if self._connection is not None:
            logger.info("Reconnecting query connection for {}", _safe_url(self._engine))
        self.close()
        # Queries run in worker threads; the connection is reused between them.
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self._engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
        self._connection = self._engine.connect()
        self._url = url
        return self._connection

    def execute(self, url: str, query: str) -> list[dict[str, Any]]:
        connection = self._connect(url)
        try:
            result = connection.execute(text(query))
            rows = [dict(row._mapping) for row in result] if result.returns_rows else []
            connection.commit()
        except DBAPIError:
            connection.rollback()
            raise
        return rows

    def close(self) -> None:
        if self._connection is not None:
            try:
                self._connection.close()
            except DBAPIError as exc:
                logger.warning("Failed to close query connection cleanly: {}", exc)
        if self._engine is not None:
            self._engine.dispose()
        self._connection = None
        self._engine = None
        self._url = None


def _safe_url(engine: Engine | None) -> str:
    return engine.url.render_as_string(hide_password=True) if engine is not None else "<none>"

"""
Database handle used by entity models.

Wraps a SQLAlchemy engine and a single long-lived connection so that a
rollback-only scope opened by the sniffer covers every statement the models
issue while relation methods are probed.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Union

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, CursorResult, Engine, Row
from sqlalchemy.sql import Executable

logger = logging.getLogger(__name__)


class Database:
    """
    Connection holder for entity models.

    Statements run in their own committed transaction unless a transaction
    is already open on the connection, in which case they join it.
    """

    def __init__(self, engine: Union[Engine, str]):
        """
        Initialize the database handle.

        Args:
            engine: SQLAlchemy engine or database URL
        """
        if isinstance(engine, str):
            engine = create_engine(engine)
        self.engine = engine
        self._connection: Optional[Connection] = None

    @property
    def connection(self) -> Connection:
        """Return the shared connection, opening it on first use."""
        if self._connection is None or self._connection.closed:
            self._connection = self.engine.connect()
        return self._connection

    def execute(self, statement: Executable) -> CursorResult:
        """Execute a data-modifying statement."""
        conn = self.connection
        if conn.in_transaction():
            return conn.execute(statement)
        with conn.begin():
            return conn.execute(statement)

    def fetch_all(self, statement: Executable) -> List[Row]:
        """Execute a query and return all rows."""
        conn = self.connection
        if conn.in_transaction():
            return list(conn.execute(statement).all())
        with conn.begin():
            return list(conn.execute(statement).all())

    def scalar(self, statement: Executable) -> Any:
        """Execute a query and return the first column of the first row."""
        rows = self.fetch_all(statement)
        return rows[0][0] if rows else None

    @contextmanager
    def rollback_only(self) -> Iterator[Connection]:
        """
        Open a transaction that is always rolled back.

        A SAVEPOINT is used when the connection already has an open
        transaction.
        """
        conn = self.connection
        if conn.in_transaction():
            transaction = conn.begin_nested()
        else:
            transaction = conn.begin()
        logger.debug("Opened rollback-only transaction")
        try:
            yield conn
        finally:
            if transaction.is_active:
                transaction.rollback()
            logger.debug("Rolled back rollback-only transaction")

    def close(self) -> None:
        """Close the shared connection and dispose of the engine."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
        self.engine.dispose()

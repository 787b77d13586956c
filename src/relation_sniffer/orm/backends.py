"""
Write backends for entity models.

Models never touch storage directly when persisting themselves; they hand
their changes to a write backend. The sniffer swaps in NullWriteBackend
while it probes an entity so that nothing a probed method does can be
persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import column, delete, insert, table, update

from relation_sniffer.errors import WriteRefusedError
from relation_sniffer.orm.database import Database

logger = logging.getLogger(__name__)


class WriteBackend:
    """Interface for persisting model changes."""

    def insert(self, table_name: str, values: Dict[str, Any]) -> Optional[Any]:
        """Insert a row and return its generated key, or None if refused."""
        raise NotImplementedError

    def update(self, table_name: str, key_name: str, key: Any, values: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def delete(self, table_name: str, key_name: str, key: Any) -> bool:
        raise NotImplementedError


class SqlWriteBackend(WriteBackend):
    """Persists model changes through SQLAlchemy Core statements."""

    def __init__(self, database: Database):
        self.database = database

    def insert(self, table_name: str, values: Dict[str, Any]) -> Optional[Any]:
        target = table(table_name, *[column(name) for name in values])
        result = self.database.execute(insert(target).values(**values))
        return result.lastrowid

    def update(self, table_name: str, key_name: str, key: Any, values: Dict[str, Any]) -> bool:
        target = table(table_name, column(key_name), *[column(name) for name in values if name != key_name])
        statement = update(target).where(target.c[key_name] == key).values(**values)
        return self.database.execute(statement).rowcount > 0

    def delete(self, table_name: str, key_name: str, key: Any) -> bool:
        target = table(table_name, column(key_name))
        statement = delete(target).where(target.c[key_name] == key)
        return self.database.execute(statement).rowcount > 0


@dataclass
class RefusedWrite:
    """A write that NullWriteBackend declined to perform."""
    operation: str
    table_name: str
    key: Optional[Any] = None


class NullWriteBackend(WriteBackend):
    """
    Write backend that refuses every write.

    Refused writes are recorded and reported to the caller as a vetoed save
    (a falsy return), the same way a vetoing persistence hook would. With
    strict=True a WriteRefusedError is raised instead.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        self.refused: List[RefusedWrite] = []

    def _refuse(self, operation: str, table_name: str, key: Optional[Any] = None) -> None:
        self.refused.append(RefusedWrite(operation, table_name, key))
        logger.debug(f"Refused {operation} on {table_name}")
        if self.strict:
            raise WriteRefusedError(f"Refused {operation} on {table_name}")

    def insert(self, table_name: str, values: Dict[str, Any]) -> Optional[Any]:
        self._refuse("insert", table_name)
        return None

    def update(self, table_name: str, key_name: str, key: Any, values: Dict[str, Any]) -> bool:
        self._refuse("update", table_name, key)
        return False

    def delete(self, table_name: str, key_name: str, key: Any) -> bool:
        self._refuse("delete", table_name, key)
        return False
